"""Smart View frame protocol.

The duplex channel is a socket.io v1 style text channel. This module
recognizes the few control frames the device uses and builds/parses the
application envelope:

- ``1::``                         greeting from the device
- ``1::/com.samsung.companion``    handshake (sent by us, echoed as ack)
- ``2::``                         keepalive (echoed verbatim)
- ``5::/com.samsung.companion:{...}`` application envelope
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from samtv.crypto import SessionCodec, encode_byte_list
from samtv.errors import InvalidResponse

logger = logging.getLogger(__name__)

__all__ = [
    "APP_NAME",
    "GREETING",
    "HANDSHAKE",
    "KEEPALIVE",
    "ENVELOPE_PREFIX",
    "SUCCESS_REPLY",
    "Envelope",
    "FrameType",
    "build_envelope",
    "build_key_press",
    "classify_frame",
    "encrypt_key_press",
    "parse_envelope",
]

APP_NAME = "com.samsung.companion"

GREETING = "1::"
HANDSHAKE = f"1::/{APP_NAME}"
KEEPALIVE = "2::"
ENVELOPE_PREFIX = f"5::/{APP_NAME}:"

# Decrypted body the device returns for an accepted key press
SUCCESS_REPLY = '"result":{}}'

OUTGOING_CALL = "callCommon"
INCOMING_CALL = "receiveCommon"

_COMPACT = (",", ":")


class FrameType(Enum):
    """Kind of frame read from the duplex channel."""

    GREETING = "greeting"
    HANDSHAKE_ACK = "handshake_ack"
    KEEPALIVE = "keepalive"
    ENVELOPE = "envelope"
    UNKNOWN = "unknown"


def classify_frame(frame: str) -> FrameType:
    """Match a raw frame against the known frame types."""
    if frame == GREETING:
        return FrameType.GREETING
    if frame == HANDSHAKE:
        return FrameType.HANDSHAKE_ACK
    if frame == KEEPALIVE:
        return FrameType.KEEPALIVE
    if frame.startswith(ENVELOPE_PREFIX):
        return FrameType.ENVELOPE
    return FrameType.UNKNOWN


@dataclass
class Envelope:
    """Application-level message carried in a ``5::`` frame.

    Attributes:
        name: Remote call name (``callCommon`` outbound,
            ``receiveCommon`` inbound).
        args: Call arguments. Inbound device events carry a string holding
            a JSON array of ciphertext bytes.
    """

    name: str
    args: Any

    def to_frame(self) -> str:
        """Serialize to a wire frame."""
        return ENVELOPE_PREFIX + json.dumps(
            {"name": self.name, "args": self.args}, separators=_COMPACT
        )

    @classmethod
    def from_frame(cls, frame: str) -> "Envelope":
        """Parse a wire frame.

        Raises:
            InvalidResponse: If the frame is not a well-formed envelope.
        """
        if not frame.startswith(ENVELOPE_PREFIX):
            raise InvalidResponse("Cannot parse message: unknown prefix")

        try:
            data = json.loads(frame[len(ENVELOPE_PREFIX):])
        except json.JSONDecodeError as e:
            raise InvalidResponse(f"Cannot parse JSON envelope: {e}") from e

        if not isinstance(data, dict) or "name" not in data:
            raise InvalidResponse("Envelope has no call name")

        return cls(name=data["name"], args=data.get("args"))

    def ciphertext(self) -> bytes:
        """Extract the encrypted body of an inbound envelope.

        Raises:
            InvalidResponse: If args is not a JSON byte array string.
        """
        if not isinstance(self.args, str):
            logger.debug(f"Unhandled envelope args: {self.args!r}")
            raise InvalidResponse("Unhandled args format: expected list of bytes")

        try:
            values = json.loads(self.args)
            return bytes(values)
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise InvalidResponse(f"Cannot parse encrypted response: {e}") from e


def build_envelope(session_id: int, body: str) -> str:
    """Build an outbound ``callCommon`` frame.

    Args:
        session_id: Paired session ID.
        body: Comma-separated decimal ciphertext bytes.

    Returns:
        Wire frame.
    """
    args = [{"Session_Id": session_id, "body": f"[{body}]"}]
    return Envelope(name=OUTGOING_CALL, args=args).to_frame()


def parse_envelope(frame: str, codec: SessionCodec) -> str:
    """Decrypt the body of an inbound envelope frame.

    Raises:
        InvalidResponse: If the frame is malformed.
        CodecError: If the body cannot be decrypted.
    """
    envelope = Envelope.from_frame(frame)
    if envelope.name != INCOMING_CALL:
        logger.info(f"Envelope call name: {envelope.name}")

    plaintext = codec.decode(envelope.ciphertext())
    return plaintext.decode("utf-8", errors="replace")


def build_key_press(device_id: str, key: str) -> str:
    """Build the plaintext command for a remote-control key press."""
    command = {
        "method": "POST",
        "body": {
            "plugin": "RemoteControl",
            "param1": f"uuid:{device_id}",
            "param2": "Click",
            "param3": key,
            "param4": False,
            "api": "SendRemoteKey",
            "version": "1.000",
        },
    }
    return json.dumps(command, separators=_COMPACT)


def encrypt_key_press(codec: SessionCodec, session_id: int, device_id: str, key: str) -> str:
    """Encrypt a key press and wrap it in an envelope frame."""
    ciphertext = codec.encode(build_key_press(device_id, key).encode())
    return build_envelope(session_id, encode_byte_list(ciphertext))
