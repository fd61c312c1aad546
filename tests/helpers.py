"""Fakes and helpers shared by the test modules."""

import asyncio
import json
from types import SimpleNamespace

import aiohttp

from samtv.crypto import encrypt
from samtv.message import ENVELOPE_PREFIX, HANDSHAKE, SUCCESS_REPLY, Envelope

SESSION_KEY = bytes.fromhex("00112233445566778899aabbccddeeff")
SESSION_ID = 5
BOOTSTRAP_REPLY = "abc123:60:60:websocket,xhr-polling"


def device_envelope(key: bytes, text: str) -> str:
    """Build an inbound envelope frame the way the device does."""
    body = json.dumps(list(encrypt(key, text.encode())))
    return Envelope(name="receiveCommon", args=body).to_frame()


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse.

    Frames queued with ``feed`` are returned by ``receive``. A responder,
    when set, is called for every sent frame and returns frames to feed
    back, which lets tests script the device side.
    """

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False
        self.responder = None
        self.send_error: Exception | None = None

    def feed(self, *frames: str) -> None:
        for frame in frames:
            self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=frame))

    def feed_close(self) -> None:
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None))

    async def receive(self, timeout=None):
        return await asyncio.wait_for(self.incoming.get(), timeout)

    async def send_str(self, data: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)
        if self.responder is not None:
            self.feed(*(self.responder(data) or []))

    async def close(self) -> bool:
        if not self.closed:
            self.closed = True
            self.feed_close()
        return True


def handshake_responder(frame: str) -> list[str]:
    """Device side of the channel handshake."""
    if frame == HANDSHAKE:
        return [HANDSHAKE]
    return []


def success_responder(key: bytes = SESSION_KEY):
    """Device side that acknowledges the handshake and every key press."""

    def respond(frame: str) -> list[str]:
        if frame.startswith(ENVELOPE_PREFIX):
            return [device_envelope(key, SUCCESS_REPLY)]
        return handshake_responder(frame)

    return respond


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.005)


