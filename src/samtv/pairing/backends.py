"""Key negotiation backends for PIN pairing.

Two interchangeable backends implement the same two-call contract
(``negotiate_key`` then ``acknowledge``):

- LocalPairingBackend runs the password-authenticated key exchange with a
  local KeyExchange primitive.
- RemotePairingBackend delegates the exchange computation to an HTTPS
  service that returns, for each step, the payload to forward to the
  device.

Both receive a ``post_step`` callable that posts a body to the device's
numbered pairing endpoint and returns the raw reply.
"""

import binascii
import importlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp

from samtv.config import PairingConfig
from samtv.errors import (
    AckValidationFailed,
    ConfigurationError,
    HandshakeRejected,
    InvalidResponse,
)
from samtv.message import APP_NAME
from samtv.transport import HttpTransport

logger = logging.getLogger(__name__)

# Posts a body to the device pairing step endpoint: (step, body) -> reply
StepPoster = Callable[[int, str], Awaitable[str]]

# Fixed user id sent to the key exchange
USER_ID = "654321"


@dataclass
class Negotiation:
    """Result of the key negotiation step, consumed by acknowledge().

    Attributes:
        pin: PIN shown on the device.
        device_id: Client device identifier.
        request_id: Device request id to echo in the acknowledge step.
        state: Backend-specific carry-over (shared secret for the local
            backend, last device reply for the remote one).
        session_key: Session key, when the backend knows it at this point.
    """

    pin: int
    device_id: str
    request_id: str = ""
    state: Any = None
    session_key: Optional[bytes] = None


@dataclass(frozen=True)
class KeyAgreement:
    """Session credentials produced by a successful acknowledge step."""

    session_id: int
    session_key: bytes


class KeyExchange(Protocol):
    """Password-authenticated key exchange primitive."""

    def server_hello(self, user_id: str, pin: str) -> tuple[bytes, Any]:
        """Build our hello. Returns (hello, handshake context)."""
        ...

    def client_hello(self, context: Any, hello: str) -> tuple[bytes, bytes]:
        """Validate the device hello. Returns (shared secret, session key).

        Raises on a hello that does not match the PIN.
        """
        ...

    def server_ack(self, secret: bytes) -> str:
        """Derive our acknowledgement from the shared secret."""
        ...

    def verify_client_ack(self, ack: str, secret: bytes) -> bool:
        """Check the device acknowledgement against the shared secret."""
        ...


class PairingBackend(Protocol):
    """Capability used by Pairer for pairing steps 1 and 2."""

    app_id: str

    async def negotiate_key(
        self, pin: int, device_id: str, post_step: StepPoster
    ) -> Negotiation:
        """Exchange hellos with the device and derive the shared secret."""
        ...

    async def acknowledge(
        self, negotiation: Negotiation, post_step: StepPoster
    ) -> KeyAgreement:
        """Exchange acknowledgements and obtain the session id and key."""
        ...


def parse_auth_data(body: str, step: int) -> dict[str, Any]:
    """Extract the ``auth_data`` object from a device pairing reply.

    The device sends ``auth_data`` either as an object or as a string
    holding JSON; both are accepted.

    Raises:
        InvalidResponse: If the reply is not the expected JSON shape.
    """
    try:
        response = json.loads(body)
        auth_data = response["auth_data"]
        if isinstance(auth_data, str):
            auth_data = json.loads(auth_data)
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise InvalidResponse(f"step {step}: could not decode device response: {e}") from e

    if not isinstance(auth_data, dict):
        raise InvalidResponse(f"step {step}: auth_data is not an object")
    return auth_data


def _parse_session_id(value: Any, step: int) -> int:
    try:
        session_id = int(value)
    except (TypeError, ValueError) as e:
        raise InvalidResponse(f"step {step}: cannot convert session ID to number") from e
    if session_id <= 0:
        raise InvalidResponse(f"step {step}: invalid session ID {session_id}")
    return session_id


class LocalPairingBackend:
    """Runs the key exchange locally with a KeyExchange primitive."""

    app_id = "samtvcli"

    def __init__(self, key_exchange: KeyExchange):
        self._kx = key_exchange

    async def negotiate_key(
        self, pin: int, device_id: str, post_step: StepPoster
    ) -> Negotiation:
        logger.debug("Starting pairing step #1 (hello exchange)")

        try:
            hello, context = self._kx.server_hello(USER_ID, str(pin))
        except Exception as e:
            raise HandshakeRejected(f"step 1: could not build server hello: {e}") from e
        content = json.dumps(
            {"auth_data": {"auth_type": "SPC", "GeneratorServerHello": hello.hex()}},
            separators=(",", ":"),
        )
        body = await post_step(1, content)
        auth_data = parse_auth_data(body, 1)

        client_hello = auth_data.get("GeneratorClientHello")
        if not client_hello:
            raise HandshakeRejected("step 1: could not get device hello")

        try:
            secret, session_key = self._kx.client_hello(context, client_hello)
        except Exception as e:
            raise HandshakeRejected(f"step 1: device hello rejected (wrong PIN?): {e}") from e

        logger.debug(f"Request id: {auth_data.get('request_id')}")
        return Negotiation(
            pin=pin,
            device_id=device_id,
            request_id=str(auth_data.get("request_id", "")),
            state=secret,
            session_key=session_key,
        )

    async def acknowledge(
        self, negotiation: Negotiation, post_step: StepPoster
    ) -> KeyAgreement:
        logger.debug("Starting pairing step #2 (acknowledge exchange)")

        try:
            server_ack = self._kx.server_ack(negotiation.state)
        except Exception as e:
            raise AckValidationFailed(f"step 2: could not build server acknowledge: {e}") from e
        content = json.dumps(
            {
                "auth_data": {
                    "auth_type": "SPC",
                    "request_id": negotiation.request_id,
                    "ServerAckMsg": server_ack,
                }
            },
            separators=(",", ":"),
        )
        body = await post_step(2, content)
        auth_data = parse_auth_data(body, 2)

        if "session_id" not in auth_data:
            raise InvalidResponse("step 2: could not get the session ID")
        client_ack = auth_data.get("ClientAckMsg")
        if not client_ack:
            raise InvalidResponse("step 2: could not get device acknowledge")

        session_id = _parse_session_id(auth_data["session_id"], 2)

        try:
            valid = self._kx.verify_client_ack(client_ack, negotiation.state)
        except Exception as e:
            raise AckValidationFailed(f"step 2: device acknowledge validation failed: {e}") from e
        if not valid:
            raise AckValidationFailed("step 2: device acknowledge validation failed")
        logger.debug("Device acknowledge is valid")

        return KeyAgreement(session_id=session_id, session_key=negotiation.session_key)


class RemotePairingBackend:
    """Delegates the key exchange computation to a remote HTTPS service.

    Service step n receives the PIN and the device's previous reply and
    returns the body to post to device step n. The final service step
    returns the session key and id instead.
    """

    app_id = APP_NAME

    FINAL_STEP = 3
    USER_AGENT = "CFNetwork/893.7 Darwin/17.3.0"

    def __init__(
        self,
        transport: HttpTransport,
        url: str,
        user: str = "orchestrator",
        password: str = "password",
        verify_ssl: bool = False,
    ):
        """Initialize remote backend.

        Args:
            transport: HTTP transport.
            url: Base URL of the exchange service.
            user: Basic auth user.
            password: Basic auth password.
            verify_ssl: Verify the service certificate.
        """
        if not url:
            raise ConfigurationError("Remote pairing backend requires a service URL")
        self._transport = transport
        self._url = url.rstrip("/")
        self._auth = aiohttp.BasicAuth(user, password)
        self._verify_ssl = verify_ssl

    @property
    def url(self) -> str:
        """The exchange service URL."""
        return self._url

    async def negotiate_key(
        self, pin: int, device_id: str, post_step: StepPoster
    ) -> Negotiation:
        negotiation = Negotiation(pin=pin, device_id=device_id, state="")
        negotiation.state = await self._run_steps(range(1, 2), negotiation, post_step)
        return negotiation

    async def acknowledge(
        self, negotiation: Negotiation, post_step: StepPoster
    ) -> KeyAgreement:
        reply = await self._run_steps(
            range(2, self.FINAL_STEP + 1), negotiation, post_step
        )
        return self._parse_final(reply)

    async def _run_steps(
        self, steps: range, negotiation: Negotiation, post_step: StepPoster
    ) -> str:
        """Chain service and device steps.

        Returns the last device reply, or the service reply when the final
        step is reached.
        """
        payload = negotiation.state
        for step in steps:
            reply = await self._service_step(step, negotiation, payload)
            if step == self.FINAL_STEP:
                return reply
            body = await post_step(step, reply)
            payload = body.replace('\\"', '"')
        return payload

    async def _service_step(self, step: int, negotiation: Negotiation, payload: str) -> str:
        logger.debug(f"Starting pairing step #{step}")
        data = json.dumps(
            {"pin": negotiation.pin, "payload": payload, "deviceId": negotiation.device_id}
        )
        reply = await self._transport.request(
            "POST",
            f"{self._url}/step{step}",
            data=data,
            headers={"Content-Type": "application/json", "User-Agent": self.USER_AGENT},
            auth=self._auth,
            ssl=self._verify_ssl,
        )
        if not reply:
            raise InvalidResponse(f"step {step}: empty response from exchange service")
        logger.debug(f"Exchange service returned: {reply}")

        # Service errors come back as a JSON status object
        try:
            status = json.loads(reply)
        except json.JSONDecodeError:
            status = None
        if isinstance(status, dict) and status.get("status"):
            logger.info(
                f"Exchange service sent status {status.get('status')} "
                f"({status.get('error')}): {status.get('message')}"
            )
            error = AckValidationFailed if step == self.FINAL_STEP else HandshakeRejected
            raise error(
                f"step {step}: exchange service rejected the request: "
                f"[{status.get('error')}] {status.get('message')}"
            )
        return reply

    def _parse_final(self, reply: str) -> KeyAgreement:
        step = self.FINAL_STEP
        try:
            result = json.loads(reply)
            key_hex = result["session_key"]
            raw_session_id = result["session_id"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise InvalidResponse(f"step {step}: cannot parse response: {e}") from e

        if not isinstance(key_hex, str) or len(key_hex) != 32:
            raise InvalidResponse(f"step {step}: wrong session key length")
        try:
            session_key = binascii.unhexlify(key_hex)
        except binascii.Error as e:
            raise InvalidResponse(f"step {step}: cannot convert hex key string") from e

        return KeyAgreement(
            session_id=_parse_session_id(raw_session_id, step),
            session_key=session_key,
        )


def load_key_exchange(path: str) -> KeyExchange:
    """Load a KeyExchange from a ``module:attribute`` import path.

    A class or factory found at the path is called with no arguments.

    Raises:
        ConfigurationError: If the path cannot be imported.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid key exchange path {path!r} (expected module:attribute)")
    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load key exchange {path!r}: {e}") from e
    return target() if callable(target) else target


def create_backend(config: PairingConfig, transport: HttpTransport) -> PairingBackend:
    """Build the pairing backend selected in configuration.

    Raises:
        ConfigurationError: If the backend is unknown or incompletely
            configured.
    """
    if config.backend == "remote":
        return RemotePairingBackend(
            transport,
            url=config.remote_url or "",
            user=config.remote_user,
            password=config.remote_password,
            verify_ssl=config.verify_ssl,
        )
    if config.backend == "local":
        if not config.key_exchange:
            raise ConfigurationError(
                "Local pairing backend requires pairing.key_exchange (module:attribute)"
            )
        return LocalPairingBackend(load_key_exchange(config.key_exchange))
    raise ConfigurationError(f"Unknown pairing backend {config.backend!r}")
