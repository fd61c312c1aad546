"""Smart View session engine.

Owns the duplex channel to the device, runs the background frame
reader, and exposes "send a key, wait for the reply" semantics.

Connection state goes Disconnected -> Opening -> HandshakeSent ->
Connected for one connection attempt; any I/O failure collapses it back
to Disconnected and discards the channel. State and channel handle are
guarded by a single lock which is never held across network I/O.

Replies are matched to commands by arrival order only. Concurrent
``send_key`` calls must be serialized by the caller.

Usage:
    async with SmartViewSession("192.168.1.20", backend=backend) as tv:
        tv.restore_session_data(key, session_id, device_id)
        await tv.init_session()
        await tv.send_key("KEY_VOLUP")
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

import aiohttp

from samtv.config import TimeoutConfig
from samtv.crypto import KEY_LENGTH, SessionCodec
from samtv.description import DESCRIPTION_PORT, DeviceDescription
from samtv.errors import (
    CodecError,
    ConfigurationError,
    HandshakeTimeout,
    InvalidResponse,
    NoReply,
    PairingRequired,
    TransportError,
    UnexpectedReply,
)
from samtv.message import (
    HANDSHAKE,
    KEEPALIVE,
    SUCCESS_REPLY,
    FrameType,
    classify_frame,
    encrypt_key_press,
    parse_envelope,
)
from samtv.pairing.backends import PairingBackend
from samtv.pairing.flow import Pairer, PairingOutcome
from samtv.transport import HttpTransport

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_ID = "samtv"
CHANNEL_PORT = 8000
INBOX_SIZE = 16
POLL_DELAY = 0.001  # seconds, non-blocking inbox reads


class ConnectionState(Enum):
    """State of the duplex channel."""

    DISCONNECTED = "disconnected"
    OPENING = "opening"
    HANDSHAKE_SENT = "handshake_sent"
    CONNECTED = "connected"


_VALID_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.OPENING},
    ConnectionState.OPENING: {
        ConnectionState.HANDSHAKE_SENT,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.HANDSHAKE_SENT: {
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
}


class SmartViewSession:
    """Session with one device.

    The object can be reused for another ``init_session`` after
    ``close``.
    """

    def __init__(
        self,
        address: str,
        *,
        timeouts: Optional[TimeoutConfig] = None,
        transport: Optional[HttpTransport] = None,
        backend: Optional[PairingBackend] = None,
    ):
        """Initialize session.

        Args:
            address: Device host, without port.
            timeouts: Network timeouts.
            transport: HTTP/WebSocket transport (for testing).
            backend: Pairing backend used to complete pairing.

        Raises:
            ConfigurationError: If the address is empty or has a port.
        """
        if not address:
            raise ConfigurationError("Empty device address")
        if ":" in address:
            raise ConfigurationError("The device address should not contain a colon")

        self._address = address
        self._timeouts = timeouts or TimeoutConfig()
        self._transport = transport or HttpTransport(
            request_timeout=self._timeouts.request_timeout
        )
        self._pairer = Pairer(address, self._transport, backend)

        self._device_id = DEFAULT_DEVICE_ID
        self._session_key: Optional[bytes] = None
        self._session_id = 0

        # Guarded by _lock
        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

        self._reader_task: Optional[asyncio.Task] = None
        self._read_deadline = 0.0
        self._inbox: asyncio.Queue[str] = asyncio.Queue(maxsize=INBOX_SIZE)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def address(self) -> str:
        return self._address

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def session_id(self) -> int:
        return self._session_id

    @property
    def session_key(self) -> Optional[bytes]:
        return self._session_key

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def has_session(self) -> bool:
        """True if a usable session key and id are present."""
        return (
            self._session_key is not None
            and len(self._session_key) == KEY_LENGTH
            and self._session_id > 0
        )

    def restore_session_data(
        self,
        session_key: Optional[bytes] = None,
        session_id: int = 0,
        device_id: str = "",
    ) -> None:
        """Inject previously saved session data.

        Empty key, non-positive id and empty device id are ignored, each
        independently.
        """
        if session_key:
            self._session_key = session_key
        if session_id > 0:
            self._session_id = session_id
        if device_id:
            self._device_id = device_id

    # =========================================================================
    # Public operations
    # =========================================================================

    async def init_session(self) -> None:
        """Open the channel and wait for the device handshake.

        Does nothing if a connection is already open or opening.

        Raises:
            TransportError: If the channel cannot be opened.
            HandshakeTimeout: If the device does not acknowledge in time.
            PairingRequired: If connected but no session key/id is known;
                the PIN popup has been requested on the device.
        """
        async with self._lock:
            if self._ws is not None or self._state != ConnectionState.DISCONNECTED:
                logger.info("init_session called but a connection is already open")
                return
            self._transition(ConnectionState.OPENING)

        try:
            ws = await self._open_channel()
        except TransportError:
            async with self._lock:
                if self._state == ConnectionState.OPENING:
                    self._transition(ConnectionState.DISCONNECTED)
            raise

        handshake_done = asyncio.Event()
        async with self._lock:
            superseded = self._state != ConnectionState.OPENING
            if not superseded:
                self._ws = ws
                self._read_deadline = self._now() + self._timeouts.read_timeout
                self._reader_task = asyncio.create_task(
                    self._read_loop(ws, handshake_done)
                )
        if superseded:
            await ws.close()
            raise TransportError("Session closed while opening the channel")

        try:
            await asyncio.wait_for(
                handshake_done.wait(), timeout=self._timeouts.handshake_timeout
            )
        except asyncio.TimeoutError:
            await self._discard_channel(ws)
            raise HandshakeTimeout(
                f"No handshake from device after {self._timeouts.handshake_timeout}s"
            )

        if self._state != ConnectionState.CONNECTED:
            if self._now() >= self._read_deadline:
                raise HandshakeTimeout("Read deadline exceeded before handshake")
            raise TransportError("Channel closed before the handshake completed")

        if not self.has_session:
            logger.info("No session key; requesting pairing")
            await self.pair(0)

    async def send_key(self, key: str) -> None:
        """Send a remote-control key press and wait for the device reply.

        Opens the channel first if needed. An empty key is a no-op.

        Raises:
            NoReply: If the device does not reply in time.
            UnexpectedReply: If the reply is not the success body.
            PairingRequired: If no session key/id is known.
            TransportError: If the channel cannot be used.
        """
        if not key:
            logger.info("Empty key -- ignored")
            return

        async with self._lock:
            state = self._state
        if state == ConnectionState.DISCONNECTED:
            logger.debug("send_key: need to open new channel")
            await self.init_session()

        async with self._lock:
            if self._state != ConnectionState.CONNECTED:
                raise TransportError("send_key: no active connection")
        if not self.has_session:
            raise PairingRequired("No session key: pair with the device first")

        logger.debug(f"send_key({key!r})")
        frame = encrypt_key_press(
            SessionCodec(self._session_key), self._session_id, self._device_id, key
        )
        await self._send_frame(frame)

        reply = await self.get_message(block=True)
        if reply is None:
            raise NoReply(key)

        logger.debug(f"Device message: {reply}")
        if reply != SUCCESS_REPLY:
            raise UnexpectedReply(key, reply)

    async def get_message(self, block: bool = True) -> Optional[str]:
        """Return the next decrypted device message, or None.

        Args:
            block: Wait up to the reply timeout; otherwise only poll.
        """
        delay = self._timeouts.reply_timeout if block else POLL_DELAY
        try:
            return await asyncio.wait_for(self._inbox.get(), timeout=delay)
        except asyncio.TimeoutError:
            return None

    async def pair(self, pin: int) -> Optional[PairingOutcome]:
        """Drive pairing with the device.

        Args:
            pin: 0 to request the PIN popup, the PIN shown on the device
                to complete pairing, a negative value to cancel.

        Returns:
            The pairing outcome on completion, None on cancel. The session
            is updated with the new key and id.

        Raises:
            PairingRequired: After the PIN popup has been requested.
            PairingError: If the PIN is wrong or validation fails.
        """
        if pin < 0:
            await self._pairer.cancel()
            return None

        if pin == 0:
            await self._pairer.announce(self._device_id)
            raise PairingRequired(
                "Pairing required: enter the PIN displayed on the device"
            )

        outcome = await self._pairer.complete(pin, self._device_id)
        self.restore_session_data(outcome.session_key, outcome.session_id)
        return outcome

    async def device_description(self) -> DeviceDescription:
        """Fetch the device description document."""
        body = await self._transport.get_text(
            f"http://{self._address}:{DESCRIPTION_PORT}/ms/1.0/"
        )
        return DeviceDescription.from_json(body)

    async def close(self) -> None:
        """Close the channel and reset to Disconnected. Idempotent."""
        async with self._lock:
            ws = self._ws
            task = self._reader_task
            self._ws = None
            self._reader_task = None
            if self._state != ConnectionState.DISCONNECTED:
                self._transition(ConnectionState.DISCONNECTED)

        if ws is not None:
            logger.debug("Closing channel")
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError) as e:
                logger.debug(f"Error closing channel: {e}")

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # Replies from this channel must not reach the next one
        while not self._inbox.empty():
            self._inbox.get_nowait()

        await self._transport.close()

    # =========================================================================
    # Internal methods
    # =========================================================================

    def _transition(self, new_state: ConnectionState) -> None:
        """Change connection state. Caller holds the lock."""
        if new_state not in _VALID_TRANSITIONS[self._state]:
            raise ValueError(f"Invalid transition: {self._state} -> {new_state}")
        logger.debug(f"Connection state {self._state.value} -> {new_state.value}")
        self._state = new_state

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    async def _open_channel(self) -> aiohttp.ClientWebSocketResponse:
        """Bootstrap over HTTP and dial the duplex channel."""
        base = f"{self._address}:{CHANNEL_PORT}/socket.io/1"
        t = int(time.time() * 1000)
        try:
            response = await self._transport.get_text(f"http://{base}/?t={t}")
        except TransportError as e:
            raise TransportError(f"Channel bootstrap failed: {e}") from e

        token = response.split(":", 1)[0].strip()
        if not token:
            raise TransportError("Channel bootstrap returned no session token")

        return await self._transport.ws_connect(f"ws://{base}/websocket/{token}")

    async def _discard_channel(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Drop a failed channel if it is still the current one."""
        async with self._lock:
            if self._ws is not ws:
                return
            self._ws = None
            if self._state != ConnectionState.DISCONNECTED:
                self._transition(ConnectionState.DISCONNECTED)

        if not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError) as e:
                logger.debug(f"Error closing channel: {e}")

    async def _send_frame(self, frame: str, discard_on_error: bool = True) -> None:
        """Write one text frame.

        Raises:
            TransportError: If there is no channel or the write fails.
        """
        async with self._lock:
            ws = self._ws
        if ws is None:
            raise TransportError("No active channel")

        logger.debug(f"Sending frame: {frame}")
        try:
            await asyncio.wait_for(
                ws.send_str(frame), timeout=self._timeouts.write_timeout
            )
        except (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError) as e:
            if discard_on_error:
                await self._discard_channel(ws)
            raise TransportError(f"Frame write failed: {e}") from e

    async def _read_frame(self, ws: aiohttp.ClientWebSocketResponse) -> Optional[str]:
        """Read one frame before the read deadline.

        Returns:
            Frame text, or None for non-text messages.

        Raises:
            TransportError: On timeout, close or error.
        """
        remaining = self._read_deadline - self._now()
        if remaining <= 0:
            raise TransportError("Read deadline exceeded")

        try:
            msg = await ws.receive(timeout=remaining)
        except asyncio.TimeoutError as e:
            raise TransportError("Read deadline exceeded") from e
        except (aiohttp.ClientError, ConnectionError) as e:
            raise TransportError(f"Channel read failed: {e}") from e

        if msg.type == aiohttp.WSMsgType.TEXT:
            logger.debug(f"Read frame: {msg.data}")
            return msg.data
        if msg.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
            aiohttp.WSMsgType.ERROR,
        ):
            raise TransportError(f"Channel closed ({msg.type.name})")

        logger.debug(f"Ignoring {msg.type.name} message")
        return None

    async def _read_loop(
        self, ws: aiohttp.ClientWebSocketResponse, handshake_done: asyncio.Event
    ) -> None:
        """Background task reading and dispatching frames for one channel."""
        logger.debug("Channel reader started")
        try:
            while True:
                try:
                    frame = await self._read_frame(ws)
                except TransportError as e:
                    logger.info(f"Socket read failed: {e}")
                    await self._discard_channel(ws)
                    break

                async with self._lock:
                    if self._ws is not ws:
                        break

                if frame is not None and not await self._dispatch(
                    ws, frame, handshake_done
                ):
                    break
        finally:
            handshake_done.set()
            logger.debug("Leaving channel reader loop")

    async def _dispatch(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        frame: str,
        handshake_done: asyncio.Event,
    ) -> bool:
        """Handle one frame. Returns False to stop the reader."""
        frame_type = classify_frame(frame)

        if frame_type == FrameType.GREETING:
            logger.debug("Got greetings from device")
            async with self._lock:
                state = self._state
            if state != ConnectionState.OPENING:
                logger.debug(f"Got greeting but current state is {state.value}")
                return True

            logger.debug("Sending handshake...")
            try:
                await self._send_frame(HANDSHAKE)
            except TransportError as e:
                logger.error(f"Could not send handshake: {e}")
                return False

            async with self._lock:
                if self._ws is ws and self._state == ConnectionState.OPENING:
                    self._transition(ConnectionState.HANDSHAKE_SENT)

        elif frame_type == FrameType.HANDSHAKE_ACK:
            async with self._lock:
                acked = self._ws is ws and self._state == ConnectionState.HANDSHAKE_SENT
                if acked:
                    self._transition(ConnectionState.CONNECTED)
            if acked:
                logger.debug("Handshake completed")
                handshake_done.set()
            else:
                logger.debug(f"Unexpected handshake ack in state {self._state.value}")

        elif frame_type == FrameType.KEEPALIVE:
            logger.debug("Keepalive received")
            try:
                await self._send_frame(KEEPALIVE, discard_on_error=False)
            except TransportError as e:
                logger.warning(f"Could not echo keepalive: {e}")
            self._read_deadline = self._now() + self._timeouts.read_timeout

        elif frame_type == FrameType.ENVELOPE:
            self._handle_envelope(frame)

        else:
            logger.info(f"Unhandled frame: {frame}")

        return True

    def _handle_envelope(self, frame: str) -> None:
        if not self.has_session:
            logger.error("Cannot decrypt message: no session key")
            return
        try:
            message = parse_envelope(frame, SessionCodec(self._session_key))
        except (InvalidResponse, CodecError) as e:
            logger.error(f"Could not parse message: {e}")
            return

        logger.debug(f"Device message: {message}")
        try:
            self._inbox.put_nowait(message)
        except asyncio.QueueFull:
            dropped = self._inbox.get_nowait()
            logger.warning(f"Inbox full, dropping oldest message: {dropped}")
            self._inbox.put_nowait(message)
