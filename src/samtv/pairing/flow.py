"""PIN pairing with the device.

Pairing is two-phase: ``announce`` asks the device to show its PIN
popup, then ``complete`` runs the key negotiation with the PIN the user
read on screen. A negative PIN cancels (closes the popup).

The device PIN popup is always dismissed after ``complete``, whatever
the outcome.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum, auto

from samtv.errors import ConfigurationError, InvalidResponse, SamtvError
from samtv.pairing.backends import LocalPairingBackend, PairingBackend
from samtv.transport import HttpTransport

logger = logging.getLogger(__name__)

PAIRING_PORT = 8080

_STATE_RE = re.compile(r"<state>([^<]+)</state>")


class PairingState(Enum):
    """Pairing attempt states."""

    IDLE = auto()
    ANNOUNCED = auto()
    NEGOTIATING = auto()
    ACKNOWLEDGING = auto()
    PAIRED = auto()
    FAILED = auto()


@dataclass
class PairingAttempt:
    """One pairing attempt and its progress.

    Attributes:
        device_id: Client device identifier.
        state: Current pairing state.
        started_at: Unix timestamp when the attempt started.
    """

    device_id: str
    state: PairingState = PairingState.IDLE
    started_at: float = field(default_factory=time.time)

    def transition_to(self, new_state: PairingState) -> None:
        """Transition to a new state with validation.

        Raises:
            ValueError: If transition is not valid from current state.
        """
        valid_transitions = {
            PairingState.IDLE: {PairingState.ANNOUNCED, PairingState.NEGOTIATING},
            PairingState.ANNOUNCED: set(),
            PairingState.NEGOTIATING: {PairingState.ACKNOWLEDGING, PairingState.FAILED},
            PairingState.ACKNOWLEDGING: {PairingState.PAIRED, PairingState.FAILED},
            PairingState.PAIRED: set(),
            PairingState.FAILED: set(),
        }

        if new_state not in valid_transitions.get(self.state, set()):
            raise ValueError(f"Invalid transition: {self.state} -> {new_state}")

        self.state = new_state


@dataclass(frozen=True)
class PairingOutcome:
    """Credentials produced by a successful pairing."""

    device_id: str
    session_id: int
    session_key: bytes

    @property
    def session_key_hex(self) -> str:
        """Session key as the 32-char hex string users save."""
        return self.session_key.hex()


class Pairer:
    """Runs the pairing steps against the device's HTTP endpoints."""

    def __init__(
        self,
        address: str,
        transport: HttpTransport,
        backend: PairingBackend | None = None,
    ):
        """Initialize pairer.

        Args:
            address: Device host (no port).
            transport: HTTP transport.
            backend: Key negotiation backend. Only needed to complete
                pairing; announcing and cancelling work without one.
        """
        self._address = address
        self._transport = transport
        self._backend = backend
        self.last_attempt: PairingAttempt | None = None

    @property
    def app_id(self) -> str:
        if self._backend is None:
            return LocalPairingBackend.app_id
        return self._backend.app_id

    @property
    def pin_page_url(self) -> str:
        return f"http://{self._address}:{PAIRING_PORT}/ws/apps/CloudPINPage"

    def step_url(self, step: int, device_id: str) -> str:
        """URL of a numbered pairing step on the device."""
        return (
            f"http://{self._address}:{PAIRING_PORT}/ws/pairing?step={step}"
            f"&app_id={self.app_id}&device_id={device_id}&type=1"
        )

    async def announce(self, device_id: str) -> None:
        """Show the PIN popup on the device and start pairing (step 0)."""
        attempt = PairingAttempt(device_id=device_id)
        self.last_attempt = attempt
        logger.debug("Initiating step #0")

        try:
            state = await self.pin_page_state()
        except SamtvError as e:
            logger.info(f"Could not fetch PIN page status: {e}")
            state = "stopped"
        logger.debug(f"PIN page is {state}")

        if state != "running":
            logger.info("Requesting PIN page popup...")
            await self.open_pin_page()

        reply = await self._transport.get_text(self.step_url(0, device_id))
        logger.debug(f"Pairing request response: {reply}")
        attempt.transition_to(PairingState.ANNOUNCED)

    async def complete(self, pin: int, device_id: str) -> PairingOutcome:
        """Negotiate the session key with the PIN shown on the device.

        All-or-nothing: the outcome is only returned if every step
        succeeds.

        Raises:
            HandshakeRejected: Wrong PIN or unexpected device hello.
            AckValidationFailed: Device acknowledgement mismatch.
            InvalidResponse: Malformed device or service reply.
            TransportError: Device or service unreachable.
        """
        if pin <= 0:
            raise ValueError("PIN must be positive")
        if self._backend is None:
            raise ConfigurationError("No pairing backend configured")

        attempt = PairingAttempt(device_id=device_id)
        self.last_attempt = attempt

        async def post_step(step: int, body: str) -> str:
            reply = await self._transport.post_json(self.step_url(step, device_id), body)
            logger.debug(f"Step #{step} response: {reply}")
            return reply

        try:
            attempt.transition_to(PairingState.NEGOTIATING)
            negotiation = await self._backend.negotiate_key(pin, device_id, post_step)
            attempt.transition_to(PairingState.ACKNOWLEDGING)
            agreement = await self._backend.acknowledge(negotiation, post_step)
            attempt.transition_to(PairingState.PAIRED)
        except SamtvError:
            attempt.transition_to(PairingState.FAILED)
            raise
        finally:
            await self._dismiss_pin_page()

        elapsed = time.time() - attempt.started_at
        logger.info(f"Pairing successful! ({elapsed:.1f}s)")
        return PairingOutcome(
            device_id=device_id,
            session_id=agreement.session_id,
            session_key=agreement.session_key,
        )

    async def cancel(self) -> None:
        """Close the PIN popup."""
        await self.close_pin_page()

    async def pin_page_state(self) -> str:
        """Return the PIN popup state (``running``, ``stopped``...).

        Raises:
            InvalidResponse: If the status document is not recognized.
        """
        body = await self._transport.get_text(self.pin_page_url)
        if "<name>CloudPINPage</name>" not in body:
            raise InvalidResponse("Unexpected PIN page status contents")
        match = _STATE_RE.search(body)
        if match is None:
            raise InvalidResponse("Could not parse PIN page status")
        return match.group(1)

    async def open_pin_page(self) -> None:
        reply = await self._transport.post_form(self.pin_page_url, {"data": "pin4"})
        logger.debug(f"PIN page response: {reply}")

    async def close_pin_page(self) -> None:
        await self._transport.delete(f"{self.pin_page_url}/run")

    async def _dismiss_pin_page(self) -> None:
        try:
            await self.close_pin_page()
        except SamtvError as e:
            logger.info(f"Could not close PIN page: {e}")
