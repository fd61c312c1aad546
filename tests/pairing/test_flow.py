"""Tests for the pairing flow."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from samtv.errors import (
    AckValidationFailed,
    ConfigurationError,
    HandshakeRejected,
    TransportError,
)
from samtv.pairing import (
    LocalPairingBackend,
    Pairer,
    PairingAttempt,
    PairingState,
)
from samtv.transport import HttpTransport

SESSION_KEY = bytes(range(16))
PIN_PAGE = "http://192.168.1.20:8080/ws/apps/CloudPINPage"

PIN_PAGE_STATUS = """<?xml version="1.0" encoding="UTF-8"?>
<service xmlns="urn:dial-multiscreen-org:schemas:dial">
  <name>CloudPINPage</name>
  <options allowStop="true"/>
  <state>{state}</state>
</service>"""


class FakeKeyExchange:
    def __init__(self, pin="1234"):
        self.pin = pin

    def server_hello(self, user_id, pin):
        return b"\x01", {"pin": pin}

    def client_hello(self, context, hello):
        if context["pin"] != self.pin:
            raise ValueError("wrong PIN")
        return b"secret", SESSION_KEY

    def server_ack(self, secret):
        return "SERVERACK"

    def verify_client_ack(self, ack, secret):
        return ack == "CLIENTACK"


def device_step_replies(ack="CLIENTACK"):
    async def post_json(url, body):
        if "step=1" in url:
            return json.dumps(
                {"auth_data": json.dumps({"request_id": "7", "GeneratorClientHello": "ab"})}
            )
        return json.dumps({"auth_data": json.dumps({"session_id": "5", "ClientAckMsg": ack})})

    return post_json


@pytest.fixture
def transport():
    return AsyncMock(spec=HttpTransport)


class TestPairingAttempt:
    """Test pairing state transitions."""

    def test_successful_path(self):
        """Negotiation then acknowledge reaches Paired."""
        attempt = PairingAttempt(device_id="samtv")

        attempt.transition_to(PairingState.NEGOTIATING)
        attempt.transition_to(PairingState.ACKNOWLEDGING)
        attempt.transition_to(PairingState.PAIRED)

        assert attempt.state == PairingState.PAIRED

    def test_failure_from_negotiating(self):
        """Negotiation can fail."""
        attempt = PairingAttempt(device_id="samtv")
        attempt.transition_to(PairingState.NEGOTIATING)
        attempt.transition_to(PairingState.FAILED)

        assert attempt.state == PairingState.FAILED

    @pytest.mark.parametrize(
        "path",
        [
            [PairingState.PAIRED],
            [PairingState.ACKNOWLEDGING],
            [PairingState.ANNOUNCED, PairingState.NEGOTIATING],
            [PairingState.NEGOTIATING, PairingState.PAIRED],
        ],
    )
    def test_invalid_transitions(self, path):
        """Steps cannot be skipped."""
        attempt = PairingAttempt(device_id="samtv")
        with pytest.raises(ValueError):
            for state in path:
                attempt.transition_to(state)


class TestPairerUrls:
    """Test device endpoint URLs."""

    def test_step_url_local(self, transport):
        """Local backend identifies as samtvcli."""
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(FakeKeyExchange()))

        assert pairer.step_url(1, "samtv") == (
            "http://192.168.1.20:8080/ws/pairing?step=1"
            "&app_id=samtvcli&device_id=samtv&type=1"
        )

    def test_step_url_backend_app_id(self, transport):
        """The app id follows the backend."""
        backend = AsyncMock()
        backend.app_id = "com.samsung.companion"
        pairer = Pairer("192.168.1.20", transport, backend)

        assert "&app_id=com.samsung.companion&" in pairer.step_url(0, "samtv")

    def test_pin_page_url(self, transport):
        assert Pairer("192.168.1.20", transport).pin_page_url == PIN_PAGE


class TestAnnounce:
    """Test requesting the PIN popup."""

    @pytest.mark.asyncio
    async def test_opens_stopped_popup(self, transport):
        """A stopped popup is started before step 0."""
        transport.get_text.return_value = PIN_PAGE_STATUS.format(state="stopped")
        pairer = Pairer("192.168.1.20", transport)

        await pairer.announce("samtv")

        transport.post_form.assert_awaited_once_with(PIN_PAGE, {"data": "pin4"})
        assert "step=0" in transport.get_text.await_args_list[-1].args[0]
        assert pairer.last_attempt.state == PairingState.ANNOUNCED

    @pytest.mark.asyncio
    async def test_running_popup_not_reopened(self, transport):
        """A running popup is left alone."""
        transport.get_text.return_value = PIN_PAGE_STATUS.format(state="running")
        pairer = Pairer("192.168.1.20", transport)

        await pairer.announce("samtv")

        transport.post_form.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_failure_assumes_stopped(self, transport):
        """An unreadable status still opens the popup."""
        transport.get_text.side_effect = [TransportError("timeout"), "ok"]
        pairer = Pairer("192.168.1.20", transport)

        await pairer.announce("samtv")

        transport.post_form.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pin_page_state(self, transport):
        """The popup state is read from the status document."""
        transport.get_text.return_value = PIN_PAGE_STATUS.format(state="running")

        assert await Pairer("192.168.1.20", transport).pin_page_state() == "running"


class TestComplete:
    """Test completing pairing with a PIN."""

    @pytest.mark.asyncio
    async def test_success(self, transport):
        """Right PIN produces the session credentials."""
        transport.post_json.side_effect = device_step_replies()
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(FakeKeyExchange()))

        outcome = await pairer.complete(1234, "samtv")

        assert outcome.device_id == "samtv"
        assert outcome.session_id == 5
        assert outcome.session_key == SESSION_KEY
        assert outcome.session_key_hex == SESSION_KEY.hex()
        assert pairer.last_attempt.state == PairingState.PAIRED
        transport.delete.assert_awaited_once_with(f"{PIN_PAGE}/run")

    @pytest.mark.asyncio
    async def test_wrong_pin_still_dismisses_popup(self, transport):
        """A rejected PIN fails the attempt and closes the popup."""
        transport.post_json.side_effect = device_step_replies()
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(FakeKeyExchange()))

        with pytest.raises(HandshakeRejected):
            await pairer.complete(9999, "samtv")

        assert pairer.last_attempt.state == PairingState.FAILED
        transport.delete.assert_awaited_once_with(f"{PIN_PAGE}/run")

    @pytest.mark.asyncio
    async def test_bad_ack(self, transport):
        """A forged device ack fails the attempt."""
        transport.post_json.side_effect = device_step_replies(ack="FORGED")
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(FakeKeyExchange()))

        with pytest.raises(AckValidationFailed):
            await pairer.complete(1234, "samtv")

        assert pairer.last_attempt.state == PairingState.FAILED
        transport.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dismiss_failure_does_not_mask_result(self, transport):
        """Failing to close the popup is only logged."""
        transport.post_json.side_effect = device_step_replies()
        transport.delete.side_effect = TransportError("gone")
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(FakeKeyExchange()))

        outcome = await pairer.complete(1234, "samtv")

        assert outcome.session_id == 5

    @pytest.mark.asyncio
    async def test_requires_positive_pin(self, transport):
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(FakeKeyExchange()))

        with pytest.raises(ValueError):
            await pairer.complete(0, "samtv")

    @pytest.mark.asyncio
    async def test_requires_backend(self, transport):
        """Completing without a backend is a configuration error."""
        with pytest.raises(ConfigurationError):
            await Pairer("192.168.1.20", transport).complete(1234, "samtv")

    @pytest.mark.asyncio
    async def test_cancel_closes_popup(self, transport):
        """Cancel deletes the running popup."""
        await Pairer("192.168.1.20", transport).cancel()

        transport.delete.assert_awaited_once_with(f"{PIN_PAGE}/run")

    @pytest.mark.asyncio
    async def test_key_exchange_hello_error_fails_attempt(self, transport):
        """A key exchange that cannot build its hello fails the attempt."""
        kx = FakeKeyExchange()
        kx.server_hello = MagicMock(side_effect=RuntimeError("no entropy"))
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(kx))

        with pytest.raises(HandshakeRejected):
            await pairer.complete(1234, "samtv")

        assert pairer.last_attempt.state == PairingState.FAILED
        transport.post_json.assert_not_awaited()
        transport.delete.assert_awaited_once_with(f"{PIN_PAGE}/run")

    @pytest.mark.asyncio
    async def test_key_exchange_ack_error_fails_attempt(self, transport):
        """A key exchange that cannot build its ack fails the attempt."""
        transport.post_json.side_effect = device_step_replies()
        kx = FakeKeyExchange()
        kx.server_ack = MagicMock(side_effect=RuntimeError("bad state"))
        pairer = Pairer("192.168.1.20", transport, LocalPairingBackend(kx))

        with pytest.raises(AckValidationFailed):
            await pairer.complete(1234, "samtv")

        assert pairer.last_attempt.state == PairingState.FAILED
        transport.delete.assert_awaited_once()
