"""Tests for transport module."""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from samtv.errors import TransportError
from samtv.transport import HttpTransport


def make_response(status=200, text="ok"):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.text.return_value = text
    mock_response.__aenter__.return_value = mock_response
    mock_response.__aexit__.return_value = None
    return mock_response


class TestHttpTransportInit:
    """Tests for HttpTransport initialization."""

    def test_accepts_http_session(self):
        """Transport accepts an external HTTP session."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        transport = HttpTransport(http_session=session)

        assert transport._session is session
        assert transport._owns_session is False

    def test_creates_no_session_until_used(self):
        """Session is created lazily."""
        transport = HttpTransport()

        assert transport._session is None
        assert transport._owns_session is True


class TestHttpTransportRequests:
    """Tests for HTTP requests."""

    @pytest.mark.asyncio
    async def test_get_text(self):
        """GET returns the response body."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.return_value = make_response(text="token:60:60:websocket")
        transport = HttpTransport(http_session=session)

        body = await transport.get_text("http://tv:8000/socket.io/1/?t=1")

        assert body == "token:60:60:websocket"
        args, kwargs = session.request.call_args
        assert args == ("GET", "http://tv:8000/socket.io/1/?t=1")
        assert kwargs["timeout"].total == HttpTransport.REQUEST_TIMEOUT

    @pytest.mark.asyncio
    async def test_post_json_sets_content_type(self):
        """JSON bodies are posted as-is with a JSON content type."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.return_value = make_response()
        transport = HttpTransport(http_session=session)

        await transport.post_json("http://tv:8080/ws/pairing?step=1", '{"a":1}')

        args, kwargs = session.request.call_args
        assert args[0] == "POST"
        assert kwargs["data"] == '{"a":1}'
        assert kwargs["headers"] == {"Content-Type": "application/json"}

    @pytest.mark.asyncio
    async def test_post_form(self):
        """Form fields are passed as request data."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.return_value = make_response()
        transport = HttpTransport(http_session=session)

        await transport.post_form("http://tv:8080/ws/apps/CloudPINPage", {"data": "pin4"})

        assert session.request.call_args.kwargs["data"] == {"data": "pin4"}

    @pytest.mark.asyncio
    async def test_delete(self):
        """DELETE requests use the DELETE method."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.return_value = make_response()
        transport = HttpTransport(http_session=session)

        await transport.delete("http://tv:8080/ws/apps/CloudPINPage/run")

        assert session.request.call_args.args[0] == "DELETE"

    @pytest.mark.asyncio
    async def test_error_status_still_returns_body(self):
        """HTTP error statuses are logged, the body is returned."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.return_value = make_response(status=500, text="oops")
        transport = HttpTransport(http_session=session)

        assert await transport.get_text("http://tv/") == "oops"

    @pytest.mark.asyncio
    async def test_client_error_becomes_transport_error(self):
        """aiohttp errors are converted to TransportError."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.side_effect = aiohttp.ClientError("connection refused")
        transport = HttpTransport(http_session=session)

        with pytest.raises(TransportError):
            await transport.get_text("http://tv/")

    @pytest.mark.asyncio
    async def test_timeout_becomes_transport_error(self):
        """Timeouts are converted to TransportError."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.side_effect = asyncio.TimeoutError()
        transport = HttpTransport(http_session=session)

        with pytest.raises(TransportError):
            await transport.get_text("http://tv/")

    @pytest.mark.asyncio
    async def test_request_passes_auth_and_ssl(self):
        """Auth and certificate checking are forwarded."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.request.return_value = make_response()
        transport = HttpTransport(http_session=session)
        auth = aiohttp.BasicAuth("orchestrator", "password")

        await transport.request("POST", "https://svc/step1", data="{}", auth=auth, ssl=False)

        kwargs = session.request.call_args.kwargs
        assert kwargs["auth"] is auth
        assert kwargs["ssl"] is False


class TestHttpTransportWebSocket:
    """Tests for channel dialing."""

    @pytest.mark.asyncio
    async def test_ws_connect(self):
        """Dial returns the WebSocket response."""
        ws = object()
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.ws_connect = AsyncMock(return_value=ws)
        transport = HttpTransport(http_session=session)

        assert await transport.ws_connect("ws://tv:8000/socket.io/1/websocket/abc") is ws
        session.ws_connect.assert_awaited_once_with("ws://tv:8000/socket.io/1/websocket/abc")

    @pytest.mark.asyncio
    async def test_ws_connect_error(self):
        """Dial failures are converted to TransportError."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        session.ws_connect = AsyncMock(
            side_effect=aiohttp.ClientConnectionError("connection refused")
        )
        transport = HttpTransport(http_session=session)

        with pytest.raises(TransportError):
            await transport.ws_connect("ws://tv:8000/socket.io/1/websocket/abc")


class TestHttpTransportClose:
    """Tests for session lifecycle."""

    @pytest.mark.asyncio
    async def test_does_not_close_external_session(self):
        """Injected sessions belong to the caller."""
        session = AsyncMock(spec=aiohttp.ClientSession)
        transport = HttpTransport(http_session=session)

        await transport.close()

        session.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_closes_owned_session(self):
        """Context manager closes the session it created."""
        async with HttpTransport() as transport:
            session = transport._get_session()
            assert isinstance(session, aiohttp.ClientSession)

        assert session.closed
        assert transport._session is None
