"""HTTP and WebSocket transport for talking to the device.

Wraps an aiohttp ClientSession and converts client errors into
TransportError so callers deal with a single failure type.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from samtv.errors import TransportError

logger = logging.getLogger(__name__)


class HttpTransport:
    """Request/response and duplex-channel primitives.

    Features:
    - Lazily created aiohttp session (or an injected one, for testing)
    - Per-request timeout
    - Context manager for session lifecycle
    """

    # Request timeout
    REQUEST_TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        http_session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        """Initialize transport.

        Args:
            http_session: Optional aiohttp session (for testing).
            request_timeout: Timeout for each HTTP request and channel dial.
        """
        self._session = http_session
        self._owns_session = http_session is None
        self._request_timeout = request_timeout

    async def __aenter__(self):
        """Enter async context."""
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        data: Any = None,
        headers: Optional[dict[str, str]] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
        ssl: bool = True,
    ) -> str:
        """Send an HTTP request and return the response body.

        Raises:
            TransportError: If the request cannot be sent or read.
        """
        logger.debug(f"{method} {url}")
        try:
            async with self._get_session().request(
                method,
                url,
                data=data,
                headers=headers,
                auth=auth,
                ssl=ssl,
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    logger.warning(f"{method} {url} returned {resp.status}: {text[:100]}")
                return text
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    async def get_text(self, url: str) -> str:
        """GET a URL and return its body."""
        return await self.request("GET", url)

    async def post_form(self, url: str, fields: dict[str, str]) -> str:
        """POST form-encoded fields."""
        return await self.request("POST", url, data=fields)

    async def post_json(self, url: str, body: str) -> str:
        """POST an already-encoded JSON document."""
        return await self.request(
            "POST", url, data=body, headers={"Content-Type": "application/json"}
        )

    async def delete(self, url: str) -> str:
        """Send a DELETE request."""
        return await self.request("DELETE", url)

    async def ws_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        """Dial the duplex channel.

        Raises:
            TransportError: If the WebSocket cannot be opened.
        """
        logger.debug(f"Dialing {url}")
        try:
            return await asyncio.wait_for(
                self._get_session().ws_connect(url),
                timeout=self._request_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Cannot connect to WebSocket {url}: {e}") from e

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None
