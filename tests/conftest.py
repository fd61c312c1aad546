"""Pytest configuration and shared fixtures."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from helpers import BOOTSTRAP_REPLY, FakeWebSocket, handshake_responder
from samtv.transport import HttpTransport


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from samtv.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def settle_background_tasks():
    """Let cancelled reader tasks finish before the loop closes."""
    yield
    await asyncio.sleep(0)


@pytest.fixture
def fake_ws():
    """WebSocket that greets like the device and acks the handshake."""
    ws = FakeWebSocket()
    ws.feed("1::")
    ws.responder = handshake_responder
    return ws


@pytest.fixture
def transport(fake_ws):
    """Transport mock serving the channel bootstrap and the fake socket."""
    mock = AsyncMock(spec=HttpTransport)
    mock.get_text.return_value = BOOTSTRAP_REPLY
    mock.ws_connect.return_value = fake_ws
    return mock
