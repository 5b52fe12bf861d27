"""
Shared pytest fixtures for the amqpbridge tests.

This module provides:
- Broker doubles (make_message, make_queue, mock_channel, mock_connection)
- A fixed clock for deterministic event times
- Ready-made configuration and sink fixtures
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from amqpbridge.config import AMQPInputConfig
from amqpbridge.testing import InMemorySink

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Clock Fixtures
# =============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """The instant returned by the ``clock`` fixture."""
    return FIXED_NOW


@pytest.fixture
def clock(fixed_now: datetime) -> Callable[[], datetime]:
    """A clock that always returns ``fixed_now``."""
    return lambda: fixed_now


# =============================================================================
# Broker Doubles
# =============================================================================


def build_message(
    body: bytes | str = b"",
    *,
    routing_key: str = "",
    headers: dict[str, Any] | None = None,
    exchange: str | None = "app.logs",
    message_id: str | None = "msg-1",
) -> MagicMock:
    """Create a mock aio-pika incoming message."""
    message = MagicMock()
    message.body = body.encode("utf-8") if isinstance(body, str) else body
    message.routing_key = routing_key
    message.headers = headers or {}
    message.exchange = exchange
    message.message_id = message_id
    message.ack = AsyncMock()
    message.reject = AsyncMock()
    return message


def build_queue(
    messages: list[MagicMock] | None = None,
    *,
    name: str = "logs",
    block: bool = False,
) -> MagicMock:
    """
    Create a mock queue whose iterator yields ``messages``.

    With ``block`` the iterator waits forever after the last message, the
    way a real consumer waits on an empty queue.
    """

    async def message_iterator() -> AsyncIterator[MagicMock]:
        for message in messages or []:
            yield message
        if block:
            await asyncio.Event().wait()

    queue_iter = AsyncMock()
    queue_iter.__aenter__ = AsyncMock(return_value=message_iterator())
    queue_iter.__aexit__ = AsyncMock(return_value=None)

    queue = AsyncMock()
    queue.name = name
    queue.iterator = MagicMock(return_value=queue_iter)
    queue.bind = AsyncMock()
    return queue


@pytest.fixture
def make_message() -> Callable[..., MagicMock]:
    """Factory for mock incoming messages."""
    return build_message


@pytest.fixture
def make_queue() -> Callable[..., MagicMock]:
    """Factory for mock queues."""
    return build_queue


@pytest.fixture
def mock_queue() -> MagicMock:
    """An empty queue that blocks like an idle broker queue."""
    return build_queue(block=True)


@pytest.fixture
def mock_channel(mock_queue: MagicMock) -> AsyncMock:
    """A channel declaring ``mock_queue``."""
    channel = AsyncMock()
    channel.is_closed = False
    channel.declare_queue = AsyncMock(return_value=mock_queue)
    channel.declare_exchange = AsyncMock()
    channel.set_qos = AsyncMock()
    return channel


@pytest.fixture
def mock_connection(mock_channel: AsyncMock) -> AsyncMock:
    """An open robust connection handing out ``mock_channel``."""
    connection = AsyncMock()
    connection.is_closed = False
    connection.channel = AsyncMock(return_value=mock_channel)
    connection.close = AsyncMock()
    return connection


# =============================================================================
# Configuration and Sink Fixtures
# =============================================================================


@pytest.fixture
def config() -> AMQPInputConfig:
    """Minimal configuration: one host, one queue, no binding."""
    return AMQPInputConfig(host="localhost", queue="logs", enable_tracing=False)


@pytest.fixture
def bind_config() -> AMQPInputConfig:
    """Configuration binding ``logs`` to the ``app.logs`` topic exchange."""
    from amqpbridge.config import ExchangeSpec

    return AMQPInputConfig(
        host="localhost",
        queue="logs",
        exchange=ExchangeSpec(name="app.logs", routing_key="app.#"),
        bind_exchange=True,
        bind_retry_delay=0.0,
        enable_tracing=False,
    )


@pytest.fixture
def sink() -> InMemorySink:
    """A sink recording emitted events."""
    return InMemorySink()
