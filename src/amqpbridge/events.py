"""
Deliveries received from the broker and the events produced from them.

A :class:`Delivery` is the broker-independent view of one incoming message.
An :class:`Event` is the ``(tag, time, record)`` triple handed to the sink.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from aio_pika.abc import AbstractIncomingMessage


@dataclass(frozen=True)
class Delivery:
    """
    One message received from the broker.

    Attributes:
        payload: Raw message body
        routing_key: Routing key the message was published with
        headers: AMQP message headers
        exchange: Exchange the message was published to, if known
        message_id: Broker message id, if set by the publisher
    """

    payload: bytes
    routing_key: str = ""
    headers: Mapping[str, Any] = field(default_factory=dict)
    exchange: str | None = None
    message_id: str | None = None

    @classmethod
    def from_message(cls, message: AbstractIncomingMessage) -> Delivery:
        """Build a delivery from an aio-pika incoming message."""
        return cls(
            payload=message.body,
            routing_key=message.routing_key or "",
            headers=dict(message.headers or {}),
            exchange=message.exchange,
            message_id=message.message_id,
        )

    @property
    def text(self) -> str:
        """The payload decoded as UTF-8, with undecodable bytes replaced."""
        return self.payload.decode("utf-8", errors="replace")


class Event(BaseModel):
    """
    A tagged, timestamped record ready to be emitted to the sink.

    Events are immutable once built.

    Attributes:
        tag: Routing tag in the event pipeline
        time: Event time (timezone-aware)
        record: The event body
    """

    model_config = ConfigDict(frozen=True)

    tag: str = Field(..., description="Routing tag in the event pipeline")
    time: datetime = Field(..., description="Event time")
    record: dict[str, Any] = Field(default_factory=dict, description="Event body")

    def as_tuple(self) -> tuple[str, datetime, dict[str, Any]]:
        """Return the ``(tag, time, record)`` triple."""
        return self.tag, self.time, self.record


__all__ = [
    "Delivery",
    "Event",
]
