"""
Consumption loop.

:class:`SubscriptionLoop` reads deliveries from the bound queue one at a
time, maps each to an :class:`~amqpbridge.events.Event` and hands it to the
sink before taking the next one, so events leave in the order the channel
delivered them.

A delivery that fails (for example a malformed time header, or a sink
error) is logged with its traceback and counted; the loop moves on to the
next delivery.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from aio_pika.abc import AbstractIncomingMessage, AbstractQueue
from opentelemetry.propagate import extract
from opentelemetry.trace import Status, StatusCode

from amqpbridge.events import Delivery, Event
from amqpbridge.exceptions import TopologyError
from amqpbridge.mapping import DeliveryMapper
from amqpbridge.observability import (
    ATTR_EVENT_TAG,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
    ATTR_PARSE_FALLBACK,
    NullTracer,
    SpanKindEnum,
    Tracer,
)
from amqpbridge.topology import BoundState

OnEvent = Callable[[Event], Awaitable[None]]


@dataclass
class AMQPInputStats:
    """
    Counters for the AMQP input.

    Attributes:
        deliveries_received: Deliveries taken from the queue
        events_emitted: Events handed to the sink successfully
        parse_fallbacks: Deliveries whose payload did not parse
        delivery_failures: Deliveries that could not be mapped or emitted
        bind_attempts: Bind attempts made at startup
        last_emit_at: Time of the last successful emit
        last_error_at: Time of the last failed delivery
        connected_at: Time the broker session was established
    """

    deliveries_received: int = 0
    events_emitted: int = 0
    parse_fallbacks: int = 0
    delivery_failures: int = 0
    bind_attempts: int = 0
    last_emit_at: datetime | None = None
    last_error_at: datetime | None = None
    connected_at: datetime | None = None


def _trace_carrier(headers: dict[str, Any]) -> dict[str, str]:
    carrier: dict[str, str] = {}
    for key, value in headers.items():
        if isinstance(value, bytes):
            carrier[key] = value.decode("utf-8", errors="replace")
        elif isinstance(value, str):
            carrier[key] = value
    return carrier


class SubscriptionLoop:
    """
    Drives consumption from one queue.

    Args:
        mapper: Delivery mapper shared by every delivery
        queue_name: Queue name, for logs and span attributes
        tracer: Tracer for per-delivery consumer spans
        no_ack: Consume in auto-acknowledge mode. When False, deliveries are
            acknowledged after a successful emit and rejected without
            requeueing when they fail.
        stats: Counters to update; a fresh instance is created if omitted
    """

    def __init__(
        self,
        mapper: DeliveryMapper,
        *,
        queue_name: str,
        tracer: Tracer | None = None,
        no_ack: bool = True,
        stats: AMQPInputStats | None = None,
    ) -> None:
        self._mapper = mapper
        self._queue_name = queue_name
        self._tracer = tracer or NullTracer()
        self._no_ack = no_ack
        self._stats = stats or AMQPInputStats()
        self._running = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._logger = logging.getLogger(__name__)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        """True while a delivery is being mapped or emitted."""
        return not self._idle.is_set()

    async def wait_idle(self) -> None:
        """Wait until no delivery is being processed."""
        await self._idle.wait()

    @property
    def stats(self) -> AMQPInputStats:
        return self._stats

    async def run(
        self,
        queue: AbstractQueue,
        on_event: OnEvent,
        state: BoundState | None = None,
    ) -> None:
        """
        Consume deliveries until stopped, cancelled or the connection closes.

        Args:
            queue: The declared (and bound) queue
            on_event: Coroutine receiving each mapped event
            state: Binding outcome; the loop refuses to start while its gate
                is closed

        Raises:
            TopologyError: If the binding gate is closed
        """
        if state is not None and not state.gate_open:
            raise TopologyError(
                f"Queue {self._queue_name} is not bound to {state.exchange}; not consuming"
            )

        self._running = True
        self._logger.info(
            f"Starting consumer on queue {self._queue_name}",
            extra={"queue": self._queue_name, "no_ack": self._no_ack},
        )

        try:
            async with queue.iterator(no_ack=self._no_ack) as queue_iter:
                async for message in queue_iter:
                    if not self._running:
                        break
                    await self.process_message(message, on_event)

        except asyncio.CancelledError:
            self._logger.info("Consumer loop cancelled", extra={"queue": self._queue_name})
        except Exception as e:
            self._logger.error(
                f"Error in consumer loop: {e}",
                exc_info=True,
                extra={
                    "queue": self._queue_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise
        finally:
            self._running = False
            self._logger.info(
                "Consumer loop stopped",
                extra={
                    "queue": self._queue_name,
                    "deliveries_received": self._stats.deliveries_received,
                    "events_emitted": self._stats.events_emitted,
                    "delivery_failures": self._stats.delivery_failures,
                },
            )

    def stop(self) -> None:
        """Ask the loop to stop after the delivery in progress."""
        self._running = False
        self._logger.info("Stop consuming requested", extra={"queue": self._queue_name})

    async def process_message(self, message: AbstractIncomingMessage, on_event: OnEvent) -> None:
        """Map and emit a single delivery."""
        self._idle.clear()
        try:
            await self._handle(message, on_event)
        finally:
            self._idle.set()

    async def _handle(self, message: AbstractIncomingMessage, on_event: OnEvent) -> None:
        delivery = Delivery.from_message(message)
        self._stats.deliveries_received += 1

        self._logger.debug(
            f"Received message on {delivery.exchange}",
            extra={
                "message_id": delivery.message_id,
                "routing_key": delivery.routing_key,
                "exchange": delivery.exchange,
            },
        )

        span = None
        if self._tracer.enabled:
            span = self._tracer.start_span(
                "amqpbridge.delivery.consume",
                kind=SpanKindEnum.CONSUMER,
                attributes={
                    ATTR_MESSAGING_SYSTEM: "rabbitmq",
                    ATTR_MESSAGING_DESTINATION: self._queue_name,
                    ATTR_MESSAGING_MESSAGE_ID: delivery.message_id or "",
                    ATTR_MESSAGING_ROUTING_KEY: delivery.routing_key,
                },
                context=extract(_trace_carrier(dict(delivery.headers))),
            )

        try:
            event, fell_back = self._mapper.map_with_status(delivery)
            if fell_back:
                self._stats.parse_fallbacks += 1
            if span:
                span.set_attribute(ATTR_EVENT_TAG, event.tag)
                span.set_attribute(ATTR_PARSE_FALLBACK, fell_back)

            await on_event(event)

            if not self._no_ack:
                await message.ack()

            self._stats.events_emitted += 1
            self._stats.last_emit_at = datetime.now(UTC)
            if span:
                span.set_status(Status(StatusCode.OK))

        except Exception as e:
            self._stats.delivery_failures += 1
            self._stats.last_error_at = datetime.now(UTC)

            if span:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)

            self._logger.error(
                f"Failed to process delivery: {e}",
                exc_info=True,
                extra={
                    "queue": self._queue_name,
                    "message_id": delivery.message_id,
                    "routing_key": delivery.routing_key,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            if not self._no_ack:
                await message.reject(requeue=False)

        finally:
            if span:
                span.end()


__all__ = [
    "AMQPInputStats",
    "OnEvent",
    "SubscriptionLoop",
]
