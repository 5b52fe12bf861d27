"""
The AMQP input.

:class:`AMQPInput` wires the pieces together for one worker: it opens the
broker session, declares the queue, binds it to the exchange when asked to,
and runs the :class:`~amqpbridge.consumer.SubscriptionLoop` as a background
task that forwards every delivery to the sink.

Example:
    >>> from amqpbridge import AMQPInput, AMQPInputConfig
    >>> from amqpbridge.testing import InMemorySink
    >>>
    >>> config = AMQPInputConfig(host="localhost", queue="logs")
    >>> sink = InMemorySink()
    >>> async with AMQPInput(config, sink) as amqp_input:
    ...     await asyncio.sleep(10)
    >>> sink.events
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from aio_pika.abc import AbstractChannel, AbstractQueue, AbstractRobustConnection

from amqpbridge.config import AMQPInputConfig
from amqpbridge.connection import ConnectionManager
from amqpbridge.consumer import AMQPInputStats, SubscriptionLoop
from amqpbridge.exceptions import ShutdownError, TopologyError
from amqpbridge.mapping import DeliveryMapper
from amqpbridge.observability import Tracer, create_tracer
from amqpbridge.sink import SinkAdapter
from amqpbridge.topology import BoundState, TopologyBinder


@dataclass
class HealthCheckResult:
    """Result of a health check on the AMQP input.

    Attributes:
        healthy: True if the connection, channel and queue are all usable.
        connection_status: "connected", "disconnected" or "closed".
        channel_status: "open", "closed" or "not_initialized".
        queue_status: "accessible", "not_initialized" or "error: <message>".
        consuming: Whether the subscription loop is running.
        error: Combined error messages, None when healthy.
        details: Queue, exchange, binding and counter information.
    """

    healthy: bool
    connection_status: str
    channel_status: str
    queue_status: str
    consuming: bool = False
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class AMQPInput:
    """
    Consumes one AMQP queue and emits its deliveries as events.

    Args:
        config: Input configuration
        sink: Receiver of ``(tag, time, record)`` triples; an object with an
            ``emit`` method or a callable, sync or async
        connection: Pre-built broker connection, mainly for tests
        tracer: Tracer for consumer spans; built from
            ``config.enable_tracing`` when omitted
        clock: Source of the current time for events without a time header
    """

    def __init__(
        self,
        config: AMQPInputConfig,
        sink: Any,
        *,
        connection: AbstractRobustConnection | None = None,
        tracer: Tracer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._sink = SinkAdapter(sink)
        self._connection_manager = ConnectionManager(
            config.connection_options(), connection=connection
        )
        self._binder = TopologyBinder(
            config.binding_policy,
            bind_attempts=config.bind_attempts,
            retry_delay=config.bind_retry_delay,
            declare_timeout=config.declare_timeout,
        )
        self._mapper = DeliveryMapper.from_config(config, clock=clock)
        self._tracer = tracer or create_tracer(__name__, config.enable_tracing)
        self._stats = AMQPInputStats()

        self._channel: AbstractChannel | None = None
        self._queue: AbstractQueue | None = None
        self._queue_name = config.queue_spec.name
        self._bound_state: BoundState | None = None
        self._loop: SubscriptionLoop | None = None
        self._consumer_task: asyncio.Task[None] | None = None
        self._shutdown_initiated = False
        self._logger = logging.getLogger(__name__)

    @property
    def config(self) -> AMQPInputConfig:
        return self._config

    @property
    def stats(self) -> AMQPInputStats:
        return self._stats

    @property
    def queue_name(self) -> str:
        """Name of the consumed queue, including any worker suffix."""
        return self._queue_name

    @property
    def bound_state(self) -> BoundState | None:
        return self._bound_state

    @property
    def is_connected(self) -> bool:
        return self._connection_manager.is_connected

    @property
    def is_consuming(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    async def start(self, worker_id: int = 0, workers: int = 1) -> BoundState:
        """
        Connect, declare, bind and start consuming.

        Consumption starts only when the binding gate is open: either the
        queue was bound, or no binding was requested.

        Args:
            worker_id: Index of this worker process
            workers: Total number of worker processes

        Returns:
            The binding outcome

        Raises:
            ShutdownError: If the input was already shut down
            BrokerConnectionError: If no broker host accepted the session
        """
        if self._shutdown_initiated:
            raise ShutdownError()

        if self._bound_state is not None:
            # A binding that gave up stays unbound; no further attempts
            self._logger.warning(
                "AMQP input already started",
                extra={"queue": self._queue_name, "bound": self._bound_state.bound},
            )
            return self._bound_state

        self._logger.info(
            f"Starting AMQP input for queue {self._queue_name}",
            extra={
                "queue": self._queue_name,
                "sink": self._sink.name,
                "worker_id": worker_id,
                "workers": workers,
            },
        )

        connection = await self._connection_manager.connect()
        self._stats.connected_at = datetime.now(UTC)

        try:
            self._channel = await connection.channel()
            if self._config.prefetch_count > 0:
                await self._channel.set_qos(prefetch_count=self._config.prefetch_count)

            queue_spec = self._binder.resolve_queue_name(
                self._config.queue_spec, worker_id, workers
            )
            self._queue_name = queue_spec.name
            self._queue = await self._binder.declare_queue(self._channel, queue_spec)

            if self._config.bind_exchange and self._config.exchange is not None:
                state = await self._binder.bind_queue(
                    self._channel, self._queue, self._config.exchange
                )
                self._stats.bind_attempts += state.attempts
            else:
                state = BoundState(requested=False)
        except BaseException:
            await self._connection_manager.close()
            raise

        self._bound_state = state

        if not state.gate_open:
            self._logger.warning(
                f"Queue {self._queue_name} is not bound; not consuming",
                extra={
                    "queue": self._queue_name,
                    "exchange": state.exchange,
                    "attempts": state.attempts,
                },
            )
            return state

        self._loop = SubscriptionLoop(
            self._mapper,
            queue_name=self._queue_name,
            tracer=self._tracer,
            no_ack=self._config.no_ack,
            stats=self._stats,
        )
        self._consumer_task = asyncio.create_task(
            self._loop.run(self._queue, self._sink.emit, state),
            name=f"amqpbridge-consumer-{self._queue_name}",
        )
        return state

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        Stop consuming and close the broker connection.

        An idle consumer is cancelled right away. A delivery in progress is
        allowed to finish; after ``timeout`` seconds the consumer task is
        cancelled. Safe to call repeatedly.
        """
        if self._shutdown_initiated:
            self._logger.debug("Shutdown already initiated, skipping")
            return

        self._shutdown_initiated = True
        self._logger.info(
            f"Shutting down AMQP input (timeout={timeout}s)",
            extra={"queue": self._queue_name, "timeout": timeout},
        )

        if self._loop is not None:
            self._loop.stop()

        task = self._consumer_task
        if task is not None and not task.done():
            await self._stop_consumer(task, timeout)

        self._consumer_task = None
        self._channel = None
        self._queue = None
        await self._connection_manager.close()

        self._logger.info("AMQP input shut down", extra={"queue": self._queue_name})

    async def _stop_consumer(self, task: asyncio.Task[None], timeout: float) -> None:
        if self._loop is not None and self._loop.in_flight:
            try:
                await asyncio.wait_for(self._loop.wait_idle(), timeout=timeout)
            except TimeoutError:
                self._logger.warning(
                    "Delivery in progress did not finish in time, cancelling",
                    extra={"queue": self._queue_name, "timeout": timeout},
                )

        # Between deliveries the loop is parked on the queue iterator
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        except Exception as e:
            self._logger.error(
                f"Consumer task failed: {e}",
                exc_info=True,
                extra={"queue": self._queue_name, "error": str(e)},
            )

    async def wait(self) -> None:
        """
        Wait until the consumer task finishes.

        Raises:
            TopologyError: If the input is not consuming
        """
        if self._consumer_task is None:
            raise TopologyError("AMQP input is not consuming")
        await self._consumer_task

    def get_stats_dict(self) -> dict[str, Any]:
        """Statistics as a JSON-serializable dictionary."""
        uptime_seconds: float | None = None
        if self._stats.connected_at is not None:
            uptime_seconds = (datetime.now(UTC) - self._stats.connected_at).total_seconds()

        return {
            "deliveries_received": self._stats.deliveries_received,
            "events_emitted": self._stats.events_emitted,
            "parse_fallbacks": self._stats.parse_fallbacks,
            "delivery_failures": self._stats.delivery_failures,
            "bind_attempts": self._stats.bind_attempts,
            "last_emit_at": (
                self._stats.last_emit_at.isoformat() if self._stats.last_emit_at else None
            ),
            "last_error_at": (
                self._stats.last_error_at.isoformat() if self._stats.last_error_at else None
            ),
            "connected_at": (
                self._stats.connected_at.isoformat() if self._stats.connected_at else None
            ),
            "is_connected": self.is_connected,
            "is_consuming": self.is_consuming,
            "uptime_seconds": uptime_seconds,
        }

    async def health_check(self) -> HealthCheckResult:
        """Check the connection, the channel and the consumed queue."""
        healthy = True
        error_messages: list[str] = []

        connection = self._connection_manager.connection
        if connection is None:
            connection_status = "disconnected"
            healthy = False
            error_messages.append("Not connected to RabbitMQ")
        elif connection.is_closed:
            connection_status = "closed"
            healthy = False
            error_messages.append("RabbitMQ connection is closed")
        else:
            connection_status = "connected"

        if self._channel is None:
            channel_status = "not_initialized"
            healthy = False
            error_messages.append("Channel not initialized")
        elif self._channel.is_closed:
            channel_status = "closed"
            healthy = False
            error_messages.append("AMQP channel is closed")
        else:
            channel_status = "open"

        queue_status = "not_initialized"
        if self._queue is not None and channel_status == "open":
            assert self._channel is not None
            try:
                await self._channel.declare_queue(name=self._queue_name, passive=True)
                queue_status = "accessible"
            except Exception as e:
                queue_status = f"error: {e}"
                healthy = False
                error_messages.append(f"Queue check failed: {e}")

        state = self._bound_state
        details: dict[str, Any] = {
            "queue": self._queue_name,
            "exchange": self._config.exchange_name,
            "sink": self._sink.name,
            "bind_requested": state.requested if state else self._config.bind_exchange,
            "bound": state.bound if state else False,
            "stats": {
                "deliveries_received": self._stats.deliveries_received,
                "events_emitted": self._stats.events_emitted,
                "delivery_failures": self._stats.delivery_failures,
            },
        }

        error = "; ".join(error_messages) if error_messages else None
        self._logger.debug(
            f"Health check completed: healthy={healthy}",
            extra={
                "healthy": healthy,
                "connection_status": connection_status,
                "channel_status": channel_status,
                "queue_status": queue_status,
            },
        )

        return HealthCheckResult(
            healthy=healthy,
            connection_status=connection_status,
            channel_status=channel_status,
            queue_status=queue_status,
            consuming=self.is_consuming,
            error=error,
            details=details,
        )

    async def __aenter__(self) -> AMQPInput:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.shutdown(timeout=self._config.shutdown_timeout)


__all__ = [
    "AMQPInput",
    "HealthCheckResult",
]
