"""
Queue and exchange topology.

:class:`TopologyBinder` declares the consumer queue and, when requested,
binds it to an exchange. Binding follows one of two policies:

- ``SIMPLE_RETRY``: bind up to ``bind_attempts`` times, waiting
  ``retry_delay`` seconds between attempts on transient broker errors.
- ``DECLARE_THEN_BIND``: declare the exchange first on a best-effort basis,
  then bind exactly once.

Either way the result is a :class:`BoundState`; consumption may only start
when its gate is open.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractQueue
from aio_pika.exceptions import (
    AMQPError,
    ChannelClosed,
    ChannelInvalidStateError,
    ChannelNotFoundEntity,
)

from amqpbridge.config import BindingPolicy, ExchangeSpec, QueueSpec

logger = logging.getLogger(__name__)

# Broker 404 (exchange missing) and operations on a channel the broker closed
TRANSIENT_BIND_ERRORS: tuple[type[Exception], ...] = (
    ChannelNotFoundEntity,
    ChannelClosed,
    ChannelInvalidStateError,
)


@dataclass
class BoundState:
    """
    Outcome of the binding step.

    Attributes:
        requested: Whether a binding was configured at all
        bound: Whether the broker confirmed the binding
        attempts: Number of bind attempts made
        exchange: Exchange the queue was bound to (or meant to be)
        routing_key: Binding pattern used
    """

    requested: bool
    bound: bool = False
    attempts: int = 0
    exchange: str | None = None
    routing_key: str | None = None

    @property
    def gate_open(self) -> bool:
        """True when consumption may start."""
        return self.bound or not self.requested


class TopologyBinder:
    """
    Declares the queue and binds it to the exchange.

    Args:
        policy: Binding policy
        bind_attempts: Attempts for the simple retry policy
        retry_delay: Seconds between attempts
        declare_timeout: Seconds allowed for the exchange declaration
    """

    def __init__(
        self,
        policy: BindingPolicy = BindingPolicy.SIMPLE_RETRY,
        *,
        bind_attempts: int = 3,
        retry_delay: float = 1.0,
        declare_timeout: float = 10.0,
    ) -> None:
        self.policy = policy
        self.bind_attempts = bind_attempts
        self.retry_delay = retry_delay
        self.declare_timeout = declare_timeout
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def resolve_queue_name(spec: QueueSpec, worker_id: int = 0, workers: int = 1) -> QueueSpec:
        """
        Return the queue spec to declare for this worker.

        Exclusive queues cannot be shared between worker processes, so every
        worker except the first consumes from ``<queue>.<worker_id>``.

        Example:
            >>> spec = QueueSpec(name="logs", exclusive=True)
            >>> TopologyBinder.resolve_queue_name(spec, worker_id=2, workers=4).name
            'logs.2'
        """
        if not (spec.exclusive and workers > 1 and worker_id > 0):
            return spec

        logger.info("Config requested exclusive queue with multiple workers")
        renamed = spec.with_name(f"{spec.name}.{worker_id}")
        logger.info(
            f"Renamed queue name to include worker id: {renamed.name}",
            extra={"queue": spec.name, "renamed_queue": renamed.name, "worker_id": worker_id},
        )
        return renamed

    async def declare_queue(self, channel: AbstractChannel, spec: QueueSpec) -> AbstractQueue:
        """Declare (or, when passive, look up) the consumer queue."""
        queue = await channel.declare_queue(
            name=spec.name,
            durable=spec.durable,
            exclusive=spec.exclusive,
            passive=spec.passive,
            auto_delete=spec.auto_delete,
        )

        self._logger.info(
            f"Declared queue: {spec.name}",
            extra={
                "queue_name": spec.name,
                "durable": spec.durable,
                "exclusive": spec.exclusive,
                "passive": spec.passive,
                "auto_delete": spec.auto_delete,
            },
        )
        return queue

    async def declare_exchange(self, channel: AbstractChannel, exchange: ExchangeSpec) -> bool:
        """
        Declare the exchange once, without failing the caller.

        A timeout or broker error is logged as a warning: the exchange may
        well exist already and the bind that follows decides.

        Returns:
            True if the declaration succeeded
        """
        try:
            await asyncio.wait_for(
                channel.declare_exchange(
                    name=exchange.name,
                    type=ExchangeType(exchange.type.lower()),
                    durable=exchange.durable,
                    auto_delete=exchange.auto_delete,
                    passive=exchange.passive,
                ),
                timeout=self.declare_timeout,
            )
        except (TimeoutError, AMQPError) as e:
            self._logger.warning(
                f"Exchange {exchange.name} could not be declared: {e!r}",
                extra={
                    "exchange_name": exchange.name,
                    "exchange_type": exchange.type,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return False

        self._logger.info(
            f"Declared exchange: {exchange.name}",
            extra={
                "exchange_name": exchange.name,
                "exchange_type": exchange.type,
                "durable": exchange.durable,
                "auto_delete": exchange.auto_delete,
                "passive": exchange.passive,
            },
        )
        return True

    async def bind_queue(
        self,
        channel: AbstractChannel,
        queue: AbstractQueue,
        exchange: ExchangeSpec,
    ) -> BoundState:
        """
        Bind the queue to the exchange using the configured policy.

        Transient failures are absorbed and reported through the returned
        state; any other broker error propagates.
        """
        if self.policy is BindingPolicy.DECLARE_THEN_BIND:
            await self.declare_exchange(channel, exchange)
            attempts = 1
        else:
            attempts = self.bind_attempts

        state = BoundState(
            requested=True,
            exchange=exchange.name,
            routing_key=exchange.routing_key,
        )

        for attempt in range(1, attempts + 1):
            state.attempts = attempt
            if await self._bind_once(queue, exchange, attempt, attempts):
                state.bound = True
                break
            if attempt < attempts:
                await asyncio.sleep(self.retry_delay)

        if not state.bound:
            self._logger.warning(
                f"Giving up binding {queue.name} to {exchange.name} after {state.attempts} "
                f"attempt(s); deliveries will not be consumed",
                extra={
                    "queue_name": queue.name,
                    "exchange_name": exchange.name,
                    "attempts": state.attempts,
                    "policy": self.policy.value,
                },
            )
        return state

    async def _bind_once(
        self,
        queue: AbstractQueue,
        exchange: ExchangeSpec,
        attempt: int,
        attempts: int,
    ) -> bool:
        self._logger.info(
            f"Binding {queue.name} to {exchange.name}, routing_key={exchange.routing_key} "
            f"(Attempt {attempt}/{attempts})",
            extra={
                "queue_name": queue.name,
                "exchange_name": exchange.name,
                "routing_key": exchange.routing_key,
                "attempt": attempt,
            },
        )
        try:
            await queue.bind(exchange.name, routing_key=exchange.routing_key)
        except TRANSIENT_BIND_ERRORS as e:
            self._logger.warning(
                f"Exchange {exchange.name} could not be bound: {e!r}",
                extra={
                    "queue_name": queue.name,
                    "exchange_name": exchange.name,
                    "attempt": attempt,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return False
        return True


__all__ = [
    "BoundState",
    "TRANSIENT_BIND_ERRORS",
    "TopologyBinder",
]
