"""
Event sink boundary.

The event pipeline that receives mapped events is external to the bridge.
Any object with an ``emit(tag, time, record)`` method, or any callable with
that signature, can be used as a sink; sync and async forms are both
accepted and normalized by :class:`SinkAdapter`.

Example:
    >>> class PrintSink:
    ...     def emit(self, tag, time, record):
    ...         print(tag, time.isoformat(), record)
    >>>
    >>> adapter = SinkAdapter(PrintSink())
    >>> await adapter.emit(event)
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from amqpbridge.events import Event

AsyncEmitFunc = Callable[[str, datetime, dict[str, Any]], Awaitable[None]]


@runtime_checkable
class EventSink(Protocol):
    """Protocol for the pipeline receiving ``(tag, time, record)`` triples."""

    def emit(self, tag: str, time: datetime, record: dict[str, Any]) -> Any:
        """Accept one event. May be a coroutine function."""
        ...


def get_sink_name(sink: Any) -> str:
    """Get a descriptive name for a sink for logging."""
    if hasattr(sink, "__class__") and sink.__class__.__name__ != "function":
        return str(sink.__class__.__name__)
    if hasattr(sink, "__name__"):
        return str(sink.__name__)
    return repr(sink)


class SinkAdapter:
    """
    Normalizes a sink to a single async ``emit(event)`` call.

    Accepts objects with a sync or async ``emit`` method, and sync or async
    callables taking ``(tag, time, record)``.

    Raises:
        TypeError: If the sink has no ``emit`` method and is not callable
    """

    def __init__(self, sink: Any) -> None:
        self._name = get_sink_name(sink)
        self._emit = self._normalize(sink)

    @staticmethod
    def _normalize(sink: Any) -> AsyncEmitFunc:
        if hasattr(sink, "emit"):
            target = sink.emit
        elif callable(sink):
            target = sink
        else:
            raise TypeError(f"Sink must have an emit() method or be callable, got {type(sink)}")

        if inspect.iscoroutinefunction(target):
            return target  # type: ignore[no-any-return]

        async def emit_wrapper(tag: str, time: datetime, record: dict[str, Any]) -> None:
            result = target(tag, time, record)
            # Sync callables may still hand back an awaitable
            if inspect.isawaitable(result):
                await result

        return emit_wrapper

    @property
    def name(self) -> str:
        return self._name

    async def emit(self, event: Event) -> None:
        """Emit one event to the wrapped sink."""
        await self._emit(event.tag, event.time, event.record)

    def __repr__(self) -> str:
        return f"SinkAdapter({self._name})"


__all__ = [
    "EventSink",
    "SinkAdapter",
    "get_sink_name",
]
