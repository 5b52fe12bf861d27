"""
Tracer protocol and implementations for composition-based tracing.

The consumer receives a tracer as a dependency instead of talking to
OpenTelemetry directly, which keeps it easy to test with :class:`MockTracer`
or to silence with :class:`NullTracer`.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> span = tracer.start_span("amqpbridge.delivery.consume", kind=SpanKindEnum.CONSUMER)
    >>> try:
    ...     handle_delivery()
    ... finally:
    ...     if span:
    ...         span.end()
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace
from opentelemetry.trace import SpanKind

if TYPE_CHECKING:
    from opentelemetry.trace import Span


class SpanKindEnum(Enum):
    """
    Span kinds for distributed tracing.

    Mirrors the OpenTelemetry span kinds the bridge uses.
    """

    INTERNAL = "internal"
    CONSUMER = "consumer"
    CLIENT = "client"


_OTEL_KINDS = {
    SpanKindEnum.INTERNAL: SpanKind.INTERNAL,
    SpanKindEnum.CONSUMER: SpanKind.CONSUMER,
    SpanKindEnum.CLIENT: SpanKind.CLIENT,
}


@runtime_checkable
class Tracer(Protocol):
    """
    Protocol for tracers that can create tracing spans.

    Implementations:
    - NullTracer: No-op tracer for when tracing is disabled
    - OpenTelemetryTracer: Wrapper around the OpenTelemetry tracer
    - MockTracer: Records span names and attributes for tests
    """

    @property
    def enabled(self) -> bool:
        """True if the tracer creates real spans."""
        ...

    def start_span(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
        context: Any | None = None,
    ) -> Span | None:
        """
        Start a new span that the caller must end.

        Args:
            name: Span name
            kind: The span kind
            attributes: Span attributes (optional)
            context: Parent context, e.g. extracted from message headers

        Returns:
            The span, or None when tracing is disabled
        """
        ...


class NullTracer:
    """No-op tracer used when tracing is disabled."""

    @property
    def enabled(self) -> bool:
        return False

    def start_span(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
        context: Any | None = None,
    ) -> None:
        return None


class OpenTelemetryTracer:
    """
    OpenTelemetry tracer implementation.

    Args:
        tracer_name: Name for the tracer (typically __name__)
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    @property
    def enabled(self) -> bool:
        return True

    def start_span(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
        context: Any | None = None,
    ) -> Span:
        return self._tracer.start_span(
            name,
            kind=_OTEL_KINDS.get(kind, SpanKind.INTERNAL),
            attributes=attributes or {},
            context=context,
        )


class MockTracer:
    """
    Mock tracer for testing that records span information.

    Example:
        >>> tracer = MockTracer()
        >>> tracer.start_span("operation", attributes={"key": "value"})
        >>> assert tracer.span_names == ["operation"]
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @property
    def enabled(self) -> bool:
        """Returns True to enable attribute computation in tests."""
        return True

    @property
    def span_names(self) -> list[str]:
        """Get just the span names for easy assertions."""
        return [name for name, _ in self.spans]

    def start_span(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
        context: Any | None = None,
    ) -> None:
        """Record span and return None (mock spans don't need to be ended)."""
        self.spans.append((name, attributes))
        return None


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Create an OpenTelemetryTracer when tracing is enabled, else a NullTracer.

    Args:
        name: Tracer name (typically __name__)
        enable_tracing: Whether tracing should be enabled (default True)
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
]
