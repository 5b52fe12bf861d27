"""
Observability utilities for amqpbridge.

Provides the composition-based :class:`Tracer` used by the consumer and the
span attribute names it sets.
"""

from amqpbridge.observability.attributes import (
    ATTR_EVENT_TAG,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
    ATTR_PARSE_FALLBACK,
)
from amqpbridge.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    "ATTR_EVENT_TAG",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_MESSAGING_ROUTING_KEY",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_PARSE_FALLBACK",
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
]
