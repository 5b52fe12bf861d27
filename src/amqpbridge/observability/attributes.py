"""
Standard span attributes for amqpbridge.

Messaging attributes follow OpenTelemetry semantic conventions; the rest are
namespaced under ``amqpbridge.``.
"""

# =============================================================================
# Messaging Attributes (OTEL semantic)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier, always ``rabbitmq``."""

ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
"""Queue the delivery was consumed from."""

ATTR_MESSAGING_MESSAGE_ID = "messaging.message.id"
"""Broker message id."""

ATTR_MESSAGING_ROUTING_KEY = "messaging.rabbitmq.destination.routing_key"
"""Routing key the message was published with."""

# =============================================================================
# Event Attributes
# =============================================================================

ATTR_EVENT_TAG = "amqpbridge.event.tag"
"""Tag resolved for the emitted event."""

ATTR_PARSE_FALLBACK = "amqpbridge.parse.fallback"
"""True when the payload was not parsed and the message fallback was used."""

__all__ = [
    "ATTR_EVENT_TAG",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_MESSAGING_ROUTING_KEY",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_PARSE_FALLBACK",
]
