"""
amqpbridge - AMQP queue input for log-event pipelines.

This library provides:
- A consumer that forwards RabbitMQ deliveries as (tag, time, record) events
- Payload parsers (JSON, LTSV, regular expression)
- Queue declaration and exchange binding with retry policies
- Tag and time resolution from routing keys and message headers
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("amqpbridge")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from amqpbridge.config import (
    AMQPInputConfig,
    BindingPolicy,
    ConnectionOptions,
    ExchangeSpec,
    QueueSpec,
)
from amqpbridge.connection import ConnectionManager, create_ssl_context
from amqpbridge.consumer import AMQPInputStats, SubscriptionLoop
from amqpbridge.events import Delivery, Event
from amqpbridge.exceptions import (
    AMQPBridgeError,
    BrokerConnectionError,
    ConfigurationError,
    ParseError,
    ShutdownError,
    TimeParseError,
    TopologyError,
)
from amqpbridge.input import AMQPInput, HealthCheckResult
from amqpbridge.mapping import DeliveryMapper, parse_time_value
from amqpbridge.parsers import (
    JSONParser,
    LTSVParser,
    PayloadParser,
    RegexpParser,
    create_parser,
)
from amqpbridge.sink import EventSink, SinkAdapter
from amqpbridge.topology import BoundState, TopologyBinder

__all__ = [
    "__version__",
    # Input
    "AMQPInput",
    "AMQPInputConfig",
    "AMQPInputStats",
    "HealthCheckResult",
    # Configuration
    "BindingPolicy",
    "ConnectionOptions",
    "ExchangeSpec",
    "QueueSpec",
    # Components
    "BoundState",
    "ConnectionManager",
    "DeliveryMapper",
    "SubscriptionLoop",
    "TopologyBinder",
    "create_ssl_context",
    "parse_time_value",
    # Events and sinks
    "Delivery",
    "Event",
    "EventSink",
    "SinkAdapter",
    # Parsers
    "JSONParser",
    "LTSVParser",
    "PayloadParser",
    "RegexpParser",
    "create_parser",
    # Exceptions
    "AMQPBridgeError",
    "BrokerConnectionError",
    "ConfigurationError",
    "ParseError",
    "ShutdownError",
    "TimeParseError",
    "TopologyError",
]
