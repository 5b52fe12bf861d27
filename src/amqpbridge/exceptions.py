"""Library exceptions for the amqpbridge package."""

from collections.abc import Sequence


class AMQPBridgeError(Exception):
    """Base exception for amqpbridge library."""

    pass


class ConfigurationError(AMQPBridgeError):
    """Raised when the input configuration is invalid or incomplete.

    Raised at construction time, before any connection to the broker is
    attempted.
    """

    pass


class BrokerConnectionError(AMQPBridgeError):
    """Raised when no broker session could be established.

    Covers network and authentication failures. Every configured host was
    tried in order before this error is raised; the caller decides whether
    to retry.
    """

    def __init__(self, hosts: Sequence[str], message: str) -> None:
        self.hosts = tuple(hosts)
        super().__init__(f"Could not connect to any of {list(self.hosts)}: {message}")


class TopologyError(AMQPBridgeError):
    """Raised when the queue/exchange topology is not usable for consumption."""

    pass


class ParseError(AMQPBridgeError):
    """Raised when a delivery payload cannot be parsed into a record."""

    def __init__(self, parser: str, message: str) -> None:
        self.parser = parser
        super().__init__(f"{parser} parser failed: {message}")


class TimeParseError(ParseError):
    """
    Raised when a configured time header carries a value that is not a timestamp.

    Unlike payload parse failures this is not recovered with a fallback:
    the delivery fails instead of being stamped with the processing time.

    Attributes:
        header: Name of the time header
        value: The raw header value
    """

    def __init__(self, header: str, value: object) -> None:
        self.header = header
        self.value = value
        super().__init__("time", f"header {header!r} has unparseable value {value!r}")


class ShutdownError(AMQPBridgeError):
    """Raised when the input is started again after it has been shut down."""

    def __init__(self, message: str = "AMQP input has been shut down") -> None:
        super().__init__(message)


__all__ = [
    "AMQPBridgeError",
    "BrokerConnectionError",
    "ConfigurationError",
    "ParseError",
    "ShutdownError",
    "TimeParseError",
    "TopologyError",
]
