"""
Configuration for the AMQP input.

Two option layouts are accepted by :meth:`AMQPInputConfig.from_mapping`:

- the *flat* layout, where queue flags are unprefixed (``durable``,
  ``exclusive``...) and binding uses the simple retry policy;
- the *extended* layout, where queue flags carry a ``queue_`` prefix,
  exchange flags an ``exchange_`` prefix, and the exchange is declared
  before the queue is bound. Unprefixed queue flags are still honoured
  when no prefixed counterpart is given.

Both map onto the same schema: a :class:`QueueSpec`, an optional
:class:`ExchangeSpec`, and an explicit :class:`BindingPolicy`.

Example:
    >>> config = AMQPInputConfig.from_mapping({
    ...     "host": "rabbitmq.local",
    ...     "queue": "logs",
    ...     "bind_exchange": True,
    ...     "exchange": "app.logs",
    ...     "routing_key": "app.*.error",
    ... })
    >>> config.binding_policy
    <BindingPolicy.SIMPLE_RETRY: 'simple_retry'>
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from amqpbridge.exceptions import ConfigurationError
from amqpbridge.parsers import PayloadParser, create_parser

logger = logging.getLogger(__name__)

DEFAULT_TAG = "hunter.amqp"
DEFAULT_PORT = 5672

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}
_PARSER_OPTION_KEYS = ("expression", "delimiter", "label_delimiter")

EXCHANGE_TYPES = ("topic", "direct", "fanout", "headers")


class BindingPolicy(Enum):
    """How the queue is bound to the exchange.

    Values:
        SIMPLE_RETRY: Bind up to ``bind_attempts`` times with a fixed delay
            between attempts on transient errors.
        DECLARE_THEN_BIND: Declare the exchange first (best effort), then bind
            exactly once.
    """

    SIMPLE_RETRY = "simple_retry"
    DECLARE_THEN_BIND = "declare_then_bind"


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Broker session options, built once from configuration.

    Attributes:
        hosts: Broker hosts, tried in order when connecting.
        port: Broker port.
        vhost: Virtual host.
        user: Login name.
        password: Login password. Excluded from ``repr``.
        heartbeat: Heartbeat interval in seconds.
        ssl: Legacy switch enabling TLS.
        verify_ssl: Peer verification for the legacy ``ssl`` switch.
        tls: Enables TLS.
        tls_cert: Client certificate file for mutual TLS.
        tls_key: Client private key file for mutual TLS.
        tls_ca_certificates: CA certificate files used to verify the broker.
        tls_verify_peer: Peer verification when ``tls`` is enabled.
    """

    hosts: tuple[str, ...]
    port: int = DEFAULT_PORT
    vhost: str = "/"
    user: str = "guest"
    password: str = field(default="guest", repr=False)
    heartbeat: int = 60
    ssl: bool = False
    verify_ssl: bool = False
    tls: bool = False
    tls_cert: str | None = None
    tls_key: str | None = None
    tls_ca_certificates: tuple[str, ...] = ()
    tls_verify_peer: bool = True

    @property
    def tls_enabled(self) -> bool:
        """True when either the ``tls`` or the legacy ``ssl`` switch is set."""
        return self.tls or self.ssl

    @property
    def verify_peer(self) -> bool:
        """Whether the broker certificate must be verified."""
        if self.tls:
            return self.tls_verify_peer
        return self.verify_ssl


@dataclass(frozen=True)
class QueueSpec:
    """
    Queue declaration parameters.

    Instances are frozen; the worker-suffixed name is produced as a new
    spec by :meth:`with_name` before the queue is declared.
    """

    name: str
    passive: bool = False
    durable: bool = False
    exclusive: bool = False
    auto_delete: bool = False

    def with_name(self, name: str) -> QueueSpec:
        """Return a copy of this spec with a different queue name."""
        return replace(self, name=name)


@dataclass(frozen=True)
class ExchangeSpec:
    """
    Exchange declaration and binding parameters.

    Attributes:
        name: Exchange name.
        type: Exchange type: topic, direct, fanout or headers.
        durable: Whether the exchange survives broker restarts.
        auto_delete: Whether the exchange is removed when unused.
        passive: Only check that the exchange exists instead of creating it.
        routing_key: Binding pattern. ``#`` matches everything, ``*`` a
            single dot-separated word.
    """

    name: str = ""
    type: str = "topic"
    durable: bool = False
    auto_delete: bool = False
    passive: bool = False
    routing_key: str = "#"


@dataclass
class AMQPInputConfig:
    """
    Configuration for :class:`~amqpbridge.input.AMQPInput`.

    Attributes:
        tag: Default tag for emitted events.
        host: Single broker host. Ignored when ``hosts`` is set.
        hosts: Broker hosts, tried in order.
        user: Broker login.
        password: Broker password.
        vhost: Virtual host.
        port: Broker port.
        heartbeat: Heartbeat interval in seconds.
        ssl: Legacy TLS switch.
        verify_ssl: Peer verification for the legacy TLS switch.
        tls: TLS switch.
        tls_cert: Client certificate path.
        tls_key: Client key path.
        tls_ca_certificates: CA certificate paths.
        tls_verify_peer: Peer verification when ``tls`` is set.
        queue: Queue to consume from. A plain string is accepted and turned
            into a :class:`QueueSpec` with default flags.
        exchange: Exchange to bind the queue to.
        bind_exchange: Whether to bind the queue to ``exchange``.
        binding_policy: Binding policy used when ``bind_exchange`` is set.
        payload_format: Parser name (``json``, ``ltsv``, ``regexp``, ``none``).
        parser_options: Extra keyword arguments for the parser.
        parser: Pre-built parser; takes precedence over ``payload_format``.
        tag_key: Use the delivery routing key as the tag when it is not empty.
        tag_header: Header whose value overrides the default tag.
        time_header: Header whose value is used as the event time.
        add_metadata: Add ``RoutingKey`` and ``ExchangeName`` to parsed records.
        prefetch_count: Channel QoS prefetch; 0 keeps the broker default.
        no_ack: Consume in auto-acknowledge mode.
        bind_attempts: Bind attempts for the simple retry policy.
        bind_retry_delay: Seconds between bind attempts.
        declare_timeout: Seconds allowed for the exchange declaration.
        enable_tracing: Create OpenTelemetry consumer spans.
        shutdown_timeout: Seconds to wait for the consumer on shutdown.

    Raises:
        ConfigurationError: If no host or no queue is given, or an option has
            an invalid value.
    """

    tag: str = DEFAULT_TAG
    host: str | None = None
    hosts: list[str] | None = None
    user: str = "guest"
    password: str = field(default="guest", repr=False)
    vhost: str = "/"
    port: int = DEFAULT_PORT
    heartbeat: int = 60
    ssl: bool = False
    verify_ssl: bool = False
    tls: bool = False
    tls_cert: str | None = None
    tls_key: str | None = None
    tls_ca_certificates: list[str] | None = None
    tls_verify_peer: bool = True
    queue: QueueSpec | str | None = None
    exchange: ExchangeSpec | None = None
    bind_exchange: bool = False
    binding_policy: BindingPolicy = BindingPolicy.SIMPLE_RETRY
    payload_format: str = "json"
    parser_options: dict[str, Any] = field(default_factory=dict)
    parser: PayloadParser | None = None
    tag_key: bool = False
    tag_header: str | None = None
    time_header: str | None = None
    add_metadata: bool = False
    prefetch_count: int = 0
    no_ack: bool = True
    bind_attempts: int = 3
    bind_retry_delay: float = 1.0
    declare_timeout: float = 10.0
    enable_tracing: bool = True
    shutdown_timeout: float = 30.0

    def __post_init__(self) -> None:
        if isinstance(self.queue, str):
            self.queue = QueueSpec(name=self.queue) if self.queue else None

        if not (self.host or self.hosts) or self.queue is None:
            raise ConfigurationError("'host(s)' and 'queue' must be all specified.")

        if self.bind_exchange and (self.exchange is None or not self.exchange.name):
            raise ConfigurationError("'exchange' must be specified when 'bind_exchange' is set.")

        if self.exchange is not None and self.exchange.type.lower() not in EXCHANGE_TYPES:
            raise ConfigurationError(
                f"Unknown exchange type {self.exchange.type!r}, expected one of {EXCHANGE_TYPES}"
            )

        if self.parser is None:
            # Fails early on unknown formats and bad parser options
            create_parser(self.payload_format, **self.parser_options)

        if self.bind_attempts < 1:
            raise ConfigurationError("'bind_attempts' must be at least 1")

    @property
    def queue_spec(self) -> QueueSpec:
        """The configured queue as a :class:`QueueSpec`."""
        assert isinstance(self.queue, QueueSpec)
        return self.queue

    @property
    def exchange_name(self) -> str:
        """Configured exchange name, or an empty string."""
        return self.exchange.name if self.exchange is not None else ""

    def connection_options(self) -> ConnectionOptions:
        """Build the immutable broker session options."""
        hosts = tuple(self.hosts) if self.hosts else (str(self.host),)
        return ConnectionOptions(
            hosts=hosts,
            port=self.port,
            vhost=self.vhost,
            user=self.user,
            password=self.password,
            heartbeat=self.heartbeat,
            ssl=self.ssl,
            verify_ssl=self.verify_ssl,
            tls=self.tls,
            tls_cert=self.tls_cert,
            tls_key=self.tls_key,
            tls_ca_certificates=tuple(self.tls_ca_certificates or ()),
            tls_verify_peer=self.tls_verify_peer,
        )

    def create_parser(self) -> PayloadParser | None:
        """Return the payload parser, or None when payloads are not parsed."""
        if self.parser is not None:
            return self.parser
        return create_parser(self.payload_format, **self.parser_options)

    @classmethod
    def from_mapping(cls, conf: Mapping[str, Any]) -> AMQPInputConfig:
        """
        Build a configuration from plugin-style options.

        Values may be native Python types or strings (``"true"``,
        ``"5672"``, ``"a,b"``). ``format`` takes precedence over the legacy
        ``payload_format`` alias. Any ``queue_*`` or ``exchange_*`` option
        selects the extended layout, which defaults to the declare-then-bind
        policy; ``binding_policy`` overrides the choice. Queue flags may be
        given in either layout; ``queue_durable`` wins over ``durable``.

        Args:
            conf: Option mapping

        Returns:
            The validated configuration

        Raises:
            ConfigurationError: If required options are missing or malformed
        """
        options = dict(conf)
        extended = any(
            key.startswith(("queue_", "exchange_")) for key in options
        )

        def flag(key: str, default: bool = False) -> bool:
            return _to_bool(key, options.pop(key, default))

        def queue_flag(name: str) -> bool:
            flat = flag(name)
            prefixed = f"queue_{name}"
            return flag(prefixed) if prefixed in options else flat

        queue_flags = {
            name: queue_flag(name) for name in ("passive", "durable", "exclusive", "auto_delete")
        }

        queue_name = options.pop("queue", None)
        queue = QueueSpec(name=str(queue_name), **queue_flags) if queue_name else None

        exchange_name = str(options.pop("exchange", "") or "")
        exchange = ExchangeSpec(
            name=exchange_name,
            type=str(options.pop("exchange_type", "topic")),
            durable=flag("exchange_durable"),
            auto_delete=flag("exchange_auto_delete"),
            passive=flag("exchange_passive"),
            routing_key=str(options.pop("routing_key", "#")),
        )

        policy_value = options.pop("binding_policy", None)
        if policy_value is None:
            policy = BindingPolicy.DECLARE_THEN_BIND if extended else BindingPolicy.SIMPLE_RETRY
        else:
            try:
                policy = BindingPolicy(str(policy_value).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown binding policy {policy_value!r}, "
                    f"expected one of {[p.value for p in BindingPolicy]}"
                ) from None

        payload_format = options.pop("format", None) or options.pop("payload_format", None)
        options.pop("payload_format", None)
        parser_options = {
            key: options.pop(key) for key in _PARSER_OPTION_KEYS if key in options
        }

        kwargs: dict[str, Any] = {
            "queue": queue,
            "exchange": exchange,
            "binding_policy": policy,
            "payload_format": str(payload_format or "json"),
            "parser_options": parser_options,
            "bind_exchange": flag("bind_exchange"),
        }

        if "pass" in options:
            kwargs["password"] = str(options.pop("pass"))
        if "hosts" in options:
            kwargs["hosts"] = _to_list(options.pop("hosts")) or None
        if "tls_ca_certificates" in options:
            kwargs["tls_ca_certificates"] = _to_list(options.pop("tls_ca_certificates")) or None

        for key in ("tag", "host", "user", "vhost", "tls_cert", "tls_key", "tag_header", "time_header"):
            if key in options:
                value = options.pop(key)
                kwargs[key] = None if value is None else str(value)
        for key in ("port", "heartbeat", "prefetch_count", "bind_attempts"):
            if key in options:
                kwargs[key] = _to_int(key, options.pop(key))
        for key in ("bind_retry_delay", "declare_timeout", "shutdown_timeout"):
            if key in options:
                kwargs[key] = _to_float(key, options.pop(key))
        for key in (
            "ssl",
            "verify_ssl",
            "tls",
            "tls_verify_peer",
            "tag_key",
            "add_metadata",
            "no_ack",
            "enable_tracing",
        ):
            if key in options:
                kwargs[key] = flag(key)

        if options:
            logger.warning(
                f"Ignoring unknown AMQP input options: {sorted(options)}",
                extra={"unknown_options": sorted(options)},
            )

        return cls(**kwargs)


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Option {key!r} expects a boolean, got {value!r}")


def _to_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Option {key!r} expects an integer, got {value!r}") from None


def _to_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Option {key!r} expects a number, got {value!r}") from None


def _to_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


__all__ = [
    "AMQPInputConfig",
    "BindingPolicy",
    "ConnectionOptions",
    "DEFAULT_TAG",
    "EXCHANGE_TYPES",
    "ExchangeSpec",
    "QueueSpec",
]
