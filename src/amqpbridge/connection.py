"""
Broker connection lifecycle.

:class:`ConnectionManager` opens the aio-pika robust connection described by
:class:`~amqpbridge.config.ConnectionOptions` and closes it on shutdown. It
does not retry: when every configured host refuses the session a
:class:`~amqpbridge.exceptions.BrokerConnectionError` is raised and the
caller decides what to do.

Example:
    >>> manager = ConnectionManager(config.connection_options())
    >>> connection = await manager.connect()
    >>> channel = await connection.channel()
    >>> ...
    >>> await manager.close()
"""

from __future__ import annotations

import logging
import ssl
from typing import Any

import aio_pika
from aio_pika.abc import AbstractRobustConnection
from aio_pika.exceptions import AMQPError

from amqpbridge.config import ConnectionOptions
from amqpbridge.exceptions import BrokerConnectionError

logger = logging.getLogger(__name__)

CONNECTION_NAME = "amqpbridge"


def create_ssl_context(options: ConnectionOptions) -> ssl.SSLContext | None:
    """
    Create an SSL context from the TLS options.

    Returns None when neither ``tls`` nor the legacy ``ssl`` switch is set.

    Raises:
        ssl.SSLError: If certificate files cannot be loaded
        FileNotFoundError: If certificate files don't exist
    """
    if not options.tls_enabled:
        return None

    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)

    for ca_file in options.tls_ca_certificates:
        logger.debug("Loading CA certificate", extra={"ca_file": ca_file})
        ctx.load_verify_locations(cafile=ca_file)

    if options.tls_cert and options.tls_key:
        logger.debug(
            "Loading client certificate for mutual TLS",
            extra={"cert_file": options.tls_cert, "key_file": options.tls_key},
        )
        ctx.load_cert_chain(certfile=options.tls_cert, keyfile=options.tls_key)
    elif options.tls_cert or options.tls_key:
        logger.warning(
            "Both tls_cert and tls_key must be provided for mutual TLS. "
            "Client certificate authentication will not be used.",
            extra={"cert_file": options.tls_cert, "key_file": options.tls_key},
        )

    if not options.verify_peer:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning(
            "TLS peer verification disabled - NOT RECOMMENDED for production",
            extra={"verify_peer": False},
        )

    return ctx


class ConnectionManager:
    """
    Owns the broker connection.

    Hosts are tried in their configured order and the first one accepting
    the session is used. A connection passed in by the caller is used as-is:
    :meth:`connect` returns it without opening a new session, and
    :meth:`close` still closes it at shutdown.

    Args:
        options: Broker session options
        connection: Pre-built connection, mainly for tests
        reconnect_interval: Seconds between aio-pika reconnection attempts
            once the session was established
    """

    def __init__(
        self,
        options: ConnectionOptions,
        *,
        connection: AbstractRobustConnection | None = None,
        reconnect_interval: float = 5.0,
    ) -> None:
        self._options = options
        self._connection = connection
        self._supplied = connection is not None
        self._reconnect_interval = reconnect_interval
        self._host: str | None = None
        self._logger = logging.getLogger(__name__)

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def connection(self) -> AbstractRobustConnection | None:
        return self._connection

    @property
    def host(self) -> str | None:
        """Host of the established session, if any."""
        return self._host

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(self) -> AbstractRobustConnection:
        """
        Open the broker session.

        Returns:
            The connected robust connection

        Raises:
            BrokerConnectionError: If no host accepted the session
            ssl.SSLError: If the TLS configuration cannot be loaded
        """
        if self._connection is not None:
            if self._supplied:
                self._logger.debug("Using externally supplied connection")
            else:
                self._logger.warning("Connection already established")
            return self._connection

        ssl_context = create_ssl_context(self._options)
        last_error: BaseException | None = None

        for host in self._options.hosts:
            try:
                self._connection = await aio_pika.connect_robust(
                    **self._connect_kwargs(host, ssl_context)
                )
            except (AMQPError, OSError, TimeoutError) as e:
                last_error = e
                self._logger.warning(
                    f"Failed to connect to RabbitMQ at {host}:{self._options.port}: {e}",
                    extra={
                        "host": host,
                        "port": self._options.port,
                        "vhost": self._options.vhost,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                continue

            self._host = host
            tls_status = "TLS" if ssl_context is not None else "plaintext"
            self._logger.info(
                f"Connected to RabbitMQ at {host}:{self._options.port} ({tls_status})",
                extra={
                    "host": host,
                    "port": self._options.port,
                    "vhost": self._options.vhost,
                    "user": self._options.user,
                    "tls_enabled": ssl_context is not None,
                },
            )
            return self._connection

        self._logger.error(
            "Could not connect to any RabbitMQ host",
            extra={"hosts": list(self._options.hosts), "error": str(last_error)},
        )
        raise BrokerConnectionError(self._options.hosts, str(last_error)) from last_error

    def _connect_kwargs(self, host: str, ssl_context: ssl.SSLContext | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": host,
            "port": self._options.port,
            "login": self._options.user,
            "password": self._options.password,
            "virtualhost": self._options.vhost,
            "heartbeat": self._options.heartbeat,
            "reconnect_interval": self._reconnect_interval,
            "client_properties": {"connection_name": CONNECTION_NAME},
        }
        if ssl_context is not None:
            kwargs["ssl"] = True
            kwargs["ssl_context"] = ssl_context
        return kwargs

    async def close(self) -> None:
        """Close the connection if it is open. Safe to call repeatedly."""
        connection = self._connection
        self._connection = None
        self._host = None
        if connection is None:
            return

        if not connection.is_closed:
            await connection.close()
        self._logger.info("Closed RabbitMQ connection")


__all__ = [
    "CONNECTION_NAME",
    "ConnectionManager",
    "create_ssl_context",
]
