"""
Mapping of broker deliveries to pipeline events.

:class:`DeliveryMapper` decides three things for every delivery:

- the record, from the payload parser or the ``{"message": text}`` fallback;
- the tag, from the routing key, a tag header, or the configured default,
  in that order;
- the time, from a time header or the current time.

Example:
    >>> from amqpbridge.parsers import JSONParser
    >>> mapper = DeliveryMapper(tag="app.logs", parser=JSONParser(), tag_key=True)
    >>> event = mapper.map(Delivery(payload=b'{"a": 1}', routing_key="app.web"))
    >>> event.tag, event.record
    ('app.web', {'a': 1})
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from amqpbridge.config import AMQPInputConfig
from amqpbridge.events import Delivery, Event
from amqpbridge.exceptions import ParseError, TimeParseError
from amqpbridge.parsers import PayloadParser

logger = logging.getLogger(__name__)

ROUTING_KEY_FIELD = "RoutingKey"
EXCHANGE_NAME_FIELD = "ExchangeName"
MESSAGE_FIELD = "message"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_time_value(header: str, value: Any) -> datetime:
    """
    Parse a time header value into an aware datetime.

    Accepts datetimes (AMQP timestamp fields decode to these), epoch seconds
    as int or float, and ISO 8601 or RFC 2822 strings (bytes are decoded as
    UTF-8). Naive values are taken as UTC.

    Args:
        header: Header name, used in the error
        value: Raw header value

    Returns:
        The parsed time

    Raises:
        TimeParseError: If the value is not a recognizable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise TimeParseError(header, value)
    elif isinstance(value, int | float):
        try:
            parsed = datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError):
            raise TimeParseError(header, value) from None
    elif isinstance(value, bytes | str):
        try:
            text = value.decode("utf-8") if isinstance(value, bytes) else value
        except UnicodeDecodeError:
            raise TimeParseError(header, value) from None
        text = text.strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                raise TimeParseError(header, value) from None
    else:
        raise TimeParseError(header, value)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class DeliveryMapper:
    """
    Turns deliveries into events.

    The mapper only reads its configuration, so a single instance can be
    shared by the consumer callback for the lifetime of the input.

    Args:
        tag: Default tag
        parser: Payload parser; None disables parsing
        tag_key: Prefer a non-empty routing key as the tag
        tag_header: Header that overrides the default tag
        time_header: Header holding the event time
        add_metadata: Add routing key and exchange name to parsed records
        exchange_name: Exchange name reported by ``add_metadata``
        clock: Source of the current time (defaults to ``datetime.now(UTC)``)
    """

    def __init__(
        self,
        tag: str,
        parser: PayloadParser | None = None,
        *,
        tag_key: bool = False,
        tag_header: str | None = None,
        time_header: str | None = None,
        add_metadata: bool = False,
        exchange_name: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tag = tag
        self.parser = parser
        self.tag_key = tag_key
        self.tag_header = tag_header
        self.time_header = time_header
        self.add_metadata = add_metadata
        self.exchange_name = exchange_name
        self._clock = clock or _utcnow

    @classmethod
    def from_config(
        cls,
        config: AMQPInputConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> DeliveryMapper:
        """Create a mapper from the input configuration."""
        return cls(
            tag=config.tag,
            parser=config.create_parser(),
            tag_key=config.tag_key,
            tag_header=config.tag_header,
            time_header=config.time_header,
            add_metadata=config.add_metadata,
            exchange_name=config.exchange_name,
            clock=clock,
        )

    def map(self, delivery: Delivery) -> Event:
        """
        Map a delivery to an event.

        Raises:
            TimeParseError: If the configured time header is present but
                malformed
        """
        event, _ = self.map_with_status(delivery)
        return event

    def map_with_status(self, delivery: Delivery) -> tuple[Event, bool]:
        """
        Map a delivery and report whether the record is the parse fallback.

        A missing parser is not counted as a fallback. The time is resolved
        first, so a delivery failing on its time header is never parsed.
        """
        time = self.resolve_time(delivery.headers)
        record, fell_back = self._parse(delivery)
        event = Event(tag=self.resolve_tag(delivery), time=time, record=record)
        return event, fell_back

    def parse_payload(self, delivery: Delivery) -> dict[str, Any]:
        """Parse the payload, falling back to a single ``message`` field."""
        record, _ = self._parse(delivery)
        return record

    def _parse(self, delivery: Delivery) -> tuple[dict[str, Any], bool]:
        if self.parser is None:
            return {MESSAGE_FIELD: delivery.text}, False

        try:
            parsed = self.parser.parse(delivery.payload)
        except ParseError as e:
            logger.debug(f"Parser raised for delivery: {e}")
            parsed = None

        if parsed is None:
            logger.warning(
                f"failed to parse {delivery.text!r}",
                extra={
                    "parser": getattr(self.parser, "name", type(self.parser).__name__),
                    "routing_key": delivery.routing_key,
                    "message_id": delivery.message_id,
                },
            )
            return {MESSAGE_FIELD: delivery.text}, True

        record = dict(parsed)
        if self.add_metadata:
            record[ROUTING_KEY_FIELD] = delivery.routing_key
            record[EXCHANGE_NAME_FIELD] = self.exchange_name
        return record, False

    def resolve_tag(self, delivery: Delivery) -> str:
        """Pick the tag: routing key, then tag header, then the default."""
        if self.tag_key and delivery.routing_key:
            return delivery.routing_key

        if self.tag_header:
            value = delivery.headers.get(self.tag_header)
            if value is not None:
                if isinstance(value, bytes):
                    return value.decode("utf-8", errors="replace")
                return str(value)

        return self.tag

    def resolve_time(self, headers: Mapping[str, Any]) -> datetime:
        """Pick the event time: the time header if present, else now."""
        if self.time_header:
            value = headers.get(self.time_header)
            if value is not None:
                return parse_time_value(self.time_header, value)
        return self._clock()


__all__ = [
    "DeliveryMapper",
    "EXCHANGE_NAME_FIELD",
    "MESSAGE_FIELD",
    "ROUTING_KEY_FIELD",
    "parse_time_value",
]
