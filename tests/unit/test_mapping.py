"""Unit tests for DeliveryMapper and time header parsing."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, timezone
from typing import Any

import pytest

from amqpbridge.config import AMQPInputConfig, ExchangeSpec
from amqpbridge.events import Delivery
from amqpbridge.exceptions import ParseError, TimeParseError
from amqpbridge.mapping import (
    EXCHANGE_NAME_FIELD,
    MESSAGE_FIELD,
    ROUTING_KEY_FIELD,
    DeliveryMapper,
    parse_time_value,
)
from amqpbridge.parsers import JSONParser, LTSVParser


class RaisingParser:
    """Parser that reports failure by raising."""

    name = "raising"

    def parse(self, payload: bytes) -> dict[str, Any] | None:
        raise ParseError(self.name, "always fails")


@pytest.fixture
def mapper(clock: Callable[[], datetime]) -> DeliveryMapper:
    return DeliveryMapper(tag="hunter.amqp", parser=JSONParser(), clock=clock)


class TestRecord:
    """Tests for record construction."""

    def test_parsed_record(self, mapper: DeliveryMapper) -> None:
        event = mapper.map(Delivery(payload=b'{"a": 1}'))

        assert event.record == {"a": 1}

    def test_unparseable_payload_falls_back_to_message(
        self, mapper: DeliveryMapper, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="amqpbridge.mapping"):
            event, fell_back = mapper.map_with_status(Delivery(payload=b"hello world"))

        assert event.record == {MESSAGE_FIELD: "hello world"}
        assert fell_back is True
        assert "failed to parse 'hello world'" in caplog.text

    def test_non_object_json_falls_back(self, mapper: DeliveryMapper) -> None:
        event = mapper.map(Delivery(payload=b"[1, 2, 3]"))

        assert event.record == {MESSAGE_FIELD: "[1, 2, 3]"}

    def test_parser_error_is_treated_as_miss(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="t", parser=RaisingParser(), clock=clock)

        event, fell_back = mapper.map_with_status(Delivery(payload=b"payload"))

        assert event.record == {MESSAGE_FIELD: "payload"}
        assert fell_back is True

    def test_no_parser_wraps_payload(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="t", parser=None, clock=clock)

        event, fell_back = mapper.map_with_status(Delivery(payload=b'{"a": 1}'))

        assert event.record == {MESSAGE_FIELD: '{"a": 1}'}
        assert fell_back is False

    def test_invalid_utf8_is_replaced(self, mapper: DeliveryMapper) -> None:
        event = mapper.map(Delivery(payload=b"caf\xe9"))

        assert event.record == {MESSAGE_FIELD: "caf\ufffd"}

    def test_ltsv_record(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="t", parser=LTSVParser(), clock=clock)

        event = mapper.map(Delivery(payload=b"level:info\tmsg:started"))

        assert event.record == {"level": "info", "msg": "started"}

    def test_parse_payload(self, mapper: DeliveryMapper) -> None:
        assert mapper.parse_payload(Delivery(payload=b'{"k": "v"}')) == {"k": "v"}


class TestMetadata:
    """Tests for add_metadata."""

    def test_metadata_added_to_parsed_record(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(
            tag="t",
            parser=JSONParser(),
            add_metadata=True,
            exchange_name="app.logs",
            clock=clock,
        )

        event = mapper.map(Delivery(payload=b'{"a": 1}', routing_key="app.web"))

        assert event.record == {
            "a": 1,
            ROUTING_KEY_FIELD: "app.web",
            EXCHANGE_NAME_FIELD: "app.logs",
        }

    def test_metadata_not_added_to_fallback(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(
            tag="t",
            parser=JSONParser(),
            add_metadata=True,
            exchange_name="app.logs",
            clock=clock,
        )

        event = mapper.map(Delivery(payload=b"plain", routing_key="app.web"))

        assert event.record == {MESSAGE_FIELD: "plain"}

    def test_metadata_not_added_without_parser(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="t", add_metadata=True, clock=clock)

        event = mapper.map(Delivery(payload=b"plain", routing_key="app.web"))

        assert event.record == {MESSAGE_FIELD: "plain"}

    def test_parser_result_not_mutated(self, clock: Callable[[], datetime]) -> None:
        shared: dict[str, Any] = {"a": 1}

        class SharedParser:
            name = "shared"

            def parse(self, payload: bytes) -> dict[str, Any] | None:
                return shared

        mapper = DeliveryMapper(tag="t", parser=SharedParser(), add_metadata=True, clock=clock)
        mapper.map(Delivery(payload=b"x", routing_key="rk"))

        assert shared == {"a": 1}


class TestTag:
    """Tests for tag resolution order."""

    def test_default_tag(self, mapper: DeliveryMapper) -> None:
        assert mapper.map(Delivery(payload=b"{}", routing_key="app.web")).tag == "hunter.amqp"

    def test_routing_key_as_tag(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="default", tag_key=True, clock=clock)

        assert mapper.map(Delivery(payload=b"", routing_key="app.web")).tag == "app.web"

    def test_empty_routing_key_falls_through_to_default(
        self, clock: Callable[[], datetime]
    ) -> None:
        mapper = DeliveryMapper(tag="default", tag_key=True, clock=clock)

        assert mapper.map(Delivery(payload=b"", routing_key="")).tag == "default"

    def test_tag_header(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="default", tag_header="x-tag", clock=clock)

        delivery = Delivery(payload=b"", headers={"x-tag": "from.header"})

        assert mapper.map(delivery).tag == "from.header"

    def test_tag_header_bytes_are_decoded(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="default", tag_header="x-tag", clock=clock)

        delivery = Delivery(payload=b"", headers={"x-tag": b"from.bytes"})

        assert mapper.map(delivery).tag == "from.bytes"

    def test_routing_key_wins_over_tag_header(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="default", tag_key=True, tag_header="x-tag", clock=clock)

        delivery = Delivery(payload=b"", routing_key="rk", headers={"x-tag": "hdr"})

        assert mapper.map(delivery).tag == "rk"

    def test_tag_header_used_when_routing_key_empty(
        self, clock: Callable[[], datetime]
    ) -> None:
        mapper = DeliveryMapper(tag="default", tag_key=True, tag_header="x-tag", clock=clock)

        delivery = Delivery(payload=b"", routing_key="", headers={"x-tag": "hdr"})

        assert mapper.map(delivery).tag == "hdr"

    def test_missing_tag_header_uses_default(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="default", tag_header="x-tag", clock=clock)

        assert mapper.map(Delivery(payload=b"", headers={"other": "v"})).tag == "default"


class TestTime:
    """Tests for time resolution."""

    def test_uses_clock_without_header(
        self, mapper: DeliveryMapper, fixed_now: datetime
    ) -> None:
        assert mapper.map(Delivery(payload=b"{}")).time == fixed_now

    def test_uses_clock_when_header_absent(
        self, clock: Callable[[], datetime], fixed_now: datetime
    ) -> None:
        mapper = DeliveryMapper(tag="t", time_header="x-time", clock=clock)

        assert mapper.map(Delivery(payload=b"")).time == fixed_now

    def test_time_header_iso(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="t", time_header="x-time", clock=clock)

        delivery = Delivery(payload=b"", headers={"x-time": "2023-01-02T03:04:05+00:00"})

        assert mapper.map(delivery).time == datetime(2023, 1, 2, 3, 4, 5, tzinfo=UTC)

    def test_malformed_time_header_raises(self, clock: Callable[[], datetime]) -> None:
        mapper = DeliveryMapper(tag="t", time_header="x-time", clock=clock)

        with pytest.raises(TimeParseError) as exc_info:
            mapper.map(Delivery(payload=b"", headers={"x-time": "yesterday-ish"}))

        assert exc_info.value.header == "x-time"


class TestParseTimeValue:
    """Tests for parse_time_value."""

    def test_datetime_passthrough(self) -> None:
        value = datetime(2023, 1, 1, tzinfo=timezone(timedelta(hours=2)))

        assert parse_time_value("h", value) is value

    def test_naive_datetime_is_utc(self) -> None:
        assert parse_time_value("h", datetime(2023, 1, 1)) == datetime(2023, 1, 1, tzinfo=UTC)

    def test_epoch_seconds(self) -> None:
        assert parse_time_value("h", 0) == datetime(1970, 1, 1, tzinfo=UTC)
        assert parse_time_value("h", 1.5) == datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=UTC)

    def test_iso_bytes(self) -> None:
        assert parse_time_value("h", b"2023-06-01T10:00:00Z") == datetime(
            2023, 6, 1, 10, 0, tzinfo=UTC
        )

    def test_rfc2822(self) -> None:
        parsed = parse_time_value("h", "Thu, 01 Jun 2023 10:00:00 +0000")

        assert parsed == datetime(2023, 6, 1, 10, 0, tzinfo=UTC)

    def test_bool_rejected(self) -> None:
        with pytest.raises(TimeParseError):
            parse_time_value("h", True)

    def test_unsupported_type(self) -> None:
        with pytest.raises(TimeParseError):
            parse_time_value("h", ["2023"])

    def test_garbage_string(self) -> None:
        with pytest.raises(TimeParseError):
            parse_time_value("h", "not a time")


class TestFromConfig:
    """Tests for DeliveryMapper.from_config."""

    def test_copies_settings(self, clock: Callable[[], datetime]) -> None:
        config = AMQPInputConfig(
            host="localhost",
            queue="logs",
            tag="custom",
            tag_key=True,
            tag_header="x-tag",
            time_header="x-time",
            add_metadata=True,
            exchange=ExchangeSpec(name="app.logs"),
            payload_format="ltsv",
        )

        mapper = DeliveryMapper.from_config(config, clock=clock)

        assert mapper.tag == "custom"
        assert mapper.tag_key is True
        assert mapper.tag_header == "x-tag"
        assert mapper.time_header == "x-time"
        assert mapper.add_metadata is True
        assert mapper.exchange_name == "app.logs"
        assert isinstance(mapper.parser, LTSVParser)
