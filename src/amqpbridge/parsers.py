"""
Payload parsers.

A parser turns the raw body of a delivery into a record. Returning ``None``
signals a parse miss; the mapper then falls back to ``{"message": text}``.

Example:
    >>> parser = create_parser("json")
    >>> parser.parse(b'{"a": 1}')
    {'a': 1}
    >>> parser.parse(b"not json") is None
    True
"""

from __future__ import annotations

import json
import re
from typing import Any, Protocol, runtime_checkable

from amqpbridge.exceptions import ConfigurationError


@runtime_checkable
class PayloadParser(Protocol):
    """
    Protocol for payload parsers.

    Implementations may raise :class:`~amqpbridge.exceptions.ParseError`;
    the mapper treats it the same as returning ``None``.
    """

    name: str

    def parse(self, payload: bytes) -> dict[str, Any] | None:
        """Parse a payload into a record, or return None on a miss."""
        ...


class JSONParser:
    """Parses JSON objects. Anything other than an object is a miss."""

    name = "json"

    def parse(self, payload: bytes) -> dict[str, Any] | None:
        try:
            value = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(value, dict):
            return None
        return value


class LTSVParser:
    """
    Parses Labeled Tab-Separated Values (``key:value<TAB>key:value``).

    A field without a label separator makes the whole payload a miss.
    """

    name = "ltsv"

    def __init__(self, delimiter: str = "\t", label_delimiter: str = ":") -> None:
        self.delimiter = delimiter
        self.label_delimiter = label_delimiter

    def parse(self, payload: bytes) -> dict[str, Any] | None:
        try:
            text = payload.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError:
            return None
        if not text:
            return None

        record: dict[str, Any] = {}
        for item in text.split(self.delimiter):
            key, sep, value = item.partition(self.label_delimiter)
            if not sep or not key:
                return None
            record[key] = value
        return record


class RegexpParser:
    """Parses payloads with a regular expression; named groups become fields."""

    name = "regexp"

    def __init__(self, expression: str) -> None:
        try:
            self._pattern = re.compile(expression)
        except re.error as e:
            raise ConfigurationError(f"Invalid regexp expression {expression!r}: {e}") from e
        if not self._pattern.groupindex:
            raise ConfigurationError(
                f"Regexp expression {expression!r} must define at least one named group"
            )

    @property
    def expression(self) -> str:
        return self._pattern.pattern

    def parse(self, payload: bytes) -> dict[str, Any] | None:
        text = payload.decode("utf-8", errors="replace")
        match = self._pattern.search(text)
        if match is None:
            return None
        return {key: value for key, value in match.groupdict().items() if value is not None}


PARSER_FORMATS = frozenset({"json", "ltsv", "regexp", "none"})


def create_parser(payload_format: str, **options: Any) -> PayloadParser | None:
    """
    Create a parser for the given format name.

    Args:
        payload_format: One of ``json``, ``ltsv``, ``regexp`` or ``none``
        **options: Parser keyword arguments (``expression`` for regexp,
            ``delimiter`` and ``label_delimiter`` for ltsv)

    Returns:
        The parser, or None for ``none`` (payloads are never parsed)

    Raises:
        ConfigurationError: If the format is unknown or options are invalid
    """
    fmt = payload_format.lower()
    if fmt == "none":
        return None
    if fmt == "json":
        return JSONParser()
    if fmt == "ltsv":
        return LTSVParser(
            delimiter=options.get("delimiter", "\t"),
            label_delimiter=options.get("label_delimiter", ":"),
        )
    if fmt == "regexp":
        if "expression" not in options:
            raise ConfigurationError("The regexp format requires an 'expression' option")
        return RegexpParser(options["expression"])
    raise ConfigurationError(
        f"Unknown payload format {payload_format!r}, expected one of {sorted(PARSER_FORMATS)}"
    )


__all__ = [
    "JSONParser",
    "LTSVParser",
    "PARSER_FORMATS",
    "PayloadParser",
    "RegexpParser",
    "create_parser",
]
