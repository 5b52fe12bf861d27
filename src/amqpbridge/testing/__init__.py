"""
Test utilities for amqpbridge.

Components:
    InMemorySink: Sink recording every emitted ``(tag, time, record)`` event

Note:
    This module is intended for test code only.
"""

from amqpbridge.testing.sink import InMemorySink

__all__ = ["InMemorySink"]
