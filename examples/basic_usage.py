"""
Basic Usage Example

This example consumes a RabbitMQ queue and prints every event:
- Building the configuration from plugin-style options
- Binding the queue to a topic exchange
- Writing a sink that receives (tag, time, record)
- Inspecting stats and shutting down cleanly

Needs a broker on localhost. Publish to the ``app.logs`` exchange with a
routing key such as ``app.web.error`` to see events.

Run with: python examples/basic_usage.py
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from amqpbridge import AMQPInput, AMQPInputConfig

# =============================================================================
# Step 1: Define a sink
# =============================================================================
# Anything with an emit(tag, time, record) method works. It may be sync or
# async; the input awaits it before taking the next delivery.


class PrintSink:
    """Sink printing events to stdout."""

    def emit(self, tag: str, time: datetime, record: dict[str, Any]) -> None:
        print(f"{time.isoformat()} {tag} {record}")


# =============================================================================
# Step 2: Configure the input
# =============================================================================

OPTIONS = {
    "host": "localhost",
    "user": "guest",
    "pass": "guest",
    "queue": "logs",
    "bind_exchange": "true",
    "exchange": "app.logs",
    "routing_key": "app.#",
    "tag_key": "true",
    "add_metadata": "true",
    "format": "json",
}


async def main():
    logging.basicConfig(level=logging.INFO)

    config = AMQPInputConfig.from_mapping(OPTIONS)
    print(f"Binding policy: {config.binding_policy.value}")

    # =========================================================================
    # Step 3: Run the input
    # =========================================================================
    async with AMQPInput(config, PrintSink()) as amqp_input:
        state = amqp_input.bound_state
        if state is not None and not state.gate_open:
            print(f"Could not bind {amqp_input.queue_name} to {state.exchange}")
            return

        print(f"Consuming from {amqp_input.queue_name} for 60 seconds")
        try:
            await asyncio.sleep(60)
        finally:
            print(f"Stats: {amqp_input.get_stats_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
