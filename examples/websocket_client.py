#!/usr/bin/env python3
"""Client example for hubwire.

This script demonstrates sharing one hub connection between several tasks:
one watches state changes while others issue queries and service calls.

Usage:
    1. Copy examples/hubwire.yaml and fill in your hub address and token
    2. Run this client: python examples/websocket_client.py hubwire.yaml [light.entity_id]

The client will:
    1. Connect and authenticate
    2. List areas and a summary of entity states
    3. Watch state changes in the background
    4. Toggle the given light twice and print the resulting events
"""

from __future__ import annotations

import asyncio
import sys
from collections import Counter

from hubwire import Client, EventStream, HubwireConfig, HubwireError, connect
from hubwire.protocol.services import LightToggle


async def watch(stream: EventStream, limit: int) -> None:
    """Print up to ``limit`` state changes."""
    seen = 0
    async for event in stream:
        new = event.new_state.get("state") if event.new_state else None
        print(f"  {event.entity_id} -> {new}")
        seen += 1
        if seen >= limit:
            break
    if stream.missed:
        print(f"  ({stream.missed} events missed)")


async def summarize(client: Client) -> None:
    areas, states = await asyncio.gather(client.list_areas(), client.get_states())

    print("\n=== Areas ===")
    for area in areas:
        print(f"  {area.area_id}: {area.name}")

    print("\n=== Entities by domain ===")
    for domain, count in Counter(state.domain for state in states).most_common():
        print(f"  {domain:20s} {count}")


async def main(config_path: str, light: str | None = None) -> int:
    """Connect to the hub and exercise the client."""
    config = HubwireConfig.from_yaml(config_path)
    print(f"Connecting to {config.home_assistant.websocket_url}...")

    try:
        async with await connect(config.home_assistant, config.connection) as client:
            await summarize(client)

            if light is None:
                return 0

            print(f"\n=== Toggling {light} ===")
            watcher = asyncio.create_task(watch(client.subscribe(), limit=2))
            for _ in range(2):
                await client.call_service(light, LightToggle())
                await asyncio.sleep(1.0)

            try:
                await asyncio.wait_for(watcher, timeout=5.0)
            except TimeoutError:
                print("  (no state change seen)")

            stats = client.stats()
            if stats.last_rtt is not None:
                print(f"\nKeep-alive round trip: {stats.last_rtt * 1000:.1f} ms")

    except HubwireError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nClient stopped.")
        return 0

    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None)))
