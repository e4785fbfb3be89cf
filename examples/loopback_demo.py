#!/usr/bin/env python3
"""
Example: Loopback Pub/Sub Demo

Demonstrates:
- Callback listeners on exact and wildcard triggers
- Shared transport subscriptions (one broker subscribe per filter)
- A pull-based sequence consumed with `async for`

Runs against the in-process MemoryTransport, so no broker is needed:
SUBSCRIBE -> PUBLISH -> ROUTE -> UNSUBSCRIBE
"""

import anyio

from mqtt_pubsub import MemoryTransport, PubSub


async def main() -> None:
    print("=" * 60)
    print("Loopback Pub/Sub Demo")
    print("=" * 60)
    print()

    transport = MemoryTransport()

    async with PubSub(transport) as pubsub:
        # =====================================================================
        # Step 1: Callback listeners
        # =====================================================================
        print("Step 1: Subscribing Listeners")
        print("-" * 40)

        ids = [
            await pubsub.subscribe("Posts/#", lambda v: print(f"  [Posts/#]   {v}")),
            await pubsub.subscribe("Posts/+", lambda v: print(f"  [Posts/+]   {v}")),
            await pubsub.subscribe("Posts/News", lambda v: print(f"  [Posts/News] {v}")),
            await pubsub.subscribe("Posts/News", lambda v: print(f"  [Posts/News] (second) {v}")),
        ]
        print(f"  Subscription IDs: {ids}")
        print(f"  Live filters: {pubsub.registry.filters}")
        print(f"  Broker subscribes: {transport.count('subscribe')}")
        print()

        # =====================================================================
        # Step 2: Publish
        # =====================================================================
        print("Step 2: Publishing")
        print("-" * 40)

        await pubsub.publish("Posts/News", {"title": "Hello"})
        await pubsub.publish("Posts/Sports/Results", {"score": "2-1"})
        print()

        # =====================================================================
        # Step 3: Pull-based sequence
        # =====================================================================
        print("Step 3: Consuming a Sequence")
        print("-" * 40)

        async with pubsub.sequence(["Comments", "Likes"]) as sequence:

            async def produce() -> None:
                await anyio.wait_all_tasks_blocked()
                for trigger, value in [("Comments", "Nice!"), ("Likes", 3), ("Comments", "+1")]:
                    await pubsub.publish(trigger, value)

            async with anyio.create_task_group() as tg:
                tg.start_soon(produce)
                received = 0
                async for value in sequence:
                    received += 1
                    print(f"  pulled: {value!r}")
                    if received == 3:
                        break
        print()

        # =====================================================================
        # Step 4: Unsubscribe
        # =====================================================================
        print("Step 4: Unsubscribing")
        print("-" * 40)

        for sub_id in ids:
            pubsub.unsubscribe(sub_id)
        await pubsub.settle()

        print(f"  Broker unsubscribes: {transport.count('unsubscribe')}")
        print(f"  Messages received: {pubsub.router.stats.total_messages_received}")
        print(f"  Deliveries: {pubsub.router.stats.total_deliveries}")

    print()
    print("=" * 60)
    print("Example Complete!")
    print("=" * 60)


if __name__ == "__main__":
    anyio.run(main)
