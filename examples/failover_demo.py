#!/usr/bin/env python3
"""
Failover demo for the IP claim controller.

Two nodes join, a service asks for two external IPs, then one node stops
heartbeating and its claims move to the survivor.
"""

import asyncio

from ipclaim.scheduler import IpClaimScheduler, SchedulerConfig
from ipclaim.store import InMemoryStore, IpNode, ObjectMeta, Service, ServiceSpec
from ipclaim.utils.logging import configure_logging


async def heartbeat(store, name, interval_s, stop):
    """Bump a node's generation until stop is set."""
    while not stop.is_set():
        node = await store.ipnodes.get(name)
        await store.ipnodes.update(node)
        await asyncio.sleep(interval_s)


async def show_claims(store, title):
    print(f"\n{title}")
    for claim in await store.ipclaims.list():
        print(f"  {claim.spec.cidr:<18} -> {claim.spec.node_name or '(unassigned)'}")


async def main():
    configure_logging(log_level="WARNING", log_format="console")

    print("=" * 60)
    print("IP claim controller - failover demo")
    print("=" * 60)

    store = InMemoryStore()
    await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="node-a", generation=1)))
    await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="node-b", generation=1)))

    scheduler = IpClaimScheduler(store, SchedulerConfig(default_mask="32", monitor_interval_s=0.5))
    await scheduler.start()

    stop_a = asyncio.Event()
    stop_b = asyncio.Event()
    beats = [
        asyncio.create_task(heartbeat(store, "node-a", 0.2, stop_a)),
        asyncio.create_task(heartbeat(store, "node-b", 0.2, stop_b)),
    ]

    await store.services.create(
        Service(
            metadata=ObjectMeta(name="web"),
            spec=ServiceSpec(external_ips=["203.0.113.10", "203.0.113.11"]),
        )
    )
    await asyncio.sleep(1.2)
    await show_claims(store, "[1] Both nodes heartbeating")

    print("\n[2] node-a stops heartbeating...")
    stop_a.set()
    await asyncio.sleep(1.5)
    await show_claims(store, "[3] After failover")
    print(f"\nLive nodes: {scheduler.liveness.live_nodes()}")

    stop_b.set()
    await asyncio.gather(*beats)
    await scheduler.stop()
    store.close()


if __name__ == "__main__":
    asyncio.run(main())
