"""End-to-end tests running all three loops together."""

import asyncio

import pytest

from ipclaim.scheduler import IpClaimScheduler, SchedulerConfig
from ipclaim.store import (
    InMemoryStore,
    IpNode,
    NotFoundError,
    ObjectMeta,
    Service,
    ServiceSpec,
    StoreError,
)


class ManualTicks:
    """Tick source driven by the test."""

    def __init__(self, stop):
        self.stop = stop
        self._queue = asyncio.Queue()

    def tick(self):
        self._queue.put_nowait(object())

    def __aiter__(self):
        return self

    async def __anext__(self):
        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self.stop.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            getter.cancel()
            stopper.cancel()
        if getter in done:
            return getter.result()
        raise StopAsyncIteration


async def heartbeat(store, name):
    node = await store.ipnodes.get(name)
    await store.ipnodes.update(node)


async def wait_for_node(store, claim, other_than="", timeout=2.0):
    """Wait until the claim is assigned to a node other than other_than."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    node_name = ""
    while loop.time() < deadline:
        try:
            node_name = (await store.ipclaims.get(claim)).spec.node_name
        except NotFoundError:
            node_name = ""
        if node_name and node_name != other_than:
            return node_name
        await asyncio.sleep(0.01)
    return node_name


class TestIpClaimScheduler:
    """Test IpClaimScheduler with all loops running."""

    @pytest.mark.asyncio
    async def test_failover_to_live_node(self, wait_until, scheduler_config):
        """Test a claim moves to a live node when its node stops heartbeating."""
        store = InMemoryStore()
        await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="first", generation=1)))
        await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="second", generation=1)))

        scheduler = IpClaimScheduler(store, scheduler_config)
        stop = asyncio.Event()
        ticks = ManualTicks(stop)
        task = asyncio.create_task(scheduler.run(stop, ticks))

        try:
            await store.services.create(
                Service(metadata=ObjectMeta(name="test0"), spec=ServiceSpec(external_ips=["10.10.0.2"]))
            )

            assert await wait_for_node(store, "10.10.0.2-24") == "first"

            ticks.tick()
            assert await wait_until(lambda: scheduler.is_live("second"))

            await heartbeat(store, "second")
            ticks.tick()
            assert await wait_until(lambda: scheduler.liveness.is_dead("first"))

            assert await wait_for_node(store, "10.10.0.2-24", other_than="first") == "second"

            claim = await store.ipclaims.get("10.10.0.2-24")
            assert claim.metadata.labels == {"ipnode": "second"}

            await store.services.delete("test0")
            assert await wait_until(lambda: len(store.ipclaims) == 0)

        finally:
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)
            store.close()

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test starting and stopping background loops."""
        store = InMemoryStore()
        scheduler = IpClaimScheduler(store, SchedulerConfig(monitor_interval_s=0.01))

        await scheduler.start()
        await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="first", generation=1)))
        await asyncio.sleep(0.05)

        await asyncio.wait_for(scheduler.stop(), timeout=1.0)

        assert "first" in scheduler.liveness.observed_generation

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        """Test stop is a no-op when never started."""
        scheduler = IpClaimScheduler(InMemoryStore())

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_watch_failure_does_not_end_run(self, store, scheduler_config, wait_until):
        """Test run keeps going while a watch cannot be opened yet."""
        store.services.fail("watch", *[StoreError("watch unavailable") for _ in range(4)])
        await store.backend.ipnodes.create(IpNode(metadata=ObjectMeta(name="first", generation=1)))
        scheduler = IpClaimScheduler(store, scheduler_config)

        stop = asyncio.Event()
        task = asyncio.create_task(scheduler.run(stop, ManualTicks(stop)))

        try:
            await store.backend.services.create(
                Service(metadata=ObjectMeta(name="test0"), spec=ServiceSpec(external_ips=["10.10.0.2"]))
            )

            assert await wait_for_node(store.backend, "10.10.0.2-24") == "first"
            assert not task.done()

        finally:
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_loop_crash_cancels_other_loops(self, store, scheduler_config, settle):
        """Test an unexpected loop error ends run without leaving loops behind."""
        store.services.fail("watch", RuntimeError("watch broken"))
        scheduler = IpClaimScheduler(store, scheduler_config)
        before = asyncio.all_tasks()

        stop = asyncio.Event()
        with pytest.raises(RuntimeError, match="watch broken"):
            await asyncio.wait_for(scheduler.run(stop, ManualTicks(stop)), timeout=1.0)
        await settle()

        assert asyncio.all_tasks() - before == set()
        assert not stop.is_set()
