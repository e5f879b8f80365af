"""Tests for the in-memory resource store."""

import asyncio

import pytest

from ipclaim.store import (
    AlreadyExistsError,
    ConflictError,
    EventType,
    InMemoryStore,
    IpNode,
    NotFoundError,
    ObjectMeta,
    Service,
    ServiceSpec,
    new_claim,
)


class TestInMemoryResourceClient:
    """Test per-kind CRUD semantics."""

    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        """Test created objects can be read back."""
        created = await store.ipclaims.create(new_claim("10.0.0.1", "24"))

        fetched = await store.ipclaims.get("10.0.0.1-24")

        assert fetched.spec.cidr == "10.0.0.1/24"
        assert fetched.metadata.resource_version == created.metadata.resource_version
        assert created.metadata.resource_version != ""

    @pytest.mark.asyncio
    async def test_create_existing_fails(self, store):
        """Test create of an existing name raises AlreadyExistsError."""
        await store.ipclaims.create(new_claim("10.0.0.1", "24"))

        with pytest.raises(AlreadyExistsError) as exc_info:
            await store.ipclaims.create(new_claim("10.0.0.1", "24"))

        assert exc_info.value.name == "10.0.0.1-24"
        assert exc_info.value.kind == "IpClaim"
        assert len(store.ipclaims) == 1

    @pytest.mark.asyncio
    async def test_update_bumps_generation(self, store):
        """Test every update advances generation and resource version."""
        node = await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="n1", generation=4)))

        updated = await store.ipnodes.update(node)

        assert updated.generation == 5
        assert int(updated.metadata.resource_version) > int(node.metadata.resource_version)

    @pytest.mark.asyncio
    async def test_update_missing_fails(self, store):
        with pytest.raises(NotFoundError):
            await store.ipclaims.update(new_claim("10.0.0.1", "24"))

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, store):
        """Test update with an outdated resource version is rejected."""
        first = await store.ipclaims.create(new_claim("10.0.0.1", "24"))
        second = await store.ipclaims.get("10.0.0.1-24")

        first.assign("a")
        await store.ipclaims.update(first)

        second.assign("b")
        with pytest.raises(ConflictError):
            await store.ipclaims.update(second)

        stored = await store.ipclaims.get("10.0.0.1-24")
        assert stored.spec.node_name == "a"

    @pytest.mark.asyncio
    async def test_update_without_version_skips_check(self, store):
        """Test an empty resource version is accepted unconditionally."""
        await store.ipclaims.create(new_claim("10.0.0.1", "24"))

        claim = new_claim("10.0.0.1", "24")
        claim.assign("a")
        await store.ipclaims.update(claim)

        assert (await store.ipclaims.get("10.0.0.1-24")).spec.node_name == "a"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.ipclaims.create(new_claim("10.0.0.1", "24"))

        await store.ipclaims.delete("10.0.0.1-24")

        with pytest.raises(NotFoundError):
            await store.ipclaims.get("10.0.0.1-24")
        with pytest.raises(NotFoundError):
            await store.ipclaims.delete("10.0.0.1-24")

    @pytest.mark.asyncio
    async def test_list_sorted_and_filtered(self, store):
        """Test list ordering and label selection."""
        for ip, node in (("10.0.0.3", "a"), ("10.0.0.1", "b"), ("10.0.0.2", "a")):
            claim = new_claim(ip, "24")
            claim.assign(node)
            await store.ipclaims.create(claim)

        everything = await store.ipclaims.list()
        on_a = await store.ipclaims.list(label_selector={"ipnode": "a"})

        assert [c.name for c in everything] == ["10.0.0.1-24", "10.0.0.2-24", "10.0.0.3-24"]
        assert [c.name for c in on_a] == ["10.0.0.2-24", "10.0.0.3-24"]

    @pytest.mark.asyncio
    async def test_objects_are_copied(self, store):
        """Test callers cannot mutate stored state."""
        claim = new_claim("10.0.0.1", "24")
        await store.ipclaims.create(claim)
        claim.assign("sneaky")

        listed = await store.ipclaims.list()
        listed[0].assign("also-sneaky")

        assert (await store.ipclaims.get("10.0.0.1-24")).spec.node_name == ""


class TestWatch:
    """Test watch streams."""

    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.mark.asyncio
    async def test_replay_then_stream(self, store):
        """Test existing objects replay as ADDED, then writes stream in order."""
        svc = Service(metadata=ObjectMeta(name="a"), spec=ServiceSpec(external_ips=["1.1.1.1"]))
        await store.services.create(svc)

        watch = await store.services.watch()

        svc = await store.services.get("a")
        svc.spec.external_ips.append("2.2.2.2")
        await store.services.update(svc)
        await store.services.delete("a")

        events = []
        async for event in watch:
            events.append(event)
            if len(events) == 3:
                break

        assert [e.type for e in events] == [EventType.ADDED, EventType.MODIFIED, EventType.DELETED]
        assert events[1].obj.spec.external_ips == ["1.1.1.1", "2.2.2.2"]
        assert events[2].obj.name == "a"

    @pytest.mark.asyncio
    async def test_stop_wakes_consumer(self, store):
        """Test stopping a watch ends a blocked iteration."""
        watch = await store.ipnodes.watch()

        async def consume():
            return [event async for event in watch]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        watch.stop()

        assert await asyncio.wait_for(task, timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_closed_watch_receives_nothing(self, store):
        """Test events after stop are dropped."""
        watch = await store.ipnodes.watch()
        watch.stop()

        await store.ipnodes.create(IpNode(metadata=ObjectMeta(name="n1")))

        assert [event async for event in watch] == []

    @pytest.mark.asyncio
    async def test_close_stops_all_watches(self, store):
        watches = [await store.services.watch(), await store.ipclaims.watch()]

        store.close()

        assert all(w.closed for w in watches)

    @pytest.mark.asyncio
    async def test_seed_routes_by_kind(self, store):
        """Test seed places each object in its own kind."""
        await store.seed([
            Service(metadata=ObjectMeta(name="svc")),
            IpNode(metadata=ObjectMeta(name="node")),
            new_claim("10.0.0.1", "24"),
        ])

        assert len(store.services) == 1
        assert len(store.ipnodes) == 1
        assert len(store.ipclaims) == 1
