"""
In-memory resource store.

Reference backend for the store interface. Semantics follow a typical
declarative API server:
- create of an existing name fails with AlreadyExistsError
- update/delete of a missing name fails with NotFoundError
- update carrying a stale resource_version fails with ConflictError
- every write bumps resource_version, every update bumps generation
- watch() replays current objects as ADDED, then streams later writes
"""

import asyncio
import copy
import itertools
from typing import Dict, Generic, List, Optional, Set, TypeVar

from ipclaim.store.errors import AlreadyExistsError, ConflictError, NotFoundError
from ipclaim.store.models import IpClaim, IpNode, ResourceKind, Service
from ipclaim.store.watch import EventType, Watch, WatchEvent
from ipclaim.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _matches(labels: Dict[str, str], selector: Optional[Dict[str, str]]) -> bool:
    if not selector:
        return True
    return all(labels.get(key) == value for key, value in selector.items())


class InMemoryResourceClient(Generic[T]):
    """
    Store for a single resource kind.

    Objects are copied on the way in and on the way out, so callers never
    share state with the store or with each other.
    """

    def __init__(self, kind: ResourceKind, versions: "itertools.count[int]"):
        """
        Initialize client.

        Args:
            kind: Resource kind held by this client
            versions: Store-wide resource version counter
        """
        self.kind = kind
        self._objects: Dict[str, T] = {}
        self._watches: Set[Watch] = set()
        self._versions = versions
        self._lock = asyncio.Lock()

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _broadcast(self, event_type: EventType, obj: T) -> None:
        closed = {w for w in self._watches if w.closed}
        self._watches -= closed
        for watch in self._watches:
            watch.put(WatchEvent(type=event_type, obj=copy.deepcopy(obj)))

    async def create(self, obj: T) -> T:
        """
        Create an object.

        Args:
            obj: Object to store; its name must be unused

        Returns:
            Stored copy, with resource_version set

        Raises:
            AlreadyExistsError: If the name is taken
        """
        async with self._lock:
            name = obj.metadata.name
            if name in self._objects:
                raise AlreadyExistsError(
                    f"{self.kind.value} {name!r} already exists",
                    kind=self.kind.value,
                    name=name,
                )

            stored = copy.deepcopy(obj)
            stored.metadata.resource_version = self._next_version()
            self._objects[name] = stored
            self._broadcast(EventType.ADDED, stored)

            return copy.deepcopy(stored)

    async def update(self, obj: T) -> T:
        """
        Replace an existing object.

        Args:
            obj: New object state. An empty resource_version skips the
                optimistic concurrency check.

        Returns:
            Stored copy, with generation and resource_version bumped

        Raises:
            NotFoundError: If the name is not present
            ConflictError: If resource_version is stale
        """
        async with self._lock:
            name = obj.metadata.name
            current = self._objects.get(name)
            if current is None:
                raise NotFoundError(
                    f"{self.kind.value} {name!r} not found",
                    kind=self.kind.value,
                    name=name,
                )

            version = obj.metadata.resource_version
            if version and version != current.metadata.resource_version:
                raise ConflictError(
                    f"{self.kind.value} {name!r} was modified "
                    f"(have {version}, store has {current.metadata.resource_version})",
                    kind=self.kind.value,
                    name=name,
                )

            stored = copy.deepcopy(obj)
            stored.metadata.generation = current.metadata.generation + 1
            stored.metadata.resource_version = self._next_version()
            self._objects[name] = stored
            self._broadcast(EventType.MODIFIED, stored)

            return copy.deepcopy(stored)

    async def delete(self, name: str) -> None:
        """
        Delete an object.

        Raises:
            NotFoundError: If the name is not present
        """
        async with self._lock:
            current = self._objects.pop(name, None)
            if current is None:
                raise NotFoundError(
                    f"{self.kind.value} {name!r} not found",
                    kind=self.kind.value,
                    name=name,
                )
            self._broadcast(EventType.DELETED, current)

    async def get(self, name: str) -> T:
        async with self._lock:
            current = self._objects.get(name)
            if current is None:
                raise NotFoundError(
                    f"{self.kind.value} {name!r} not found",
                    kind=self.kind.value,
                    name=name,
                )
            return copy.deepcopy(current)

    async def list(self, label_selector: Optional[Dict[str, str]] = None) -> List[T]:
        """
        List objects, ordered by name.

        Args:
            label_selector: Only return objects carrying all these labels

        Returns:
            Copies of the matching objects
        """
        async with self._lock:
            return [
                copy.deepcopy(obj)
                for name, obj in sorted(self._objects.items())
                if _matches(obj.metadata.labels, label_selector)
            ]

    async def watch(self) -> Watch:
        """
        Open a watch.

        Every object present at subscription time is delivered first as an
        ADDED event; later writes follow in order.
        """
        async with self._lock:
            watch = Watch(kind=self.kind.value)
            for _, obj in sorted(self._objects.items()):
                watch.put(WatchEvent(type=EventType.ADDED, obj=copy.deepcopy(obj)))
            self._watches.add(watch)
            return watch

    def close_watches(self) -> None:
        for watch in self._watches:
            watch.stop()
        self._watches.clear()

    def __len__(self) -> int:
        return len(self._objects)


class InMemoryStore:
    """Holds one client per resource kind, sharing one version counter."""

    def __init__(self):
        versions = itertools.count(1)
        self._clients: Dict[ResourceKind, InMemoryResourceClient] = {
            ResourceKind.SERVICE: InMemoryResourceClient[Service](ResourceKind.SERVICE, versions),
            ResourceKind.IPCLAIM: InMemoryResourceClient[IpClaim](ResourceKind.IPCLAIM, versions),
            ResourceKind.IPNODE: InMemoryResourceClient[IpNode](ResourceKind.IPNODE, versions),
        }

        logger.info("InMemoryStore initialized")

    @property
    def services(self) -> InMemoryResourceClient[Service]:
        return self._clients[ResourceKind.SERVICE]

    @property
    def ipclaims(self) -> InMemoryResourceClient[IpClaim]:
        return self._clients[ResourceKind.IPCLAIM]

    @property
    def ipnodes(self) -> InMemoryResourceClient[IpNode]:
        return self._clients[ResourceKind.IPNODE]

    async def seed(self, objects: List[object]) -> None:
        """
        Create a batch of objects, routing each to its kind.

        Args:
            objects: Service, IpClaim or IpNode instances
        """
        for obj in objects:
            await self._clients[obj.kind].create(obj)

        logger.info("Store seeded", objects=len(objects))

    def close(self) -> None:
        """Stop every open watch."""
        for client in self._clients.values():
            client.close_watches()

