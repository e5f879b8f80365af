"""Shared fixtures: an in-memory store that records every call."""

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

import pytest

from ipclaim.scheduler import RetryConfig, SchedulerConfig
from ipclaim.store import InMemoryStore


@dataclass
class Call:
    method: str
    args: tuple
    kwargs: Dict[str, Any] = field(default_factory=dict)


class RecordingClient:
    """
    Wraps a resource client, recording calls and injecting failures.

    watch() is not recorded, but fail("watch", ...) applies to it.
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls: List[Call] = []
        self._failures: Dict[str, List[Exception]] = {}
        self._hooks: Dict[str, Callable[[], None]] = {}

    def fail(self, method: str, *errors: Exception) -> None:
        """Make the next len(errors) calls to method raise, in order."""
        self._failures.setdefault(method, []).extend(errors)

    def on(self, method: str, callback: Callable[[], None]) -> None:
        """Run callback at the start of every call to method."""
        self._hooks[method] = callback

    def calls_to(self, method: str) -> List[Call]:
        return [call for call in self.calls if call.method == method]

    async def _call(self, method: str, *args, **kwargs):
        self.calls.append(Call(method, copy.deepcopy(args), copy.deepcopy(kwargs)))
        hook = self._hooks.get(method)
        if hook:
            hook()
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)
        return await getattr(self.inner, method)(*args, **kwargs)

    async def create(self, obj):
        return await self._call("create", obj)

    async def update(self, obj):
        return await self._call("update", obj)

    async def delete(self, name):
        return await self._call("delete", name)

    async def get(self, name):
        return await self._call("get", name)

    async def list(self, label_selector=None):
        return await self._call("list", label_selector=label_selector)

    async def watch(self):
        pending = self._failures.get("watch")
        if pending:
            raise pending.pop(0)
        return await self.inner.watch()


class RecordingStore:
    """InMemoryStore with every client wrapped in a RecordingClient."""

    def __init__(self):
        self.backend = InMemoryStore()
        self.services = RecordingClient(self.backend.services)
        self.ipclaims = RecordingClient(self.backend.ipclaims)
        self.ipnodes = RecordingClient(self.backend.ipnodes)

    def reset_calls(self) -> None:
        for client in (self.services, self.ipclaims, self.ipnodes):
            client.calls.clear()


@pytest.fixture
def store():
    """Recording in-memory store."""
    return RecordingStore()


@pytest.fixture
def scheduler_config():
    """Scheduler config with mask 24 and fast retries."""
    return SchedulerConfig(
        default_mask="24",
        monitor_interval_s=0.05,
        retry=RetryConfig(max_retries=2, retry_backoff_ms=1, retry_jitter_ms=0),
    )


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait_until(predicate, timeout: float = 2.0) -> bool:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                return False
            await asyncio.sleep(0.01)
        return True

    return _wait_until


@pytest.fixture
def settle():
    """Let queued events drain through running loops."""

    async def _settle(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle
