"""
Resource store client interface.

The controller only talks to the store through these protocols, so any
backend offering create/update/delete/list/watch per kind can drive it.
Failures are raised as ipclaim.store.errors.StoreError subclasses.
"""

from typing import Dict, List, Optional, Protocol, TypeVar

from ipclaim.store.models import IpClaim, IpNode, Service
from ipclaim.store.watch import Watch

T = TypeVar("T")


class ResourceClient(Protocol[T]):
    """Operations available for one resource kind."""

    async def create(self, obj: T) -> T:
        ...

    async def update(self, obj: T) -> T:
        ...

    async def delete(self, name: str) -> None:
        ...

    async def get(self, name: str) -> T:
        ...

    async def list(self, label_selector: Optional[Dict[str, str]] = None) -> List[T]:
        ...

    async def watch(self) -> Watch:
        ...


class ResourceStore(Protocol):
    """Clients for the three kinds the controller works with."""

    @property
    def services(self) -> ResourceClient[Service]:
        ...

    @property
    def ipclaims(self) -> ResourceClient[IpClaim]:
        ...

    @property
    def ipnodes(self) -> ResourceClient[IpNode]:
        ...
