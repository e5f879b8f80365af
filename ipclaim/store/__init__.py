"""
Resource store: models, client interface, watch streams and the in-memory
reference backend.
"""

from ipclaim.store.errors import (
    AbortedError,
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)
from ipclaim.store.interface import ResourceClient, ResourceStore
from ipclaim.store.memory import InMemoryResourceClient, InMemoryStore
from ipclaim.store.models import (
    NODE_LABEL,
    IpClaim,
    IpClaimSpec,
    IpNode,
    ObjectMeta,
    ResourceKind,
    Service,
    ServiceSpec,
    claim_cidr,
    claim_name,
    new_claim,
)
from ipclaim.store.watch import EventType, Watch, WatchEvent

__all__ = [
    # Errors
    "StoreError",
    "AbortedError",
    "AlreadyExistsError",
    "NotFoundError",
    "ConflictError",
    # Interface
    "ResourceClient",
    "ResourceStore",
    "InMemoryResourceClient",
    "InMemoryStore",
    # Models
    "NODE_LABEL",
    "ObjectMeta",
    "ResourceKind",
    "Service",
    "ServiceSpec",
    "IpClaim",
    "IpClaimSpec",
    "IpNode",
    "claim_name",
    "claim_cidr",
    "new_claim",
    # Watch
    "EventType",
    "Watch",
    "WatchEvent",
]
