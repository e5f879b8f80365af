"""
ipclaim - external IP claim controller.

Allocates externally-routable IP addresses to cluster nodes on behalf of
exposed services and keeps the allocation consistent with node liveness:
- Services with external IPs get one IpClaim per IP
- Unassigned IpClaims are bound to an eligible IpNode
- IpNodes whose generation stops advancing are declared dead and their
  claims are released for rescheduling
"""

__version__ = "0.1.0"

from ipclaim.scheduler import IpClaimScheduler, LivenessState, SchedulerConfig
from ipclaim.store import InMemoryStore, IpClaim, IpNode, Service

__all__ = [
    "IpClaimScheduler",
    "LivenessState",
    "SchedulerConfig",
    "InMemoryStore",
    "IpClaim",
    "IpNode",
    "Service",
]
