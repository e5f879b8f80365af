"""
Resource models watched and written by the controller.

Three kinds are involved:
- Service: an exposed service listing the external IPs it wants routed
- IpClaim: one external IP/CIDR and the node currently holding it
- IpNode: a node eligible to hold claims, heartbeating via its generation
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

NODE_LABEL = "ipnode"


class ResourceKind(str, Enum):
    """Resource kinds served by the store."""

    SERVICE = "Service"
    IPCLAIM = "IpClaim"
    IPNODE = "IpNode"


@dataclass
class ObjectMeta:
    """
    Metadata shared by every resource.

    Attributes:
        name: Unique name within the kind
        labels: Free-form string labels
        generation: Counter bumped by the store on every update
        resource_version: Opaque version used for optimistic concurrency
    """
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    generation: int = 0
    resource_version: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "labels": dict(self.labels),
            "generation": self.generation,
            "resource_version": self.resource_version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ObjectMeta":
        return cls(
            name=data["name"],
            labels=dict(data.get("labels") or {}),
            generation=int(data.get("generation", 0)),
            resource_version=str(data.get("resource_version", "")),
        )


@dataclass
class ServiceSpec:
    external_ips: List[str] = field(default_factory=list)


@dataclass
class Service:
    """An exposed service. Read-only to the controller."""
    metadata: ObjectMeta
    spec: ServiceSpec = field(default_factory=ServiceSpec)

    kind = ResourceKind.SERVICE

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_dict(self) -> dict:
        return {
            "metadata": self.metadata.to_dict(),
            "spec": {"external_ips": list(self.spec.external_ips)},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Service":
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=ServiceSpec(external_ips=list(spec.get("external_ips") or [])),
        )


@dataclass
class IpClaimSpec:
    """
    Claim specification.

    Attributes:
        cidr: IP/mask string
        node_name: Node holding the claim; empty when unassigned
    """
    cidr: str = ""
    node_name: str = ""


@dataclass
class IpClaim:
    """A named request that an external IP/CIDR be routed to some node."""
    metadata: ObjectMeta
    spec: IpClaimSpec = field(default_factory=IpClaimSpec)

    kind = ResourceKind.IPCLAIM

    @property
    def name(self) -> str:
        return self.metadata.name

    def is_assigned(self) -> bool:
        return self.spec.node_name != ""

    def assign(self, node_name: str) -> None:
        """Bind the claim to a node, keeping the node label in step."""
        self.spec.node_name = node_name
        self.metadata.labels = {NODE_LABEL: node_name}

    def release(self) -> None:
        """Return the claim to the unassigned pool."""
        self.spec.node_name = ""
        self.metadata.labels = {}

    def to_dict(self) -> dict:
        return {
            "metadata": self.metadata.to_dict(),
            "spec": {"cidr": self.spec.cidr, "node_name": self.spec.node_name},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IpClaim":
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=IpClaimSpec(
                cidr=spec.get("cidr", ""),
                node_name=spec.get("node_name", ""),
            ),
        )


@dataclass
class IpNode:
    """A node eligible to hold claims. Heartbeats bump its generation."""
    metadata: ObjectMeta

    kind = ResourceKind.IPNODE

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def generation(self) -> int:
        return self.metadata.generation

    def to_dict(self) -> dict:
        return {"metadata": self.metadata.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "IpNode":
        return cls(metadata=ObjectMeta.from_dict(data["metadata"]))


def claim_name(ip: str, mask: str) -> str:
    """Derive the claim name for an external IP."""
    return f"{ip}-{mask}"


def claim_cidr(ip: str, mask: str) -> str:
    """Derive the claim CIDR for an external IP."""
    return f"{ip}/{mask}"


def new_claim(ip: str, mask: str) -> IpClaim:
    """Build an unassigned claim for an external IP."""
    return IpClaim(
        metadata=ObjectMeta(name=claim_name(ip, mask)),
        spec=IpClaimSpec(cidr=claim_cidr(ip, mask)),
    )
