"""
Node liveness tracking.

A node is live iff its generation advanced since the previous observation.
The first observation of a node is optimistic: it counts as live. Only the
node monitor writes this state; readers on other tasks or threads go through
the same lock.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Set, Tuple

from ipclaim.utils.logging import get_logger

logger = get_logger(__name__)


class NodeState(str, Enum):
    """Liveness classification of a node."""

    UNKNOWN = "unknown"    # Never observed, or forgotten
    LIVE = "live"          # Generation advanced (or first sight)
    DEAD = "dead"          # Generation unchanged across an interval


@dataclass
class NodeTransition:
    """
    Classification change produced by one observation.

    Attributes:
        name: Node name
        previous: State before the observation
        current: State after the observation
    """
    name: str
    previous: NodeState
    current: NodeState

    @property
    def changed(self) -> bool:
        return self.previous != self.current

    @property
    def died(self) -> bool:
        """True when the node was live and no longer is."""
        return self.previous == NodeState.LIVE and self.current != NodeState.LIVE


class LivenessState:
    """
    Live set and last observed generation per node.

    Attributes:
        live_ip_nodes: Names of nodes currently classified live
        observed_generation: Last generation seen per node name
    """

    def __init__(self):
        self.live_ip_nodes: Set[str] = set()
        self.observed_generation: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _state(self, name: str) -> NodeState:
        if name not in self.observed_generation:
            return NodeState.UNKNOWN
        if name in self.live_ip_nodes:
            return NodeState.LIVE
        return NodeState.DEAD

    def _observe(self, name: str, generation: int) -> NodeTransition:
        previous = self._state(name)
        last = self.observed_generation.get(name)

        if last is None or last != generation:
            self.observed_generation[name] = generation
            self.live_ip_nodes.add(name)
        else:
            self.live_ip_nodes.discard(name)

        return NodeTransition(name=name, previous=previous, current=self._state(name))

    def _forget(self, name: str) -> NodeTransition:
        previous = self._state(name)
        self.observed_generation.pop(name, None)
        self.live_ip_nodes.discard(name)
        return NodeTransition(name=name, previous=previous, current=NodeState.UNKNOWN)

    def observe(self, name: str, generation: int) -> NodeTransition:
        """
        Record one generation sample for a node.

        Args:
            name: Node name
            generation: Generation seen in the latest listing

        Returns:
            Resulting transition
        """
        with self._lock:
            return self._observe(name, generation)

    def observe_all(self, samples: Iterable[Tuple[str, int]]) -> List[NodeTransition]:
        """
        Apply a full listing in one step.

        Tracked nodes missing from the listing are forgotten; if they were
        live, their transition reports died.

        Args:
            samples: (name, generation) pairs from one listing

        Returns:
            Transitions for every listed node, then for every forgotten one
        """
        with self._lock:
            transitions = []
            seen = set()
            for name, generation in samples:
                seen.add(name)
                transitions.append(self._observe(name, generation))

            for name in sorted(set(self.observed_generation) - seen):
                transitions.append(self._forget(name))

            return transitions

    def state(self, name: str) -> NodeState:
        with self._lock:
            return self._state(name)

    def is_live(self, name: str) -> bool:
        """Whether the node is currently in the live set."""
        with self._lock:
            return name in self.live_ip_nodes

    def is_dead(self, name: str) -> bool:
        """Whether the node has been observed and is not live."""
        with self._lock:
            return self._state(name) == NodeState.DEAD

    def live_nodes(self) -> List[str]:
        with self._lock:
            return sorted(self.live_ip_nodes)

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """Per-node generation and state, for diagnostics."""
        with self._lock:
            return {
                name: {
                    "generation": generation,
                    "state": self._state(name).value,
                }
                for name, generation in sorted(self.observed_generation.items())
            }
