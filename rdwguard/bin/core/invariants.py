"""
Invariant Registry - Static table of per-node tolerance and canonical-offset rules
Declared once when the avatar is built and never mutated afterwards
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, List, Optional

from .errors import LayoutError
from .pose_tree import CanonicalPose


class RecoveryPolicy(Enum):
    SNAP_TO_CANONICAL = "snap"
    SMOOTH_TO_CANONICAL = "smooth"

    @classmethod
    def parse(cls, value) -> 'RecoveryPolicy':
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for policy in cls:
            if text in (policy.value, policy.name.lower()):
                return policy
        raise LayoutError(f"Unknown recovery policy: {value}")


@dataclass(frozen=True)
class Invariant:
    """Drift rule for one governed node"""
    target_node: str
    max_allowed_local_displacement: float
    recovery_policy: RecoveryPolicy
    canonical: CanonicalPose
    suspend_during_reset: bool = False


# Redirected-walking rig: RDW root carries the redirection frame, the avatar
# hangs off it at the local origin, the simulated head sits at standing height
# and the visual avatarRoot is placed every frame by the visual rebaser.
DEFAULT_AVATAR_LAYOUT: List[Dict] = [
    {
        "name": "RDW",
        "parent": None,
        "governed": False,
    },
    {
        "name": "Redirected Avatar",
        "parent": "RDW",
        "canonical_position": [0.0, 0.0, 0.0],
        "tolerance_radius": 0.01,
        "recovery_policy": "snap",
    },
    {
        "name": "Simulated User",
        "parent": "Redirected Avatar",
        "canonical_position": [0.0, 0.0, 0.0],
        "tolerance_radius": 0.01,
        "recovery_policy": "snap",
    },
    {
        "name": "Head",
        "parent": "Simulated User",
        "canonical_position": [0.0, 1.6, 0.0],
        "tolerance_radius": 0.05,
        "recovery_policy": "smooth",
        "suspend_during_reset": True,
    },
    {
        "name": "Body",
        "parent": "Redirected Avatar",
        "canonical_position": [0.0, 0.0, 0.0],
        "tolerance_radius": 0.01,
        "recovery_policy": "snap",
        "suspend_during_reset": True,
    },
    {
        "name": "avatarRoot",
        "parent": "Body",
        "governed": False,
    },
]


class InvariantRegistry:
    """Read-only lookup of invariants by node name"""

    def __init__(self, invariants: List[Invariant]):
        self.logger = logging.getLogger(__name__)
        table = {}
        for invariant in invariants:
            if invariant.target_node in table:
                raise LayoutError(f"Duplicate invariant for node: {invariant.target_node}")
            if invariant.max_allowed_local_displacement < 0:
                raise LayoutError(f"Negative tolerance for node: {invariant.target_node}")
            table[invariant.target_node] = invariant
        self._table = MappingProxyType(table)

    @classmethod
    def from_layout(cls, layout: List[Dict], suspended_nodes: Optional[List[str]] = None) -> 'InvariantRegistry':
        """Build invariants for the governed entries of an avatar layout table

        ``suspended_nodes`` adds reset suspension on top of the per-entry
        ``suspend_during_reset`` flag.
        """
        suspended = set(suspended_nodes or [])
        invariants = []
        for entry in layout:
            if not entry.get('governed', True):
                continue
            name = entry['name']
            if entry.get('parent') is None:
                raise LayoutError(f"Root node '{name}' cannot be governed")
            invariants.append(Invariant(
                target_node=name,
                max_allowed_local_displacement=float(entry.get('tolerance_radius', 0.01)),
                recovery_policy=RecoveryPolicy.parse(entry.get('recovery_policy', 'snap')),
                canonical=CanonicalPose.create(
                    entry.get('canonical_position', (0.0, 0.0, 0.0)),
                    entry.get('canonical_rotation', (1.0, 0.0, 0.0, 0.0)),
                ),
                suspend_during_reset=bool(entry.get('suspend_during_reset', False)) or name in suspended,
            ))
        registry = cls(invariants)
        registry.logger.debug(f"Invariant registry holds {len(registry)} governed nodes")
        return registry

    def get(self, name: str) -> Optional[Invariant]:
        return self._table.get(name)

    def is_governed(self, name: str) -> bool:
        return name in self._table

    @property
    def table(self) -> MappingProxyType:
        return self._table

    def __iter__(self) -> Iterator[Invariant]:
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)
