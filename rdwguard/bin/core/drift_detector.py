"""
Drift Detector - Per-frame scan of the governed pose nodes
Compares actual ownership and local pose against the invariant registry
"""

import logging
import math
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .invariants import Invariant, InvariantRegistry
from .pose_tree import PoseNode, PoseTree


class DriftKind(Enum):
    OWNERSHIP = "OwnershipViolation"
    INVALID = "InvalidPose"
    MAGNITUDE = "MagnitudeViolation"
    MISSING = "MissingNode"


# Lower value is handled first by the corrector
KIND_PRIORITY = {
    DriftKind.OWNERSHIP: 0,
    DriftKind.INVALID: 1,
    DriftKind.MAGNITUDE: 2,
    DriftKind.MISSING: 3,
}


class CorrectionAction(Enum):
    PENDING = "pending"
    REATTACHED = "reattached"
    RESTORED_LAST_GOOD = "restored_last_good"
    SNAPPED = "snapped"
    SMOOTHED = "smoothed"
    SUSPENDED = "suspended"
    CHECKS_DISABLED = "checks_disabled"
    KEPT_LAST_GOOD = "kept_last_good"


@dataclass
class DriftEvent:
    """One detected violation and what was done about it"""
    node: str
    kind: DriftKind
    observed_displacement: float
    observed_position: Optional[np.ndarray] = None
    canonical_position: Optional[np.ndarray] = None
    action_taken: CorrectionAction = CorrectionAction.PENDING
    frame: int = 0
    source: str = "frame"
    detail: str = ""
    timestamp: float = field(default=0.0)

    @property
    def pending(self) -> bool:
        return self.action_taken == CorrectionAction.PENDING


def is_valid_position(position, ceiling: float) -> bool:
    """Finite and inside the sanity ceiling"""
    position = np.asarray(position, dtype=float)
    if position.shape != (3,) or not np.all(np.isfinite(position)):
        return False
    return float(np.linalg.norm(position)) <= ceiling


def is_valid_rotation(rotation) -> bool:
    quat = rotation.as_quat()
    return bool(np.all(np.isfinite(quat)))


class DriftDetector:
    """Read-only scanner producing DriftEvents for the governed nodes"""

    def __init__(self, registry: InvariantRegistry, sanity_ceiling: float = 1000.0, reset_gate=None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.sanity_ceiling = float(sanity_ceiling)
        self.reset_gate = reset_gate

        # Nodes currently reported missing, keyed by name until they reappear
        self._missing: Set[str] = set()
        self.frame_count = 0
        self.reappeared: List[str] = []

    @property
    def missing_nodes(self) -> Set[str]:
        return set(self._missing)

    def scan(self, tree: PoseTree, frame: Optional[int] = None, timestamp: float = 0.0) -> List[DriftEvent]:
        """Check every governed node once and return the violations found"""
        self.frame_count = frame if frame is not None else self.frame_count + 1
        self.reappeared = []
        events = []
        for invariant in self.registry:
            event = self._check_node(tree, invariant)
            if event is not None:
                event.frame = self.frame_count
                event.timestamp = timestamp
                events.append(event)
        return events

    def _check_node(self, tree: PoseTree, invariant: Invariant) -> Optional[DriftEvent]:
        name = invariant.target_node
        node = tree.find(name)

        if node is None or not node.is_alive:
            state = "disabled" if node is not None and not node.destroyed else "destroyed"
            return self._report_missing(name, f"node {state}")

        declared = tree.declared_parent(node)
        if declared is None:
            return self._report_missing(name, f"declared parent '{tree.declared_parent_name(name)}' missing")

        canonical = invariant.canonical.position

        # A live node attached elsewhere is repairable even while its declared parent is disabled
        if node.parent is not declared:
            actual = node.parent.name if node.parent is not None else None
            return DriftEvent(
                node=name,
                kind=DriftKind.OWNERSHIP,
                observed_displacement=self._safe_displacement(node),
                observed_position=np.array(node.local_position, dtype=float),
                canonical_position=canonical,
                detail=f"parent is {actual!r}, declared {declared.name!r}",
            )

        if not declared.is_alive:
            return self._report_missing(name, f"declared parent '{declared.name}' missing")

        if name in self._missing:
            self._missing.discard(name)
            self.reappeared.append(name)
            self.logger.info(f"✓ Node {name} reappeared, checks resumed")

        if not is_valid_position(node.local_position, self.sanity_ceiling) or not is_valid_rotation(node.local_rotation):
            return DriftEvent(
                node=name,
                kind=DriftKind.INVALID,
                observed_displacement=self._safe_displacement(node),
                observed_position=np.array(node.local_position, dtype=float),
                canonical_position=canonical,
                detail="non-finite or beyond sanity ceiling",
            )

        displacement = float(np.linalg.norm(node.local_position - canonical))
        if displacement > invariant.max_allowed_local_displacement:
            event = DriftEvent(
                node=name,
                kind=DriftKind.MAGNITUDE,
                observed_displacement=displacement,
                observed_position=np.array(node.local_position, dtype=float),
                canonical_position=canonical,
            )
            if self.reset_gate is not None and not self.reset_gate.allows(DriftKind.MAGNITUDE, invariant):
                event.action_taken = CorrectionAction.SUSPENDED
                event.detail = "reset in progress"
            return event

        return None

    def _report_missing(self, name: str, reason: str) -> Optional[DriftEvent]:
        if name in self._missing:
            return None
        self._missing.add(name)
        self.logger.warning(f"⚠ Node {name} missing ({reason}), checks disabled until it reappears")
        return DriftEvent(
            node=name,
            kind=DriftKind.MISSING,
            observed_displacement=math.nan,
            action_taken=CorrectionAction.CHECKS_DISABLED,
            detail=reason,
        )

    @staticmethod
    def _safe_displacement(node: PoseNode) -> float:
        with np.errstate(invalid='ignore', over='ignore'):
            return node.local_displacement()

    def get_status(self) -> Dict:
        return {
            'frame': self.frame_count,
            'governed_nodes': len(self.registry),
            'missing_nodes': sorted(self._missing),
        }
