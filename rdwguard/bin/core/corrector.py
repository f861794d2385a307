"""
Corrector - Applies ownership and pose repairs to the pose tree
Sole writer of local pose on governed nodes; consumes DriftEvents in priority order
"""

import logging
import numpy as np
from typing import Dict, Iterable, List, NamedTuple, Optional
from scipy.spatial.transform import Rotation as R

from .drift_detector import (CorrectionAction, DriftEvent, DriftKind, KIND_PRIORITY,
                             is_valid_position, is_valid_rotation)
from .errors import LayoutError
from .invariants import InvariantRegistry, RecoveryPolicy
from .pose_tree import PoseNode, PoseTree


class LocalPose(NamedTuple):
    """Snapshot of a node's local pose"""
    position: np.ndarray
    rotation: R


class Corrector:
    """Repairs violations reported by the DriftDetector and the consistency scan"""

    def __init__(self, registry: InvariantRegistry, config: Dict = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry

        self.config = config or {}
        self.gross_factor = float(self.config.get('gross_factor', 10.0))
        self.smoothing_rate = float(self.config.get('smoothing_rate', 0.35))
        self.sanity_ceiling = float(self.config.get('sanity_ceiling', 1000.0))
        self.max_smoothing_frames = int(self.config.get('max_smoothing_frames', 30))

        # Per-node state, keyed by name
        self.last_known_good: Dict[str, LocalPose] = {}
        self.smoothing_frames: Dict[str, int] = {}

        self.corrections_applied = 0

    def gross_threshold(self, node_name: str) -> float:
        invariant = self.registry.get(node_name)
        return invariant.max_allowed_local_displacement * self.gross_factor

    def apply(self, tree: PoseTree, events: Iterable[DriftEvent]) -> List[DriftEvent]:
        """Resolve pending events, Ownership first, then Invalid, then Magnitude"""
        # Ownership repairs run parents first so a re-attach never lands under its own subtree
        ordered = sorted(events, key=lambda e: (
            KIND_PRIORITY[e.kind],
            tree.declared_depth(e.node) if e.kind == DriftKind.OWNERSHIP else 0))
        repaired = {}
        for event in ordered:
            if not event.pending:
                continue
            node = tree.find(event.node)
            if node is None or node.destroyed:
                event.action_taken = CorrectionAction.CHECKS_DISABLED
                continue
            # One repair per node per pass; the first one already restored the pose
            if event.node in repaired:
                event.action_taken = repaired[event.node]
                continue

            if event.kind == DriftKind.OWNERSHIP:
                self._repair_ownership(tree, node, event)
            elif event.kind == DriftKind.INVALID:
                self._restore_last_good(node, event)
            elif event.kind == DriftKind.MAGNITUDE:
                self._correct_magnitude(node, event)
            else:
                continue
            repaired[event.node] = event.action_taken
            self.corrections_applied += 1

        self._drop_settled(ordered)
        return ordered

    def _repair_ownership(self, tree: PoseTree, node: PoseNode, event: DriftEvent):
        declared = tree.declared_parent(node)
        if declared is None:
            event.action_taken = CorrectionAction.CHECKS_DISABLED
            return

        if node.parent is not declared:
            try:
                node.set_parent(declared, world_position_stays=False)
            except LayoutError as e:
                event.action_taken = CorrectionAction.CHECKS_DISABLED
                refused = f"re-attach refused: {e}"
                event.detail = f"{event.detail}; {refused}" if event.detail else refused
                self.logger.error(f"Could not re-attach {node.name} to {declared.name}: {e}")
                return
        elif node.parent is not None and node not in node.parent.children:
            # Parent pointer is right but the parent lost track of the child
            node.parent.children.append(node)

        # Canonical pose is authoritative; the world pose is what ownership corruption broke
        canonical = node.canonical_local_pose
        node.local_position = np.array(canonical.position, dtype=float)
        node.local_rotation = canonical.rotation_obj
        self.smoothing_frames.pop(node.name, None)
        event.action_taken = CorrectionAction.REATTACHED
        self.logger.warning(f"⚠ Re-attached {node.name} to {declared.name} ({event.detail})")

    def _restore_last_good(self, node: PoseNode, event: DriftEvent):
        good = self.last_known_good.get(node.name)
        if good is None:
            canonical = node.canonical_local_pose
            good = LocalPose(np.array(canonical.position, dtype=float), canonical.rotation_obj)
        node.local_position = np.array(good.position, dtype=float)
        node.local_rotation = good.rotation
        self.smoothing_frames.pop(node.name, None)
        event.action_taken = CorrectionAction.RESTORED_LAST_GOOD
        self.logger.warning(f"⚠ Invalid pose on {node.name}, restored last known-good {good.position}")

    def _correct_magnitude(self, node: PoseNode, event: DriftEvent):
        invariant = self.registry.get(node.name)
        if invariant is None:
            event.action_taken = CorrectionAction.CHECKS_DISABLED
            return

        canonical = np.array(invariant.canonical.position, dtype=float)
        offset = node.local_position - canonical
        displacement = float(np.linalg.norm(offset))
        tolerance = invariant.max_allowed_local_displacement

        frames = self.smoothing_frames.get(node.name, 0)
        snap = (
            invariant.recovery_policy == RecoveryPolicy.SNAP_TO_CANONICAL
            or displacement > self.gross_threshold(node.name)
            or frames >= self.max_smoothing_frames
        )
        if snap:
            node.local_position = canonical
            self.smoothing_frames.pop(node.name, None)
            event.action_taken = CorrectionAction.SNAPPED
            self.logger.debug(f"Snapped {node.name} to canonical (drift {displacement:.3f}m)")
            return

        remaining = offset * (1.0 - self.smoothing_rate)
        if np.linalg.norm(remaining) <= tolerance:
            node.local_position = canonical
            self.smoothing_frames.pop(node.name, None)
        else:
            node.local_position = canonical + remaining
            self.smoothing_frames[node.name] = frames + 1
        event.action_taken = CorrectionAction.SMOOTHED

    def _drop_settled(self, events: List[DriftEvent]):
        """Forget smoothing counters for nodes that were not smoothed this pass"""
        smoothing_now = {e.node for e in events if e.action_taken == CorrectionAction.SMOOTHED}
        for name in list(self.smoothing_frames):
            if name not in smoothing_now:
                del self.smoothing_frames[name]

    def record_known_good(self, tree: PoseTree, gated: Iterable[str] = ()):
        """Remember the local pose of every valid node that is compliant or reset-gated"""
        gated = set(gated)
        for node in tree.walk():
            if not node.is_alive:
                continue
            if not is_valid_position(node.local_position, self.sanity_ceiling) or not is_valid_rotation(node.local_rotation):
                continue
            invariant = self.registry.get(node.name)
            if invariant is not None and node.name not in gated:
                displacement = float(np.linalg.norm(node.local_position - invariant.canonical.position))
                if displacement > invariant.max_allowed_local_displacement:
                    continue
            self.last_known_good[node.name] = LocalPose(np.array(node.local_position, dtype=float), node.local_rotation)

    def forget(self, names: Iterable[str]):
        """Drop per-node state for stale or reappeared nodes"""
        for name in names:
            self.last_known_good.pop(name, None)
            self.smoothing_frames.pop(name, None)

    def prune(self, tree: PoseTree) -> List[str]:
        stale = [name for name in set(self.last_known_good) | set(self.smoothing_frames) if name not in tree]
        self.forget(stale)
        if stale:
            self.logger.debug(f"Pruned stale node state: {stale}")
        return stale

    def last_good_pose(self, name: str) -> Optional[LocalPose]:
        return self.last_known_good.get(name)
