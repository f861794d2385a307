"""
Avatar Guard - Per-frame invariant enforcement for the redirected avatar rig
Runs detection, correction, reset gating and visual rebasing in a fixed order
from the host's late-update callback
"""

import logging
import time
import numpy as np
from typing import Dict, List, NamedTuple, Optional
from scipy.spatial.transform import Rotation as R

from .consistency_scan import ConsistencyScanner
from .corrector import Corrector
from .diagnostics import DriftDiagnostics
from .drift_detector import CorrectionAction, DriftDetector, DriftEvent, DriftKind
from .errors import CollaboratorError, LayoutError
from .invariants import InvariantRegistry
from .performance_monitor import performance_monitor
from .pose_tree import PoseTree
from .redirection import RedirectionSource
from .reset_coordinator import ResetCoordinator
from .visual_rebaser import RebaseResult, VisualRebaser, heading_from_rotation


class FrameReport(NamedTuple):
    """Outcome of one guard pass"""
    frame: int
    events: List[DriftEvent]
    rebase: Optional[RebaseResult]
    phase: str


class AvatarGuard:
    """Keeps the avatar pose tree consistent while redirection moves the rig"""

    def __init__(self, tree: PoseTree, registry: InvariantRegistry,
                 redirection_source: RedirectionSource, config: Dict = None,
                 diagnostics: Optional[DriftDiagnostics] = None, monitor=None):
        self.logger = logging.getLogger(__name__)
        self.config = config or {}
        self.tree = tree
        self.registry = registry
        self.redirection_source = redirection_source

        for invariant in registry:
            if invariant.target_node not in tree:
                raise LayoutError(f"Governed node '{invariant.target_node}' is not in the pose tree")

        correction_config = self.config.get('correction', {})
        rebase_config = self.config.get('rebase', {})

        self.reset_coordinator = ResetCoordinator(redirection_source)
        self.detector = DriftDetector(
            registry,
            sanity_ceiling=correction_config.get('sanity_ceiling', 1000.0),
            reset_gate=self.reset_coordinator,
        )
        self.corrector = Corrector(registry, correction_config)
        self.scanner = ConsistencyScanner(registry, self.config.get('consistency_scan', {}))
        self.rebaser = VisualRebaser(tree, rebase_config)
        self.diagnostics = diagnostics or DriftDiagnostics(self.config.get('diagnostics', {}))
        self.monitor = monitor or performance_monitor

        self.head_node = rebase_config.get('head_node', 'Head')
        self.heading_epsilon = float(rebase_config.get('heading_epsilon', 1e-3))
        self.head_chain_offset = self._canonical_chain_offset(self.head_node)
        self.last_root_yaw = 0.0

        self.frame = 0
        self.logger.info(f"Avatar guard initialized ({len(registry)} governed nodes)")

    def _canonical_chain_offset(self, name: str) -> np.ndarray:
        """Canonical position of ``name`` relative to the tree root"""
        chain = []
        node = self.tree.find(name)
        while node is not None and node is not self.tree.root:
            chain.append(node)
            node = self.tree.declared_parent(node)
        if node is None:
            self.logger.warning(f"⚠ Node {name} is not under the root, head chain offset is zero")
            return np.zeros(3)

        position = np.zeros(3)
        rotation = R.identity()
        for link in reversed(chain):
            canonical = link.canonical_local_pose
            position = position + rotation.apply(np.array(canonical.position, dtype=float))
            rotation = rotation * canonical.rotation_obj
        return position

    def late_update(self, now: Optional[float] = None) -> FrameReport:
        """One guard pass; call once per rendered frame after physics and animation"""
        now = time.time() if now is None else now
        start = time.perf_counter()
        self.frame += 1

        events: List[DriftEvent] = []
        root_event = self._apply_redirection_frame()
        if root_event is not None:
            events.append(root_event)

        # Ownership, Invalid and Magnitude checks (magnitude gated by the reset phase)
        events.extend(self.detector.scan(self.tree, frame=self.frame, timestamp=now))
        if self.detector.reappeared:
            self.corrector.forget(self.detector.reappeared)
        events.extend(self.scanner.maybe_scan(self.tree, now, frame=self.frame))

        self.corrector.apply(self.tree, events)
        gated = [e.node for e in events if e.action_taken == CorrectionAction.SUSPENDED]
        self.corrector.record_known_good(self.tree, gated=gated)
        self.corrector.prune(self.tree)

        self._evaluate_reset_gate()

        head_valid = self.head_node in self.tree and self.head_node not in self.detector.missing_nodes
        rebase = self.rebaser.rebase(head_validated=head_valid)

        self.diagnostics.publish(events, now=now)

        corrections = sum(1 for e in events if e.action_taken in (
            CorrectionAction.REATTACHED, CorrectionAction.RESTORED_LAST_GOOD,
            CorrectionAction.SNAPPED, CorrectionAction.SMOOTHED))
        by_kind: Dict[str, int] = {}
        for event in events:
            by_kind[event.kind.value] = by_kind.get(event.kind.value, 0) + 1
        self.monitor.record_pass(start, corrections=corrections, events_by_kind=by_kind)

        return FrameReport(self.frame, events, rebase, self.reset_coordinator.phase.value)

    def _apply_redirection_frame(self) -> Optional[DriftEvent]:
        """Place the rig root so the canonical head chain lands on the collaborator's head pose"""
        root = self.tree.root
        if root is None or not root.is_alive:
            return None

        try:
            pose = self.redirection_source.head_pose()
        except Exception as e:
            error = CollaboratorError("head_pose", e)
            self.logger.error(f"Redirection source error: {error}")
            return self._root_event(str(error))

        if pose is None:
            return None
        if not pose.is_valid:
            self.logger.warning("⚠ Redirection source reports head tracking invalid, keeping last root")
            return self._root_event("head tracking reported invalid by redirection source")
        if not pose.is_finite():
            self.logger.warning(f"⚠ Non-finite head pose from redirection source: {pose.position}")
            return self._root_event("non-finite head pose from redirection source")

        yaw = heading_from_rotation(pose.rotation_obj, self.heading_epsilon)
        if yaw is None:
            yaw = self.last_root_yaw
        self.last_root_yaw = yaw

        rotation = R.from_euler('y', yaw)
        root.local_rotation = rotation
        root.local_position = np.asarray(pose.position, dtype=float) - rotation.apply(self.head_chain_offset)
        return None

    def _root_event(self, detail: str) -> DriftEvent:
        root = self.tree.root
        return DriftEvent(
            node=root.name,
            kind=DriftKind.INVALID,
            observed_displacement=float('nan'),
            observed_position=np.array(root.local_position, dtype=float),
            action_taken=CorrectionAction.KEPT_LAST_GOOD,
            frame=self.frame,
            source="redirection",
            detail=detail,
        )

    def _evaluate_reset_gate(self):
        try:
            in_progress = bool(self.redirection_source.reset_in_progress())
        except Exception as e:
            error = CollaboratorError("reset_in_progress", e)
            self.logger.error(f"Redirection source error: {error}")
            return
        self.reset_coordinator.sync(in_progress)

    def rebind(self, tree: PoseTree):
        """Adopt a rebuilt tree after a scene reload"""
        for invariant in self.registry:
            if invariant.target_node not in tree:
                raise LayoutError(f"Governed node '{invariant.target_node}' is not in the pose tree")
        self.tree = tree
        self.rebaser.tree = tree
        # Poses remembered from the old tree do not describe the new one
        stale = list(self.corrector.last_known_good)
        self.corrector.forget(stale)
        self.head_chain_offset = self._canonical_chain_offset(self.head_node)
        self.logger.info(f"✓ Guard rebound to new pose tree ({len(stale)} stale entries dropped)")

    def get_status(self) -> Dict:
        return {
            'frame': self.frame,
            'reset': self.reset_coordinator.get_status(),
            'detector': self.detector.get_status(),
            'rebaser': self.rebaser.get_status(),
            'diagnostics': self.diagnostics.get_summary(),
            'corrections_applied': self.corrector.corrections_applied,
        }
