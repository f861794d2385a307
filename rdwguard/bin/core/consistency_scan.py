"""
Consistency Scanner - Throttled full-tree check
Covers link consistency, ungoverned ownership and world-space runaway nodes,
which are too expensive to walk every frame
"""

import logging
import numpy as np
from typing import Dict, List

from .drift_detector import DriftEvent, DriftKind, is_valid_position
from .invariants import InvariantRegistry
from .pose_tree import PoseTree


class ConsistencyScanner:
    """Full-tree scan that runs at most once per interval"""

    def __init__(self, registry: InvariantRegistry, config: Dict = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry

        self.config = config or {}
        self.interval = float(self.config.get('interval', 1.0))
        self.world_ceiling = float(self.config.get('world_ceiling', 1000.0))

        self.last_scan_time = None
        self.scan_count = 0

    def due(self, now: float) -> bool:
        return self.last_scan_time is None or (now - self.last_scan_time) >= self.interval

    def maybe_scan(self, tree: PoseTree, now: float, frame: int = 0) -> List[DriftEvent]:
        if not self.due(now):
            return []
        self.last_scan_time = now
        return self.scan(tree, frame=frame, timestamp=now)

    def scan(self, tree: PoseTree, frame: int = 0, timestamp: float = 0.0) -> List[DriftEvent]:
        self.scan_count += 1
        events = []
        for node in tree.walk():
            if not node.is_alive or node is tree.root:
                continue
            declared = tree.declared_parent(node)
            if declared is None or not declared.is_alive:
                continue

            event = None
            if node.parent is declared and node not in declared.children:
                event = DriftEvent(
                    node=node.name,
                    kind=DriftKind.OWNERSHIP,
                    observed_displacement=node.local_displacement(),
                    detail=f"missing from {declared.name}.children",
                )
            elif node.parent is not declared and not self.registry.is_governed(node.name):
                actual = node.parent.name if node.parent is not None else None
                event = DriftEvent(
                    node=node.name,
                    kind=DriftKind.OWNERSHIP,
                    observed_displacement=node.local_displacement(),
                    detail=f"ungoverned node attached to {actual!r}, declared {declared.name!r}",
                )
            else:
                with np.errstate(invalid='ignore', over='ignore'):
                    world = node.world_position
                    offset = world - tree.root.world_position if tree.root is not None else world
                if not is_valid_position(offset, self.world_ceiling):
                    event = DriftEvent(
                        node=node.name,
                        kind=DriftKind.INVALID,
                        observed_displacement=node.local_displacement(),
                        observed_position=world,
                        detail="world position runaway from rig root",
                    )

            if event is not None:
                event.source = "consistency"
                event.frame = frame
                event.timestamp = timestamp
                event.canonical_position = node.canonical_local_pose.position
                events.append(event)

        if events:
            self.logger.warning(f"⚠ Consistency scan found {len(events)} issue(s): "
                                f"{', '.join(e.node for e in events)}")
        return events
