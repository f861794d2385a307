"""
Visual Rebaser - Places the visible avatar under the validated head
Ground-projected position and yaw-only heading, run after correction every frame
"""

import logging
import math
import numpy as np
from typing import Dict, NamedTuple, Optional
from scipy.spatial.transform import Rotation as R

from .pose_tree import PoseTree

FORWARD = np.array([0.0, 0.0, 1.0])


class RebaseResult(NamedTuple):
    """Avatar visual root placement computed for one frame"""
    position: np.ndarray   # World position [x, ground, z]
    yaw: float             # Heading in degrees around +Y
    updated: bool          # False when the previous placement was kept
    heading_kept: bool     # True when the head forward vector was degenerate


def heading_from_rotation(rotation: R, epsilon: float) -> Optional[float]:
    """Yaw in radians of the flattened forward vector, None when degenerate"""
    forward = rotation.apply(FORWARD)
    flat = np.array([forward[0], 0.0, forward[2]])
    length = float(np.linalg.norm(flat))
    if not math.isfinite(length) or length < epsilon:
        return None
    flat /= length
    return math.atan2(flat[0], flat[2])


class VisualRebaser:
    """Writes the ungoverned avatar visual root from the head pose"""

    def __init__(self, tree: PoseTree, config: Dict = None):
        self.logger = logging.getLogger(__name__)
        self.tree = tree

        self.config = config or {}
        self.head_node = self.config.get('head_node', 'Head')
        self.visual_root_node = self.config.get('visual_root_node', 'avatarRoot')
        self.ground_level = float(self.config.get('ground_level', 0.0))
        self.heading_epsilon = float(self.config.get('heading_epsilon', 1e-3))

        self.last_position: Optional[np.ndarray] = None
        self.last_yaw = 0.0
        self.frames_rebased = 0
        self.frames_frozen = 0

    def rebase(self, head_validated: bool = True) -> Optional[RebaseResult]:
        """Update the visual root; keeps the last placement if the head is not usable"""
        visual_root = self.tree.find(self.visual_root_node)
        if visual_root is None or not visual_root.is_alive:
            return None

        head = self.tree.find(self.head_node)
        head_position = None
        head_rotation = None
        if head_validated and head is not None and head.is_alive:
            head_position = head.world_position
            head_rotation = head.world_rotation
            if not np.all(np.isfinite(head_position)) or not np.all(np.isfinite(head_rotation.as_quat())):
                self.logger.warning(f"⚠ Non-finite head pose {head_position}, keeping last avatar placement")
                head_position = None

        if head_position is None:
            self.frames_frozen += 1
            if self.last_position is None:
                return None
            self._place(visual_root, self.last_position, self.last_yaw)
            return RebaseResult(self.last_position.copy(), math.degrees(self.last_yaw), False, True)

        yaw = heading_from_rotation(head_rotation, self.heading_epsilon)
        heading_kept = yaw is None
        if heading_kept:
            self.logger.debug("Head forward is vertical, keeping previous heading")
            yaw = self.last_yaw

        position = np.array([head_position[0], self.ground_level, head_position[2]])
        self._place(visual_root, position, yaw)

        self.last_position = position
        self.last_yaw = yaw
        self.frames_rebased += 1
        return RebaseResult(position.copy(), math.degrees(yaw), True, heading_kept)

    @staticmethod
    def _place(visual_root, position: np.ndarray, yaw: float):
        visual_root.set_world_pose(position, R.from_euler('y', yaw))

    def get_status(self) -> Dict:
        return {
            'frames_rebased': self.frames_rebased,
            'frames_frozen': self.frames_frozen,
            'last_position': None if self.last_position is None else self.last_position.tolist(),
            'last_yaw_deg': math.degrees(self.last_yaw),
        }
