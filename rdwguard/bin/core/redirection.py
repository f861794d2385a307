"""
Redirection Source - Extension point implemented by the redirection collaborator
Supplies the world head pose and the reset lifecycle; the guard holds one handle for the session
"""

import logging
import math
import time
import numpy as np
from typing import NamedTuple, Optional
from PySide6.QtCore import QObject, Signal
from scipy.spatial.transform import Rotation as R

from .pose_tree import quat_wxyz_to_rotation, rotation_to_wxyz


class HeadPose(NamedTuple):
    """World pose of the tracked head as reported by the redirection collaborator"""
    position: np.ndarray   # 3D position [x, y, z] in meters, world frame
    rotation: np.ndarray   # Quaternion [w, x, y, z]
    is_valid: bool         # Tracking validity
    timestamp: float       # Pose timestamp

    @property
    def rotation_obj(self) -> R:
        return quat_wxyz_to_rotation(self.rotation)

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.position)) and np.all(np.isfinite(self.rotation)))


class RedirectionSource(QObject):
    """Interface the redirection collaborator implements for the guard

    Subclasses emit ``reset_begin``/``reset_end`` around an intentional
    reorientation and answer ``head_pose()`` and ``reset_in_progress()``
    every frame.
    """

    # Signals
    reset_begin = Signal()
    reset_end = Signal()

    def head_pose(self) -> Optional[HeadPose]:
        raise NotImplementedError

    def reset_in_progress(self) -> bool:
        raise NotImplementedError

    def start(self) -> bool:
        return True

    def stop(self):
        pass


class SimulatedRedirectionSource(RedirectionSource):
    """Scriptable in-process source for headless runs and tests"""

    def __init__(self, config: dict = None):
        super().__init__()
        self.logger = logging.getLogger(__name__)

        self.config = config or {}
        start = self.config.get('start_position', [0.0, 1.6, 0.0])
        self.position = np.array(start, dtype=float)
        self.rotation = R.identity()

        # Walking simulation
        self.walk_speed = float(self.config.get('walk_speed', 0.0))  # m/s along the heading
        self.turn_rate = float(self.config.get('turn_rate', 0.0))    # deg/s

        self._resetting = False
        self.fail_next = None  # exception raised by the next head_pose() call

    def set_head_pose(self, position, rotation: Optional[R] = None):
        self.position = np.array(position, dtype=float)
        if rotation is not None:
            self.rotation = rotation

    def head_pose(self) -> Optional[HeadPose]:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        return HeadPose(
            position=self.position.copy(),
            rotation=rotation_to_wxyz(self.rotation),
            is_valid=True,
            timestamp=time.time(),
        )

    def advance(self, dt: float):
        """Walk forward and turn for ``dt`` seconds"""
        if self._resetting:
            # In-place reorientation during a reset
            self.rotation = R.from_euler('y', 180.0 * dt, degrees=True) * self.rotation
            return
        if self.turn_rate:
            self.rotation = R.from_euler('y', self.turn_rate * dt, degrees=True) * self.rotation
        if self.walk_speed:
            yaw = self.rotation.as_euler('yxz')[0]
            step = np.array([math.sin(yaw), 0.0, math.cos(yaw)]) * self.walk_speed * dt
            self.position = self.position + step

    def reset_in_progress(self) -> bool:
        return self._resetting

    def begin_reset(self):
        if not self._resetting:
            self._resetting = True
            self.logger.info("Simulated reset begin")
            self.reset_begin.emit()

    def end_reset(self):
        if self._resetting:
            self._resetting = False
            self.logger.info("Simulated reset end")
            self.reset_end.emit()
