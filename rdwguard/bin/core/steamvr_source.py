"""
SteamVR Head Source - Redirection source backed by the SteamVR headset
Reads the HMD pose through OpenVR; resets are signaled by the operator
"""

import openvr
import time
import logging
import numpy as np
from typing import Optional, Tuple
from scipy.spatial.transform import Rotation as R

from .errors import CollaboratorError
from .pose_tree import rotation_to_wxyz
from .redirection import HeadPose, RedirectionSource


class SteamVRHeadSource(RedirectionSource):
    """Head pose from the SteamVR standing universe"""

    def __init__(self, config: dict = None):
        super().__init__()
        self.logger = logging.getLogger(__name__)

        self.config = config or {}
        self.vr_system = None
        self.is_initialized = False
        self._resetting = False

        # Tracking state
        self.tracking_lost_count = 0
        self.max_lost_frames = int(self.config.get('max_lost_frames', 30))
        self.last_pose: Optional[HeadPose] = None

    def start(self) -> bool:
        """Initialize the OpenVR connection"""
        if self.is_initialized:
            return True
        try:
            openvr.init(openvr.VRApplication_Background)
            self.vr_system = openvr.VRSystem()
            if self.vr_system is None:
                raise CollaboratorError("VRSystem")
            if not self.vr_system.isTrackedDeviceConnected(openvr.k_unTrackedDeviceIndex_Hmd):
                raise CollaboratorError("isTrackedDeviceConnected", RuntimeError("headset not connected"))

            model = self.vr_system.getStringTrackedDeviceProperty(
                openvr.k_unTrackedDeviceIndex_Hmd,
                openvr.Prop_ModelNumber_String
            )
            self.is_initialized = True
            self.logger.info("✓ SteamVR initialized successfully")
            self.logger.info(f"✓ Headset detected: {model}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize SteamVR: {e}")
            self.logger.error("Make sure SteamVR is running and the headset is connected")
            return False

    def stop(self):
        if self.is_initialized:
            openvr.shutdown()
            self.is_initialized = False
            self.logger.info("✓ SteamVR disconnected")

    def head_pose(self) -> Optional[HeadPose]:
        if not self.is_initialized:
            return None

        poses = (openvr.TrackedDevicePose_t * openvr.k_unMaxTrackedDeviceCount)()
        self.vr_system.getDeviceToAbsoluteTrackingPose(openvr.TrackingUniverseStanding, 0, poses)
        hmd_pose = poses[openvr.k_unTrackedDeviceIndex_Hmd]

        if not hmd_pose.bPoseIsValid:
            self.tracking_lost_count += 1
            if self.tracking_lost_count == self.max_lost_frames:
                self.logger.warning("⚠ Headset tracking lost")
            return None

        if self.tracking_lost_count >= self.max_lost_frames:
            self.logger.info("✓ Headset tracking recovered")
        self.tracking_lost_count = 0

        position, rotation_matrix = self._matrix_to_pose(hmd_pose.mDeviceToAbsoluteTracking)
        pose = HeadPose(
            position=position,
            rotation=rotation_to_wxyz(R.from_matrix(rotation_matrix)),
            is_valid=True,
            timestamp=time.time(),
        )
        self.last_pose = pose
        return pose

    @staticmethod
    def _matrix_to_pose(matrix) -> Tuple[np.ndarray, np.ndarray]:
        """Convert an OpenVR 3x4 matrix into position and rotation matrix

        OpenVR looks down -Z; the rig uses +Z forward, so Z is mirrored.
        """
        position = np.array([matrix[0][3], matrix[1][3], matrix[2][3]])
        rotation_matrix = np.array([
            [matrix[0][0], matrix[0][1], matrix[0][2]],
            [matrix[1][0], matrix[1][1], matrix[1][2]],
            [matrix[2][0], matrix[2][1], matrix[2][2]]
        ])
        mirror = np.diag([1.0, 1.0, -1.0])
        return mirror @ position, mirror @ rotation_matrix @ mirror

    def reset_in_progress(self) -> bool:
        return self._resetting

    def begin_reset(self):
        """Operator-triggered reset (e.g. recentering the play area)"""
        if not self._resetting:
            self._resetting = True
            self.reset_begin.emit()

    def end_reset(self):
        if self._resetting:
            self._resetting = False
            self.reset_end.emit()
