"""
Reset Coordinator - Idle/Resetting state machine driven by the redirection source
Decides which invariants participate while a reset reorients the user
"""

import logging
import time
from enum import Enum
from typing import Dict, Optional
from PySide6.QtCore import QObject, Signal

from .drift_detector import DriftKind
from .invariants import Invariant


class ResetPhase(Enum):
    IDLE = "Idle"
    RESETTING = "Resetting"


class ResetCoordinator(QObject):
    """Gates magnitude checks on nodes that legitimately jump during a reset"""

    # Signals
    phase_changed = Signal(str)  # new phase value
    reset_started = Signal()
    reset_finished = Signal(float)  # reset duration in seconds

    def __init__(self, redirection_source=None):
        super().__init__()
        self.logger = logging.getLogger(__name__)

        self._phase = ResetPhase.IDLE
        self.reset_count = 0
        self.reset_start_time: Optional[float] = None
        self.last_reset_duration = 0.0

        # Explicit handle held for the session
        self.redirection_source = redirection_source
        if redirection_source is not None:
            redirection_source.reset_begin.connect(self.begin_reset)
            redirection_source.reset_end.connect(self.end_reset)

    @property
    def phase(self) -> ResetPhase:
        return self._phase

    @property
    def is_resetting(self) -> bool:
        return self._phase == ResetPhase.RESETTING

    def begin_reset(self):
        if self._phase == ResetPhase.RESETTING:
            return
        self._phase = ResetPhase.RESETTING
        self.reset_start_time = time.time()
        self.logger.info("Reset started, magnitude checks suspended for reset-exempt nodes")
        self.phase_changed.emit(self._phase.value)
        self.reset_started.emit()

    def end_reset(self):
        if self._phase == ResetPhase.IDLE:
            return
        self._phase = ResetPhase.IDLE
        self.reset_count += 1
        if self.reset_start_time is not None:
            self.last_reset_duration = time.time() - self.reset_start_time
        self.reset_start_time = None
        self.logger.info(f"✓ Reset finished after {self.last_reset_duration:.2f}s, all checks active")
        self.phase_changed.emit(self._phase.value)
        self.reset_finished.emit(self.last_reset_duration)

    def sync(self, reset_in_progress: bool):
        """Reconcile the phase with the polled reset flag in case a callback was missed"""
        if reset_in_progress and self._phase == ResetPhase.IDLE:
            self.logger.debug("Reset flag raised without begin signal")
            self.begin_reset()
        elif not reset_in_progress and self._phase == ResetPhase.RESETTING:
            self.logger.debug("Reset flag cleared without end signal")
            self.end_reset()

    def allows(self, kind: DriftKind, invariant: Invariant) -> bool:
        """Ownership and Invalid always apply; Magnitude pauses for reset-exempt nodes"""
        if kind != DriftKind.MAGNITUDE:
            return True
        if self._phase == ResetPhase.RESETTING and invariant.suspend_during_reset:
            return False
        return True

    def get_status(self) -> Dict:
        return {
            'phase': self._phase.value,
            'reset_count': self.reset_count,
            'last_reset_duration': self.last_reset_duration,
        }
