"""
RDW Guard Application - Main Application Class
Headless frame loop that keeps a redirected avatar rig consistent
"""

import sys
import time
import logging
from typing import Optional
from PySide6.QtCore import QCoreApplication, QTimer

from .core.avatar_guard import AvatarGuard
from .core.config_manager import ConfigManager
from .core.errors import RDWGuardError
from .core.invariants import InvariantRegistry
from .core.performance_monitor import performance_monitor
from .core.pose_tree import PoseTree
from .core.redirection import RedirectionSource, SimulatedRedirectionSource

# Configure logging with filtering to reduce console spam
import os
class LessSpammyFilter(logging.Filter):
    def filter(self, record):
        # Only show INFO/DEBUG for RDW Guard modules if enabled
        show_debug = os.environ.get('RDWGUARD_DEBUG', '0') == '1'

        if record.levelno >= logging.WARNING:
            return True
        if show_debug:
            return True
        # Suppress most INFO/DEBUG logs except for startup/config
        if record.levelno == logging.INFO:
            message = record.getMessage().lower()
            if any(keyword in message for keyword in ['initialized', 'started', 'ready', 'stopped']):
                return True
        return False


def setup_logging(level: str = "INFO"):
    """Install the root handler with the spam filter"""
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)
    handler.addFilter(LessSpammyFilter())

    # Clear existing handlers and set up new one
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def create_redirection_source(config: dict) -> RedirectionSource:
    """Build the redirection collaborator named by ``redirection.source``"""
    source = config.get('source', 'simulated')
    if source == 'steamvr':
        # openvr is an optional extra
        from .core.steamvr_source import SteamVRHeadSource
        return SteamVRHeadSource(config)
    return SimulatedRedirectionSource(config)


class RDWGuardApplication:
    """Main RDW Guard Application"""

    def __init__(self, config_file: Optional[str] = None, max_frames: Optional[int] = None,
                 source: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.config_file = config_file
        self.max_frames = max_frames
        self.source_override = source

        self.app = None
        self.config_manager = None
        self.tree = None
        self.registry = None
        self.redirection_source = None
        self.guard = None
        self.frame_timer = None
        self.last_tick = None

    def initialize(self) -> bool:
        """Initialize all application components"""
        try:
            self.app = QCoreApplication.instance() or QCoreApplication(sys.argv)
            self.app.setApplicationName("RDW Guard")
            self.app.setApplicationVersion("1.0.0")

            self.config_manager = ConfigManager(self.config_file)
            if self.source_override:
                self.config_manager.set('redirection.source', self.source_override)
            setup_logging(self.config_manager.get('performance.log_level', 'INFO'))

            layout = self.config_manager.get_avatar_layout()
            self.tree = PoseTree.from_layout(layout)
            self.registry = InvariantRegistry.from_layout(
                layout, suspended_nodes=self.config_manager.get('reset.suspended_nodes', []))

            self.redirection_source = create_redirection_source(self.config_manager.get_section('redirection'))
            if not self.redirection_source.start():
                self.logger.error("Redirection source could not be started")
                return False

            self.guard = AvatarGuard(self.tree, self.registry, self.redirection_source,
                                     config=self.config_manager.config)
            self.guard.reset_coordinator.phase_changed.connect(
                lambda phase: self.logger.info(f"Reset phase: {phase}"))

            performance_monitor.frame_budget_ms = float(self.config_manager.get('performance.frame_budget_ms', 2.0))
            performance_monitor.start_monitoring()
            self.logger.info("RDW Guard Application initialized successfully")
            return True

        except RDWGuardError as e:
            self.logger.error(f"Failed to initialize application: {e}")
            return False

    def _tick(self):
        """One frame: advance the simulated walk then run the guard pass"""
        now = time.time()
        if isinstance(self.redirection_source, SimulatedRedirectionSource) and self.last_tick is not None:
            self.redirection_source.advance(now - self.last_tick)
        self.last_tick = now

        self.guard.late_update(now)

        if self.max_frames is not None and self.guard.frame >= self.max_frames:
            self.logger.info(f"Frame limit reached ({self.max_frames}), stopped")
            self.frame_timer.stop()
            self.app.quit()

    def run(self) -> int:
        """Run the application"""
        if not self.initialize():
            return 1

        try:
            frame_rate = int(self.config_manager.get('performance.frame_rate', 90))
            self.frame_timer = QTimer()
            self.frame_timer.timeout.connect(self._tick)
            self.frame_timer.start(max(1, int(1000 / frame_rate)))

            self.logger.info(f"RDW Guard started at {frame_rate} fps")
            return self.app.exec()
        finally:
            self.cleanup()

    def cleanup(self):
        """Clean up resources"""
        self.logger.info("Cleaning up RDW Guard Application...")

        if self.frame_timer:
            self.frame_timer.stop()

        if self.guard:
            self.logger.info(self.guard.diagnostics.format_summary(self.guard.diagnostics.get_summary()))

        if self.redirection_source:
            self.redirection_source.stop()

        performance_monitor.stop_monitoring()
        self.logger.info("RDW Guard Application stopped")
