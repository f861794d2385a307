import unittest

from PySide6.QtCore import QCoreApplication

from rdwguard.bin.core.drift_detector import DriftKind
from rdwguard.bin.core.invariants import Invariant, RecoveryPolicy
from rdwguard.bin.core.pose_tree import CanonicalPose
from rdwguard.bin.core.redirection import SimulatedRedirectionSource
from rdwguard.bin.core.reset_coordinator import ResetCoordinator, ResetPhase

_app = None


def setUpModule() -> None:
    global _app
    _app = QCoreApplication.instance() or QCoreApplication([])


class ResetCoordinatorTests(unittest.TestCase):
    def setUp(self) -> None:
        canonical = CanonicalPose.create([0.0, 1.6, 0.0])
        self.exempt = Invariant("Head", 0.05, RecoveryPolicy.SMOOTH_TO_CANONICAL, canonical,
                                suspend_during_reset=True)
        self.strict = Invariant("Simulated User", 0.01, RecoveryPolicy.SNAP_TO_CANONICAL,
                                CanonicalPose.create())

    def test_phase_transitions_emit_signals(self) -> None:
        coordinator = ResetCoordinator()
        phases, finished = [], []
        coordinator.phase_changed.connect(phases.append)
        coordinator.reset_finished.connect(finished.append)

        self.assertEqual(coordinator.phase, ResetPhase.IDLE)
        coordinator.begin_reset()
        coordinator.begin_reset()
        self.assertTrue(coordinator.is_resetting)
        coordinator.end_reset()
        coordinator.end_reset()

        self.assertEqual(phases, ["Resetting", "Idle"])
        self.assertEqual(len(finished), 1)
        self.assertGreaterEqual(finished[0], 0.0)
        self.assertEqual(coordinator.reset_count, 1)

    def test_allows_gates_only_magnitude_on_exempt_nodes(self) -> None:
        coordinator = ResetCoordinator()
        self.assertTrue(coordinator.allows(DriftKind.MAGNITUDE, self.exempt))

        coordinator.begin_reset()
        self.assertFalse(coordinator.allows(DriftKind.MAGNITUDE, self.exempt))
        self.assertTrue(coordinator.allows(DriftKind.MAGNITUDE, self.strict))
        self.assertTrue(coordinator.allows(DriftKind.OWNERSHIP, self.exempt))
        self.assertTrue(coordinator.allows(DriftKind.INVALID, self.exempt))

        coordinator.end_reset()
        self.assertTrue(coordinator.allows(DriftKind.MAGNITUDE, self.exempt))

    def test_follows_redirection_source_signals(self) -> None:
        source = SimulatedRedirectionSource()
        coordinator = ResetCoordinator(source)
        source.begin_reset()
        self.assertEqual(coordinator.phase, ResetPhase.RESETTING)
        source.end_reset()
        self.assertEqual(coordinator.phase, ResetPhase.IDLE)

    def test_sync_recovers_missed_callbacks(self) -> None:
        coordinator = ResetCoordinator()
        coordinator.sync(True)
        self.assertTrue(coordinator.is_resetting)
        coordinator.sync(True)
        coordinator.sync(False)
        self.assertFalse(coordinator.is_resetting)
        self.assertEqual(coordinator.get_status()["reset_count"], 1)


if __name__ == "__main__":
    unittest.main()
