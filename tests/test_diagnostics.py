import math
import unittest

import numpy as np
from PySide6.QtCore import QCoreApplication

from rdwguard.bin.core.diagnostics import DriftDiagnostics, format_event
from rdwguard.bin.core.drift_detector import CorrectionAction, DriftEvent, DriftKind

_app = None


def setUpModule() -> None:
    global _app
    _app = QCoreApplication.instance() or QCoreApplication([])


def _event(node, kind, action=CorrectionAction.SNAPPED, displacement=0.2):
    return DriftEvent(node=node, kind=kind, observed_displacement=displacement,
                      observed_position=np.array([0.0, 1.8, 0.0]),
                      canonical_position=np.array([0.0, 1.6, 0.0]),
                      action_taken=action, frame=4)


class DriftDiagnosticsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.diagnostics = DriftDiagnostics({"max_events": 3, "summary_interval": 5.0})

    def test_publish_emits_events_in_order(self) -> None:
        received = []
        self.diagnostics.drift_event.connect(received.append)
        events = [
            _event("Head", DriftKind.OWNERSHIP, CorrectionAction.REATTACHED),
            _event("Body", DriftKind.MAGNITUDE),
        ]
        self.diagnostics.publish(events, now=0.0)
        self.assertEqual(received, events)

    def test_counts_and_bounded_history(self) -> None:
        for index in range(5):
            self.diagnostics.publish([_event(f"Node{index}", DriftKind.MAGNITUDE)], now=float(index) / 10)
        self.diagnostics.publish([_event("Head", DriftKind.INVALID, CorrectionAction.RESTORED_LAST_GOOD)], now=1.0)

        summary = self.diagnostics.get_summary()
        self.assertEqual(summary["total_events"], 6)
        self.assertEqual(summary["by_kind"]["MagnitudeViolation"], 5)
        self.assertEqual(summary["by_kind"]["InvalidPose"], 1)
        self.assertEqual(summary["by_kind"]["MissingNode"], 0)
        self.assertEqual(summary["by_action"]["restored_last_good"], 1)
        self.assertEqual(summary["retained"], 3)

        self.assertEqual([e.node for e in self.diagnostics.recent(10)], ["Node3", "Node4", "Head"])
        self.assertEqual([e.node for e in self.diagnostics.recent(10, DriftKind.INVALID)], ["Head"])

    def test_summary_is_emitted_every_interval(self) -> None:
        summaries = []
        self.diagnostics.summary_ready.connect(summaries.append)
        self.diagnostics.publish([], now=100.0)
        self.diagnostics.publish([_event("Head", DriftKind.MAGNITUDE)], now=103.0)
        self.assertEqual(summaries, [])
        self.diagnostics.publish([], now=105.0)
        self.assertEqual(len(summaries), 1)
        self.assertEqual(summaries[0]["total_events"], 1)

    def test_clear(self) -> None:
        self.diagnostics.publish([_event("Head", DriftKind.MAGNITUDE)], now=0.0)
        self.diagnostics.clear()
        self.assertEqual(self.diagnostics.get_summary()["total_events"], 0)
        self.assertEqual(self.diagnostics.recent(), [])

    def test_format_event(self) -> None:
        line = format_event(_event("Head", DriftKind.MAGNITUDE))
        self.assertIn("[frame 4] MagnitudeViolation on Head", line)
        self.assertIn("0.200m -> snapped", line)
        self.assertIn("canonical [0.000, 1.600, 0.000]", line)

        missing = DriftEvent(node="Head", kind=DriftKind.MISSING, observed_displacement=math.nan,
                             action_taken=CorrectionAction.CHECKS_DISABLED, detail="node destroyed")
        line = format_event(missing)
        self.assertIn("displacement n/a", line)
        self.assertTrue(line.endswith("- node destroyed"))

    def test_format_summary(self) -> None:
        self.diagnostics.publish([_event("Head", DriftKind.OWNERSHIP)], now=0.0)
        text = DriftDiagnostics.format_summary(self.diagnostics.get_summary())
        self.assertIn("1 events", text)
        self.assertIn("OwnershipViolation: 1", text)


if __name__ == "__main__":
    unittest.main()
