"""
Drift Diagnostics - Ordered stream of DriftEvents for operators
Keeps a bounded log, per-kind counters and a periodic summary
"""

import logging
import math
import time
from collections import Counter, deque
from typing import Dict, Iterable, List, Optional
from PySide6.QtCore import QObject, Signal

from .drift_detector import CorrectionAction, DriftEvent, DriftKind


def format_event(event: DriftEvent) -> str:
    """One operator-facing line for a drift event"""
    if math.isfinite(event.observed_displacement):
        displacement = f"{event.observed_displacement:.3f}m"
    else:
        displacement = "n/a"
    line = (f"[frame {event.frame}] {event.kind.value} on {event.node}: "
            f"displacement {displacement} -> {event.action_taken.value}")
    if event.canonical_position is not None and event.observed_position is not None:
        observed = ", ".join(f"{v:.3f}" for v in event.observed_position)
        canonical = ", ".join(f"{v:.3f}" for v in event.canonical_position)
        line += f" (observed [{observed}] vs canonical [{canonical}])"
    if event.detail:
        line += f" - {event.detail}"
    return line


class DriftDiagnostics(QObject):
    """Collects DriftEvents in frame order and publishes them"""

    # Signals
    drift_event = Signal(object)  # DriftEvent
    summary_ready = Signal(dict)

    def __init__(self, config: Dict = None):
        super().__init__()
        self.logger = logging.getLogger(__name__)

        self.config = config or {}
        self.max_events = int(self.config.get('max_events', 256))
        self.summary_interval = float(self.config.get('summary_interval', 5.0))
        self.warning_interval = float(self.config.get('warning_interval', 2.0))

        self.events: deque = deque(maxlen=self.max_events)
        self.kind_counts: Counter = Counter()
        self.action_counts: Counter = Counter()
        self.total_events = 0

        self.last_summary_time: Optional[float] = None
        self._last_warning: Dict[str, float] = {}

    def publish(self, events: Iterable[DriftEvent], now: Optional[float] = None):
        """Record and emit events in the order they were resolved"""
        now = time.time() if now is None else now
        for event in events:
            self.events.append(event)
            self.kind_counts[event.kind] += 1
            self.action_counts[event.action_taken] += 1
            self.total_events += 1
            self._log_event(event, now)
            self.drift_event.emit(event)

        if self.last_summary_time is None:
            self.last_summary_time = now
        elif now - self.last_summary_time >= self.summary_interval:
            self.last_summary_time = now
            summary = self.get_summary()
            self.logger.info(self.format_summary(summary))
            self.summary_ready.emit(summary)

    def _log_event(self, event: DriftEvent, now: float):
        # Missing nodes are already logged once by the detector
        if event.kind == DriftKind.MISSING:
            return
        if event.action_taken in (CorrectionAction.SUSPENDED, CorrectionAction.SMOOTHED):
            self.logger.debug(format_event(event))
            return

        key = f"{event.node}:{event.kind.name}"
        last = self._last_warning.get(key)
        if last is not None and now - last < self.warning_interval:
            return
        self._last_warning[key] = now
        self.logger.warning(f"⚠ {format_event(event)}")

    def recent(self, count: int = 20, kind: Optional[DriftKind] = None) -> List[DriftEvent]:
        events = [e for e in self.events if kind is None or e.kind == kind]
        return events[-count:]

    def get_summary(self) -> Dict:
        return {
            'total_events': self.total_events,
            'by_kind': {kind.value: self.kind_counts.get(kind, 0) for kind in DriftKind},
            'by_action': {action.value: count for action, count in self.action_counts.items()},
            'retained': len(self.events),
        }

    @staticmethod
    def format_summary(summary: Dict) -> str:
        kinds = ", ".join(f"{name}: {count}" for name, count in summary['by_kind'].items())
        return f"📊 Drift summary - {summary['total_events']} events ({kinds})"

    def clear(self):
        self.events.clear()
        self.kind_counts.clear()
        self.action_counts.clear()
        self.total_events = 0
        self._last_warning.clear()
