"""
RDW Guard Performance Monitor - Guard pass timing and process load
Lightweight monitoring so the correction pass stays inside the frame budget
"""

import time
import psutil
import threading
from typing import Dict, Optional
from dataclasses import dataclass, field
from collections import deque
import logging


@dataclass
class PerformanceMetrics:
    """Performance metrics data structure"""
    timestamp: float
    cpu_percent: float
    memory_mb: float
    frame_rate: float
    pass_latency_ms: float        # Average guard pass duration
    max_pass_latency_ms: float    # Worst guard pass in the window
    corrections_per_second: float
    events_by_kind: Dict[str, int] = field(default_factory=dict)


class PerformanceMonitor:
    """Lightweight performance monitoring system"""

    def __init__(self, max_history: int = 100, frame_budget_ms: float = 2.0):
        self.max_history = max_history
        self.metrics_history: deque = deque(maxlen=max_history)
        self.logger = logging.getLogger(__name__)

        # Performance counters
        self.frame_count = 0
        self.correction_count = 0
        self.events_by_kind: Dict[str, int] = {}
        self.last_reset_time = time.time()

        # Timing measurements
        self.pass_times = deque(maxlen=120)
        self.frame_budget_ms = frame_budget_ms
        self._over_budget_counter = 0

        # System monitoring
        self.process = psutil.Process()
        self.monitoring_active = False
        self.monitor_thread = None
        self._lock = threading.Lock()

        # Performance thresholds
        self.thresholds = {
            'min_fps': 30.0,
            'max_cpu_percent': 80.0,
            'max_memory_mb': 512.0,
        }

    def start_monitoring(self):
        """Start performance monitoring in background thread"""
        if self.monitoring_active:
            return

        self.monitoring_active = True
        self.monitor_thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self.monitor_thread.start()
        self.logger.info("Performance monitoring started")

    def stop_monitoring(self):
        """Stop performance monitoring"""
        self.monitoring_active = False
        if self.monitor_thread and self.monitor_thread.is_alive():
            self.monitor_thread.join(timeout=2.0)
        self.logger.info("Performance monitoring stopped")

    def _monitor_loop(self):
        """Main monitoring loop"""
        while self.monitoring_active:
            try:
                metrics = self.collect_metrics()
                self.metrics_history.append(metrics)
                self._check_performance_alerts(metrics)
                self.reset_counters()
            except psutil.Error as e:
                self.logger.debug(f"Performance monitoring error: {e}")
            time.sleep(1.0)

    def collect_metrics(self) -> PerformanceMetrics:
        """Collect current performance metrics"""
        current_time = time.time()
        with self._lock:
            time_delta = current_time - self.last_reset_time
            frames = self.frame_count
            corrections = self.correction_count
            pass_times = list(self.pass_times)
            events_by_kind = dict(self.events_by_kind)

        return PerformanceMetrics(
            timestamp=current_time,
            cpu_percent=self.process.cpu_percent(),
            memory_mb=self.process.memory_info().rss / 1024 / 1024,
            frame_rate=frames / time_delta if time_delta > 0 else 0,
            pass_latency_ms=(sum(pass_times) / len(pass_times) * 1000) if pass_times else 0.0,
            max_pass_latency_ms=(max(pass_times) * 1000) if pass_times else 0.0,
            corrections_per_second=corrections / time_delta if time_delta > 0 else 0,
            events_by_kind=events_by_kind,
        )

    def _check_performance_alerts(self, metrics: PerformanceMetrics):
        """Check for performance issues and log warnings"""
        alerts = []

        if 0 < metrics.frame_rate < self.thresholds['min_fps']:
            alerts.append(f"Low FPS: {metrics.frame_rate:.1f}")

        if metrics.cpu_percent > self.thresholds['max_cpu_percent']:
            alerts.append(f"High CPU: {metrics.cpu_percent:.1f}%")

        if metrics.memory_mb > self.thresholds['max_memory_mb']:
            alerts.append(f"High Memory: {metrics.memory_mb:.1f}MB")

        if alerts:
            self.logger.warning(f"Performance alerts: {', '.join(alerts)}")

    def record_pass(self, start_time: float, corrections: int = 0, events_by_kind: Optional[Dict[str, int]] = None):
        """Record one guard pass started at ``start_time`` (perf_counter seconds)"""
        duration = time.perf_counter() - start_time
        with self._lock:
            self.frame_count += 1
            self.correction_count += corrections
            self.pass_times.append(duration)
            for kind, count in (events_by_kind or {}).items():
                self.events_by_kind[kind] = self.events_by_kind.get(kind, 0) + count

        if duration * 1000 > self.frame_budget_ms:
            self._over_budget_counter += 1
            # Only log budget overruns occasionally to reduce spam
            if self._over_budget_counter % 90 == 1:
                self.logger.warning(f"Guard pass took {duration * 1000:.2f}ms "
                                    f"(budget {self.frame_budget_ms:.2f}ms)")
        return duration

    def reset_counters(self):
        """Reset performance counters"""
        with self._lock:
            self.frame_count = 0
            self.correction_count = 0
            self.events_by_kind = {}
            self.last_reset_time = time.time()

    def get_current_metrics(self) -> Optional[PerformanceMetrics]:
        """Get the most recent performance metrics"""
        return self.metrics_history[-1] if self.metrics_history else None

    def get_performance_summary(self) -> str:
        """Get a human-readable performance summary"""
        current = self.get_current_metrics()
        if not current:
            return "No performance data available"

        return " | ".join([
            f"🔄 FPS: {current.frame_rate:.1f}",
            f"💻 CPU: {current.cpu_percent:.1f}%",
            f"🧠 RAM: {current.memory_mb:.1f}MB",
            f"⏱️ Pass: {current.pass_latency_ms:.2f}ms (max {current.max_pass_latency_ms:.2f}ms)",
            f"🔧 Fixes/s: {current.corrections_per_second:.1f}",
        ])


# Global performance monitor instance
performance_monitor = PerformanceMonitor()
