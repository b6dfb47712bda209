"""
Metrics collection and Prometheus-compatible exposition.

Counts commands, subscription changes, storage failures and index drift.
"""

from __future__ import annotations

import time
from collections import defaultdict

PREFIX = "wiki_bridge_"


class MetricsCollector:
    """
    Simple metrics collector with Prometheus text format export.

    Counters of interest:
    - commands_total / commands_invalid_total
    - subscriptions_created_total / subscriptions_deleted_total
    - storage_errors_total
    - index_drift_total (second index write failed; indexes disagree)

    Gauges:
    - locks_held (keys with a write holding or awaiting their lock)
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        self._counters[f"{PREFIX}{name}"] += value

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""
        self._gauges[f"{PREFIX}{name}"] = value

    def get(self, name: str) -> int | float:
        """Get a metric value."""
        full = f"{PREFIX}{name}"
        if full in self._gauges:
            return self._gauges[full]
        return self._counters.get(full, 0)

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        for name, value in sorted(self._counters.items()):
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name} {value}")
        for name, value in sorted(self._gauges.items()):
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name} {value}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"

