"""
In-memory build service counters for Prometheus exposition.
Thread-safe: builds run on server worker threads.
"""
import threading
from typing import Dict

# name -> (help text, label selector or "")
_EXPORTED = (
    ("requests_total", "Total HTTP requests", "build_requests_total", ""),
    ("requests_2xx", "HTTP requests by status class", "build_requests_by_status", 'status="2xx"'),
    ("requests_4xx", "HTTP requests by status class", "build_requests_by_status", 'status="4xx"'),
    ("requests_5xx", "HTTP requests by status class", "build_requests_by_status", 'status="5xx"'),
    ("builds_total", "Total builds started", "build_builds_total", ""),
    ("builds_succeeded_total", "Builds that ran every configured step", "build_builds_succeeded_total", ""),
    ("builds_failed_total", "Builds halted at a failing stage", "build_builds_failed_total", ""),
    ("build_steps_total", "External commands executed", "build_steps_total", ""),
)


class Metrics:
    """Thread-safe counter collection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name, *_ in _EXPORTED}

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        """Get a counter value."""
        with self._lock:
            return self._counters.get(name, 0)

    def get_all(self) -> Dict[str, int]:
        """Get a snapshot of all counters."""
        with self._lock:
            return self._counters.copy()

    def to_prometheus(self) -> str:
        """Export counters in Prometheus text format."""
        counters = self.get_all()
        lines = []
        described = set()
        for name, help_text, metric, labels in _EXPORTED:
            if metric not in described:
                lines.append(f"# HELP {metric} {help_text}")
                lines.append(f"# TYPE {metric} counter")
                described.add(metric)
            selector = f"{{{labels}}}" if labels else ""
            lines.append(f"{metric}{selector} {counters.get(name, 0)}")
        return "\n".join(lines) + "\n"


# Global metrics instance
metrics = Metrics()
