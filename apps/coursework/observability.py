"""
In-process metrics sink.

Counters for auto-assignment and enrollment bookkeeping plus call stats for
the text grader. Recording is fire-and-forget: a failing sink is logged and
never interrupts the operation that reported to it.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class MetricsRegistry:

    def __init__(self):
        self._lock = threading.Lock()
        self._counters = {}
        self._grading = {
            'calls': 0,
            'failures': 0,
            'total_latency_ms': 0.0,
            'max_latency_ms': 0.0,
        }

    def increment(self, name, amount=1):
        try:
            with self._lock:
                self._counters[name] = self._counters.get(name, 0) + amount
        except Exception:
            logger.exception("Failed to record counter %s", name)

    def record_grading_call(self, latency_ms, failed):
        try:
            with self._lock:
                self._grading['calls'] += 1
                if failed:
                    self._grading['failures'] += 1
                self._grading['total_latency_ms'] += latency_ms
                self._grading['max_latency_ms'] = max(self._grading['max_latency_ms'], latency_ms)
        except Exception:
            logger.exception("Failed to record grading call")

    def counter(self, name):
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self):
        with self._lock:
            calls = self._grading['calls']
            return {
                'counters': dict(self._counters),
                'grading': {
                    'calls': calls,
                    'failures': self._grading['failures'],
                    'avg_latency_ms': round(self._grading['total_latency_ms'] / calls, 2) if calls else 0,
                    'max_latency_ms': round(self._grading['max_latency_ms'], 2),
                },
            }


_registry = MetricsRegistry()


def get_metrics():
    """Process-wide registry used when a service is built without one."""
    return _registry
