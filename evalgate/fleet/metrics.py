"""Fleet-wide outcome metrics fed by lifecycle events."""

import threading
from collections import Counter
from typing import Any, Dict

from evalgate.schemas.event import EventType, LifecycleEventV1


class FleetMetrics:
    """Thread-safe counters over lifecycle events.

    Subscribe an instance to the engine's event bus::

        metrics = FleetMetrics()
        engine.events.subscribe(metrics)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Counter = Counter()
        self._failures_by_reason: Counter = Counter()
        self._rollbacks_by_reason: Counter = Counter()
        self._improvement_sum = 0.0

    def __call__(self, event: LifecycleEventV1) -> None:
        with self._lock:
            self._counts[event.event_type] += 1

            if event.event_type == EventType.COMMITTED and event.comparison is not None:
                self._improvement_sum += event.comparison.improvement_pct
            elif event.event_type == EventType.FAILED:
                self._failures_by_reason[event.reason or "unknown"] += 1
            elif event.event_type == EventType.ROLLED_BACK:
                self._rollbacks_by_reason[event.reason or "unknown"] += 1

    @property
    def total(self) -> int:
        """Proposals that reached a terminal state."""
        with self._lock:
            return self._terminal_total()

    def _terminal_total(self) -> int:
        return (
            self._counts[EventType.COMMITTED]
            + self._counts[EventType.ROLLED_BACK]
            + self._counts[EventType.FAILED]
        )

    def _rate(self, event_type: EventType) -> float:
        total = self._terminal_total()
        if total == 0:
            return 0.0
        return self._counts[event_type] / total

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time copy of all metrics."""
        with self._lock:
            committed = self._counts[EventType.COMMITTED]
            return {
                "total": self._terminal_total(),
                "committed": committed,
                "rolled_back": self._counts[EventType.ROLLED_BACK],
                "failed": self._counts[EventType.FAILED],
                "awaiting_approval": self._counts[EventType.AWAITING_APPROVAL],
                "commit_rate": self._rate(EventType.COMMITTED),
                "rejection_rate": self._rate(EventType.ROLLED_BACK),
                "failure_rate": self._rate(EventType.FAILED),
                "avg_commit_improvement_pct": (
                    self._improvement_sum / committed if committed else 0.0
                ),
                "failures_by_reason": dict(self._failures_by_reason),
                "rollbacks_by_reason": dict(self._rollbacks_by_reason),
            }
