"""Activity metrics collector for devflow.

Records per-activity execution data for each workflow instance:
  {workflow_id, activity, started_at, completed_at, duration_seconds, attempts, status, error}

Replayed activities are not recorded; only real executions are.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional

logger = logging.getLogger("devflow.runtime.metrics")


@dataclass
class ActivityMetric:
    """Single activity execution record."""
    workflow_id: str
    activity: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    attempts: int = 0
    status: str = "pending"
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class ActivityMetrics:
    """Collects activity timings across all running workflow instances."""

    def __init__(self):
        self._metrics: list[ActivityMetric] = []
        self._lock = threading.Lock()

    def start(self, workflow_id: str, activity: str) -> ActivityMetric:
        metric = ActivityMetric(
            workflow_id=workflow_id,
            activity=activity,
            started_at=datetime.now(UTC),
        )
        with self._lock:
            self._metrics.append(metric)
        logger.debug("Activity %s started for %s", activity, workflow_id)
        return metric

    def complete(
        self,
        metric: ActivityMetric,
        status: str,
        attempts: int = 1,
        error: Optional[str] = None,
    ) -> None:
        metric.completed_at = datetime.now(UTC)
        metric.status = status
        metric.attempts = attempts
        metric.error = error
        metric.duration_seconds = (metric.completed_at - metric.started_at).total_seconds()

        logger.info(
            "Activity '%s' (%s): status=%s, attempts=%d, duration=%.2fs",
            metric.activity, metric.workflow_id, status, attempts, metric.duration_seconds,
        )

    def get(self, workflow_id: Optional[str] = None, activity: Optional[str] = None) -> list[ActivityMetric]:
        with self._lock:
            metrics = list(self._metrics)
        if workflow_id:
            metrics = [m for m in metrics if m.workflow_id == workflow_id]
        if activity:
            metrics = [m for m in metrics if m.activity == activity]
        return metrics

    def count(self, activity: str, workflow_id: Optional[str] = None) -> int:
        return len(self.get(workflow_id=workflow_id, activity=activity))
