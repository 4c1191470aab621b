"""Workflow execution context: the journaled command surface given to workflows.

Workflow code never calls activities, sleeps, or blocks on signals directly.
It goes through a WorkflowContext, which journals every outcome as a
HistoryEvent. When a run is resumed, the context first replays the recorded
events in order, handing back recorded results instead of re-executing, and
only switches to live execution once the history is exhausted.

Signals are delivered to registered handlers at command boundaries and while
waiting on a condition. Each delivery is journaled at the point it was
applied, so a replay applies it at the same point again.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel

from devflow.core.exceptions import ActivityError, NonDeterminismError
from devflow.core.models import EventKind, HistoryEvent
from devflow.runtime.history import HistoryStore
from devflow.runtime.metrics import ActivityMetrics
from devflow.runtime.retry import RetryPolicy, execute_with_retry

logger = logging.getLogger("devflow.runtime.context")

SignalMessage = tuple[str, tuple[Any, ...]]


def _to_payload(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class WorkflowContext:
    """Journaled command surface for one workflow instance.

    Injected dependencies:
        workflow_id: Instance identifier.
        activities: Activity name to callable.
        store: Where new events are appended.
        history: Previously recorded events to replay.
        inbox: Queue of (signal_name, args) sent to this instance.
        retry_policy: Default policy for activity calls.
        metrics: Optional activity metrics collector.
        sleep: Sleep function used for timers and retry backoff.
        wall_clock: Epoch-seconds clock used for condition deadlines.
        on_event: Callback after each newly recorded event.
    """

    def __init__(
        self,
        workflow_id: str,
        activities: Mapping[str, Callable[..., Any]],
        store: HistoryStore,
        history: Optional[list[HistoryEvent]] = None,
        inbox: Optional[queue.Queue] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[ActivityMetrics] = None,
        sleep: Callable[[float], None] = time.sleep,
        wall_clock: Callable[[], float] = time.time,
        on_event: Optional[Callable[[HistoryEvent], None]] = None,
    ):
        self.workflow_id = workflow_id
        self.activities = activities
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics
        self._history = list(history or [])
        self._cursor = 0
        self._next_seq = len(self._history)
        self._inbox: queue.Queue = inbox if inbox is not None else queue.Queue()
        self._handlers: dict[str, Callable[..., None]] = {}
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._on_event = on_event
        self._lock = threading.Lock()

    @property
    def is_replaying(self) -> bool:
        return self._cursor < len(self._history)

    # -------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------

    def set_signal_handler(self, name: str, handler: Callable[..., None]) -> None:
        self._handlers[name] = handler

    def checkpoint(self) -> None:
        """Apply any signals that are due at this point of the run."""
        self._sync()

    def _sync(self) -> None:
        self._replay_signals()
        if not self.is_replaying:
            self._drain_inbox()

    def _replay_signals(self) -> None:
        while self.is_replaying and self._history[self._cursor].kind == EventKind.SIGNAL:
            event = self._history[self._cursor]
            self._cursor += 1
            self._apply_signal(event.name, tuple(event.payload.get("args", [])))

    def _drain_inbox(self) -> None:
        while True:
            try:
                name, args = self._inbox.get_nowait()
            except queue.Empty:
                return
            self._deliver(name, args)

    def _deliver(self, name: str, args: tuple[Any, ...]) -> None:
        if name not in self._handlers:
            logger.warning("Workflow %s: no handler for signal '%s'; dropped", self.workflow_id, name)
            return
        self._record(EventKind.SIGNAL, name, {"args": list(args)})
        self._apply_signal(name, args)

    def _apply_signal(self, name: str, args: tuple[Any, ...]) -> None:
        handler = self._handlers.get(name)
        if handler is None:
            raise NonDeterminismError(self._cursor, f"signal:{name}", "no handler registered")
        handler(*args)

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------

    def execute_activity(
        self,
        name: str,
        arg: Any,
        result_type: Optional[type[BaseModel]] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> Any:
        """Run (or replay) an activity.

        Raises:
            ActivityError: If the activity failed (live or as recorded).
        """
        recorded = self._next_recorded((EventKind.ACTIVITY_COMPLETED, EventKind.ACTIVITY_FAILED), name)
        if recorded is None:
            recorded = self._run_activity(name, arg, retry_policy or self.retry_policy)
        self._sync()

        if recorded.kind == EventKind.ACTIVITY_FAILED:
            payload = recorded.payload or {}
            raise ActivityError(
                name,
                int(payload.get("attempts", 1)),
                message=payload.get("error", f"Activity {name} failed"),
            )
        result = (recorded.payload or {}).get("result")
        if result_type is not None and result is not None:
            return result_type.model_validate(result)
        return result

    def _run_activity(self, name: str, arg: Any, policy: RetryPolicy) -> HistoryEvent:
        fn = self.activities.get(name)
        if fn is None:
            raise ActivityError(name, 0, message=f"Unknown activity: {name}")

        metric = self.metrics.start(self.workflow_id, name) if self.metrics else None
        try:
            result, attempts = execute_with_retry(name, fn, (arg,), policy, sleep=self._sleep)
        except ActivityError as e:
            if metric is not None:
                self.metrics.complete(metric, "failed", attempts=e.attempts, error=str(e))
            return self._record(
                EventKind.ACTIVITY_FAILED,
                name,
                {"error": str(e), "attempts": e.attempts, "type": type(e.cause).__name__},
            )
        if metric is not None:
            self.metrics.complete(metric, "success", attempts=attempts)
        return self._record(EventKind.ACTIVITY_COMPLETED, name, {"result": _to_payload(result)})

    def sleep(self, seconds: float) -> None:
        """Durable timer."""
        recorded = self._next_recorded((EventKind.TIMER_FIRED,), "sleep")
        if recorded is None:
            if seconds > 0:
                self._sleep(seconds)
            self._record(EventKind.TIMER_FIRED, "sleep", {"seconds": seconds})
        self._sync()

    def wait_condition(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """Block until predicate() holds or timeout elapses.

        Signals arriving while waiting are applied as they come in, and the
        predicate is re-evaluated after each. The deadline is journaled when
        the wait begins so a resumed run keeps the original deadline.

        Returns:
            True if the predicate became true, False on timeout.
        """
        started = self._next_recorded((EventKind.WAIT_STARTED,), "wait")
        if started is None:
            deadline = self._wall_clock() + timeout
            self._record(EventKind.WAIT_STARTED, "wait", {"deadline": deadline, "timeout": timeout})
        else:
            deadline = float(started.payload["deadline"])

        resolved = self._next_recorded((EventKind.CONDITION_RESOLVED,), "wait")
        if resolved is not None:
            return bool(resolved.payload["result"])

        while True:
            self._sync()
            if predicate():
                result = True
                break
            remaining = deadline - self._wall_clock()
            if remaining <= 0:
                result = False
                break
            try:
                name, args = self._inbox.get(timeout=remaining)
            except queue.Empty:
                continue
            self._deliver(name, args)

        self._record(EventKind.CONDITION_RESOLVED, "wait", {"result": result})
        return result

    # -------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------

    def _next_recorded(self, kinds: tuple[EventKind, ...], name: str) -> Optional[HistoryEvent]:
        """Consume the next recorded command event, or None when live."""
        self._replay_signals()
        if not self.is_replaying:
            return None
        event = self._history[self._cursor]
        if event.kind not in kinds or event.name != name:
            raise NonDeterminismError(
                event.seq,
                f"{event.kind.value}:{event.name}",
                f"{'/'.join(k.value for k in kinds)}:{name}",
            )
        self._cursor += 1
        return event

    def _record(self, kind: EventKind, name: str, payload: Any) -> HistoryEvent:
        with self._lock:
            event = HistoryEvent(seq=self._next_seq, kind=kind, name=name, payload=payload)
            self._next_seq += 1
        self.store.append(self.workflow_id, event)
        self._history.append(event)
        self._cursor = len(self._history)
        if self._on_event is not None:
            self._on_event(event)
        return event
