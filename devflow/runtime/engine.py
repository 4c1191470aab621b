"""Local durable workflow engine.

Runs each workflow instance on its own thread with a WorkflowContext bound
to a HistoryStore. Because every command outcome is journaled, an instance
that dies mid-run (process crash, worker shutdown) can be resumed: the
engine replays the stored history through a fresh workflow object, then
continues live from the first command that has no recorded outcome.

Instances can also be moved between engines with snapshot() / restore().
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Mapping, Optional, Protocol

from devflow.core.exceptions import WorkflowError, WorkflowNotFoundError
from devflow.core.models import OrchestrationState, WorkflowInput, WorkflowOutput
from devflow.runtime.context import SignalMessage, WorkflowContext
from devflow.runtime.history import HistoryStore, InMemoryHistoryStore, WorkflowSnapshot
from devflow.runtime.metrics import ActivityMetrics
from devflow.runtime.retry import RetryPolicy

logger = logging.getLogger("devflow.runtime.engine")

RUNNING_STATUS = "running"
CRASHED_STATUS = "interrupted"


class Workflow(Protocol):
    state: OrchestrationState

    def run(self, ctx: WorkflowContext, workflow_input: WorkflowInput) -> WorkflowOutput: ...


class WorkflowHandle:
    """Client-side handle to a running or finished instance."""

    def __init__(self, workflow_id: str, workflow: Workflow):
        self.workflow_id = workflow_id
        self._workflow = workflow
        self._inbox: queue.Queue[SignalMessage] = queue.Queue()
        self._done = threading.Event()
        self._output: Optional[WorkflowOutput] = None
        self._error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    def signal(self, name: str, *args: Any) -> None:
        if self._done.is_set():
            raise WorkflowError(f"Workflow {self.workflow_id} has already finished")
        self._inbox.put((name, args))

    def approve(self, approved: bool, comment: Optional[str] = None) -> None:
        self.signal("approval", approved, comment)

    def cancel(self) -> None:
        self.signal("cancel")

    def query_state(self) -> OrchestrationState:
        return self._workflow.state.model_copy(deep=True)

    def done(self) -> bool:
        return self._done.is_set()

    def result(self, timeout: Optional[float] = None) -> WorkflowOutput:
        """Wait for the instance to finish.

        Raises:
            WorkflowError: If the wait timed out.
            Whatever the run itself raised (e.g. NonDeterminismError).
        """
        if not self._done.wait(timeout):
            raise WorkflowError(f"Timed out waiting for workflow {self.workflow_id}")
        if self._error is not None:
            raise self._error
        assert self._output is not None
        return self._output

    def _finish(self, output: Optional[WorkflowOutput], error: Optional[BaseException]) -> None:
        self._output = output
        self._error = error
        self._done.set()


class LocalWorkflowEngine:
    """In-process engine for durable workflow instances.

    Injected dependencies:
        workflow_factory: Builds a fresh workflow object per instance.
        activities: Activity name to callable.
        store: History store (in-memory by default).
        retry_policy: Default activity retry policy.
        metrics: Activity metrics collector.
        sleep: Sleep function for timers and retry backoff.
        wall_clock: Epoch-seconds clock for condition deadlines.
    """

    def __init__(
        self,
        workflow_factory: Callable[[], Workflow],
        activities: Mapping[str, Callable[..., Any]],
        store: Optional[HistoryStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[ActivityMetrics] = None,
        sleep: Callable[[float], None] = time.sleep,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.workflow_factory = workflow_factory
        self.activities = activities
        self.store: HistoryStore = store if store is not None else InMemoryHistoryStore()
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics or ActivityMetrics()
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._handles: dict[str, WorkflowHandle] = {}
        self._lock = threading.Lock()

    def start(self, workflow_id: str, workflow_input: WorkflowInput) -> WorkflowHandle:
        """Start a new instance.

        Raises:
            WorkflowError: If an instance with this ID already exists.
        """
        with self._lock:
            if workflow_id in self._handles or self.store.exists(workflow_id):
                raise WorkflowError(f"Workflow {workflow_id} already exists; use resume()")
            self.store.create(workflow_id, workflow_input)
            logger.info("Starting workflow %s for task %s", workflow_id, workflow_input.task.id)
            return self._launch(workflow_id, workflow_input)

    def resume(self, workflow_id: str) -> WorkflowHandle:
        """Replay a stored instance and continue it live.

        A running instance is returned as-is. A finished one is replayed to
        the same output without repeating any activity.
        """
        with self._lock:
            handle = self._handles.get(workflow_id)
            if handle is not None and not handle.done():
                return handle
            record = self.store.get_record(workflow_id)
            logger.info("Resuming workflow %s", workflow_id)
            return self._launch(workflow_id, record.input)

    def execute(
        self,
        workflow_id: str,
        workflow_input: WorkflowInput,
        timeout: Optional[float] = None,
    ) -> WorkflowOutput:
        return self.start(workflow_id, workflow_input).result(timeout)

    def get_handle(self, workflow_id: str) -> WorkflowHandle:
        with self._lock:
            handle = self._handles.get(workflow_id)
        if handle is None:
            raise WorkflowNotFoundError(f"No live handle for workflow: {workflow_id}")
        return handle

    def snapshot(self, workflow_id: str) -> WorkflowSnapshot:
        record = self.store.get_record(workflow_id)
        state = OrchestrationState.model_validate(record.state) if record.state else None
        return WorkflowSnapshot(
            workflow_id=workflow_id,
            input=record.input,
            state=state,
            history=self.store.events(workflow_id),
        )

    def restore(self, snapshot: WorkflowSnapshot) -> WorkflowHandle:
        """Load a snapshot into this engine's store and resume it."""
        if not self.store.exists(snapshot.workflow_id):
            self.store.create(snapshot.workflow_id, snapshot.input)
            for event in snapshot.history:
                self.store.append(snapshot.workflow_id, event)
            if snapshot.state is not None:
                self.store.save_state(snapshot.workflow_id, snapshot.state.model_dump(mode="json"))
        return self.resume(snapshot.workflow_id)

    def _launch(self, workflow_id: str, workflow_input: WorkflowInput) -> WorkflowHandle:
        workflow = self.workflow_factory()
        handle = WorkflowHandle(workflow_id, workflow)

        def save_state(_event) -> None:
            self.store.save_state(workflow_id, workflow.state.model_dump(mode="json"))

        ctx = WorkflowContext(
            workflow_id=workflow_id,
            activities=self.activities,
            store=self.store,
            history=self.store.events(workflow_id),
            inbox=handle._inbox,
            retry_policy=self.retry_policy,
            metrics=self.metrics,
            sleep=self._sleep,
            wall_clock=self._wall_clock,
            on_event=save_state,
        )
        self.store.save_state(workflow_id, workflow.state.model_dump(mode="json"), status=RUNNING_STATUS)

        thread = threading.Thread(
            target=self._run_instance,
            args=(handle, workflow, ctx, workflow_input),
            name=f"workflow-{workflow_id}",
            daemon=True,
        )
        handle._thread = thread
        self._handles[workflow_id] = handle
        thread.start()
        return handle

    def _run_instance(
        self,
        handle: WorkflowHandle,
        workflow: Workflow,
        ctx: WorkflowContext,
        workflow_input: WorkflowInput,
    ) -> None:
        try:
            output = workflow.run(ctx, workflow_input)
        except BaseException as e:
            # History up to the failure point is kept for resume()
            logger.error("Workflow %s interrupted: %s", handle.workflow_id, e)
            self.store.save_state(
                handle.workflow_id, workflow.state.model_dump(mode="json"), status=CRASHED_STATUS
            )
            handle._finish(None, e)
            return

        self.store.save_state(
            handle.workflow_id, workflow.state.model_dump(mode="json"), status=output.status.value
        )
        logger.info("Workflow %s finished: %s", handle.workflow_id, output.status.value)
        handle._finish(output, None)
