"""Workflow history stores.

A history store keeps, per workflow instance, the input it was started with,
the append-only list of journaled events, and the latest state snapshot.
Replaying the events through the workflow code reconstructs the run without
repeating completed activities.
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from devflow.core.exceptions import WorkflowNotFoundError
from devflow.core.models import HistoryEvent, OrchestrationState, WorkflowInput
from devflow.db.repository import Repository


class WorkflowRecord(BaseModel):
    workflow_id: str
    input: WorkflowInput
    state: Optional[dict[str, Any]] = None
    status: Optional[str] = None


class WorkflowRunSummary(BaseModel):
    workflow_id: str
    task_id: str
    status: Optional[str] = None


class WorkflowSnapshot(BaseModel):
    """Everything needed to resume a run in another process."""
    workflow_id: str
    input: WorkflowInput
    state: Optional[OrchestrationState] = None
    history: list[HistoryEvent] = Field(default_factory=list)


class HistoryStore(Protocol):
    def create(self, workflow_id: str, workflow_input: WorkflowInput) -> None: ...

    def exists(self, workflow_id: str) -> bool: ...

    def get_record(self, workflow_id: str) -> WorkflowRecord: ...

    def append(self, workflow_id: str, event: HistoryEvent) -> None: ...

    def events(self, workflow_id: str) -> list[HistoryEvent]: ...

    def save_state(self, workflow_id: str, state: dict[str, Any], status: Optional[str] = None) -> None: ...

    def list_runs(self, limit: int = 20) -> list[WorkflowRunSummary]: ...


class InMemoryHistoryStore:
    """History kept in process memory. Survives engine restarts, not process exits."""

    def __init__(self):
        self._records: dict[str, WorkflowRecord] = {}
        self._events: dict[str, list[HistoryEvent]] = {}
        self._lock = threading.Lock()

    def create(self, workflow_id: str, workflow_input: WorkflowInput) -> None:
        with self._lock:
            if workflow_id in self._records:
                return
            self._records[workflow_id] = WorkflowRecord(workflow_id=workflow_id, input=workflow_input)
            self._events[workflow_id] = []

    def exists(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._records

    def get_record(self, workflow_id: str) -> WorkflowRecord:
        with self._lock:
            record = self._records.get(workflow_id)
            if record is None:
                raise WorkflowNotFoundError(f"Unknown workflow: {workflow_id}")
            return record.model_copy()

    def append(self, workflow_id: str, event: HistoryEvent) -> None:
        with self._lock:
            if workflow_id not in self._events:
                raise WorkflowNotFoundError(f"Unknown workflow: {workflow_id}")
            self._events[workflow_id].append(event)

    def events(self, workflow_id: str) -> list[HistoryEvent]:
        with self._lock:
            if workflow_id not in self._events:
                raise WorkflowNotFoundError(f"Unknown workflow: {workflow_id}")
            return list(self._events[workflow_id])

    def save_state(self, workflow_id: str, state: dict[str, Any], status: Optional[str] = None) -> None:
        with self._lock:
            record = self._records.get(workflow_id)
            if record is None:
                raise WorkflowNotFoundError(f"Unknown workflow: {workflow_id}")
            record.state = state
            if status is not None:
                record.status = status

    def list_runs(self, limit: int = 20) -> list[WorkflowRunSummary]:
        """Most recently created first."""
        with self._lock:
            records = list(self._records.values())[::-1][:limit]
        return [
            WorkflowRunSummary(workflow_id=r.workflow_id, task_id=r.input.task.id, status=r.status)
            for r in records
        ]


class PostgresHistoryStore:
    """History persisted in workflow_runs / workflow_events."""

    def __init__(self, repository: Repository):
        self.repository = repository

    def create(self, workflow_id: str, workflow_input: WorkflowInput) -> None:
        self.repository.create_workflow_run(workflow_id, workflow_input.model_dump(mode="json"))

    def exists(self, workflow_id: str) -> bool:
        return self.repository.get_workflow_run(workflow_id) is not None

    def get_record(self, workflow_id: str) -> WorkflowRecord:
        row = self.repository.get_workflow_run(workflow_id)
        if row is None:
            raise WorkflowNotFoundError(f"Unknown workflow: {workflow_id}")
        return WorkflowRecord(
            workflow_id=row["workflow_id"],
            input=WorkflowInput.model_validate(row["input"]),
            state=row["state"],
            status=row["status"],
        )

    def append(self, workflow_id: str, event: HistoryEvent) -> None:
        self.repository.append_workflow_event(workflow_id, event)

    def events(self, workflow_id: str) -> list[HistoryEvent]:
        return self.repository.get_workflow_events(workflow_id)

    def save_state(self, workflow_id: str, state: dict[str, Any], status: Optional[str] = None) -> None:
        self.repository.save_workflow_state(workflow_id, state, status)

    def list_runs(self, limit: int = 20) -> list[WorkflowRunSummary]:
        return [
            WorkflowRunSummary(workflow_id=row["workflow_id"], task_id=row["task_id"], status=row["status"])
            for row in self.repository.list_workflow_runs(limit)
        ]
