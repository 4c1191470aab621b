"""Durable workflow runtime: journaled history, replay, retries, signals."""

from devflow.runtime.context import WorkflowContext
from devflow.runtime.engine import LocalWorkflowEngine, WorkflowHandle
from devflow.runtime.history import (
    HistoryStore,
    InMemoryHistoryStore,
    PostgresHistoryStore,
    WorkflowSnapshot,
)
from devflow.runtime.metrics import ActivityMetrics
from devflow.runtime.retry import NO_RETRY, RetryPolicy, execute_with_retry

__all__ = [
    "ActivityMetrics",
    "HistoryStore",
    "InMemoryHistoryStore",
    "LocalWorkflowEngine",
    "NO_RETRY",
    "PostgresHistoryStore",
    "RetryPolicy",
    "WorkflowContext",
    "WorkflowHandle",
    "WorkflowSnapshot",
    "execute_with_retry",
]
