"""All Pydantic data models for devflow.

Defines the data contracts exchanged between the orchestrator and its
activities, the orchestrator's own state, and the workflow input/output.
Every activity request and response has a model here.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FileAction(str, enum.Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class WorkflowPhase(str, enum.Enum):
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    CODING = "coding"
    DEPLOYING = "deploying"
    RETRYING = "retrying"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkflowStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    FIX_TASK_CREATED = "fix_task_created"


TERMINAL_PHASES = frozenset({WorkflowPhase.COMPLETE, WorkflowPhase.FAILED, WorkflowPhase.CANCELLED})


# ---------------------------------------------------------------------------
# Task and plan
# ---------------------------------------------------------------------------

class Task(BaseModel):
    """Immutable task input, owned by the caller."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    context: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)
    files_to_modify: list[str] = Field(default_factory=list)
    priority: TaskPriority = TaskPriority.MEDIUM
    created_at: datetime = Field(default_factory=_now)


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    action: FileAction
    description: str = ""


class ImplementationPlan(BaseModel):
    """Output of the planning phase. Held for the lifetime of a run."""
    model_config = ConfigDict(frozen=True)

    task_id: str
    proposed_changes: list[FileChange] = Field(default_factory=list)
    verification_plan: str = ""
    estimated_effort: str = ""
    dependencies: list[str] = Field(default_factory=list)

    def summary(self) -> str:
        return "\n".join(
            f"- {c.action.value.upper()} {c.path}: {c.description}" for c in self.proposed_changes
        )


# ---------------------------------------------------------------------------
# Activity results
# ---------------------------------------------------------------------------

class ImplementationResult(BaseModel):
    pr_url: str
    files_changed: list[str] = Field(default_factory=list)
    tests_passed: bool = True
    commit_sha: str = ""


class VerificationResult(BaseModel):
    build_success: bool
    tests_passed: bool
    deployed_to: Optional[str] = None
    logs: str = ""

    @property
    def passed(self) -> bool:
        return self.build_success and self.tests_passed


class Notification(BaseModel):
    subject: str
    body: str
    priority: NotificationPriority = NotificationPriority.NORMAL


class FixTaskRequest(BaseModel):
    original_task_id: str
    original_task_title: str
    error: str
    commit_sha: Optional[str] = None


class FixTaskResult(BaseModel):
    fix_task_id: str
    chain_depth: int


class LoopCheckResult(BaseModel):
    is_loop: bool
    chain_depth: int


class RollbackRequest(BaseModel):
    commit_sha: str
    reason: str


class RollbackResult(BaseModel):
    success: bool
    revert_commit_sha: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Orchestration state and I/O
# ---------------------------------------------------------------------------

class OrchestrationState(BaseModel):
    """Mutable orchestrator state.

    Only phase-transition code and signal handlers write to it. Serializable
    so a run can be snapshotted and inspected mid-flight.
    """

    phase: WorkflowPhase = WorkflowPhase.PLANNING
    plan: Optional[ImplementationPlan] = None
    pr_url: Optional[str] = None
    commit_sha: Optional[str] = None
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approval_comment: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0
    cancel_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


class WorkflowInput(BaseModel):
    task: Task
    skip_approval: bool = True
    notify_on_complete: bool = True
    is_fix_task: bool = False
    original_task_id: Optional[str] = None


class WorkflowOutput(BaseModel):
    status: WorkflowStatus
    pr_url: Optional[str] = None
    plan: Optional[ImplementationPlan] = None
    commit_sha: Optional[str] = None
    error: Optional[str] = None
    fix_task_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Workflow event history
# ---------------------------------------------------------------------------

class EventKind(str, enum.Enum):
    ACTIVITY_COMPLETED = "activity_completed"
    ACTIVITY_FAILED = "activity_failed"
    TIMER_FIRED = "timer_fired"
    SIGNAL = "signal"
    WAIT_STARTED = "wait_started"
    CONDITION_RESOLVED = "condition_resolved"


class HistoryEvent(BaseModel):
    """One journaled workflow command or delivered signal."""
    seq: int
    kind: EventKind
    name: str
    payload: Any = None
    recorded_at: datetime = Field(default_factory=_now)
