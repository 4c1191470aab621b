"""Activity contracts for the develop-feature workflow.

The orchestrator only ever talks to activities by name through the workflow
context; this module fixes those names and their request/response types.
Implementations must honour the per-activity guarantees in the docstrings
below, since the workflow relies on them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from devflow.core.models import (
    FixTaskRequest,
    FixTaskResult,
    ImplementationPlan,
    ImplementationResult,
    LoopCheckResult,
    Notification,
    RollbackRequest,
    RollbackResult,
    Task,
    VerificationResult,
)

PLAN_TASK = "plan_task"
EXECUTE_CODE = "execute_code"
VERIFY_BUILD = "verify_build"
SEND_NOTIFICATION = "send_notification"
ROLLBACK_COMMIT = "rollback_commit"
CREATE_FIX_TASK = "create_fix_task"
CHECK_FIX_TASK_LOOP = "check_fix_task_loop"

ACTIVITY_NAMES = (
    PLAN_TASK,
    EXECUTE_CODE,
    VERIFY_BUILD,
    SEND_NOTIFICATION,
    ROLLBACK_COMMIT,
    CREATE_FIX_TASK,
    CHECK_FIX_TASK_LOOP,
)


class Activities(ABC):
    """The side-effecting operations the orchestrator can request."""

    @abstractmethod
    def plan_task(self, task: Task) -> ImplementationPlan:
        """Produce a plan. Unparseable model output raises NonRetryableError."""

    @abstractmethod
    def execute_code(self, plan: ImplementationPlan) -> ImplementationResult:
        """Implement a plan and open a PR.

        Idempotent per task ID: a retry lands on the same branch and returns
        the same pull request.
        """

    @abstractmethod
    def verify_build(self, pr_url: str) -> VerificationResult:
        """Build and test. Never raises; failure is reported in the result."""

    @abstractmethod
    def send_notification(self, notification: Notification) -> None:
        """Fire-and-forget message to a human."""

    @abstractmethod
    def rollback_commit(self, request: RollbackRequest) -> RollbackResult:
        """Revert a commit and push the revert."""

    @abstractmethod
    def create_fix_task(self, request: FixTaskRequest) -> FixTaskResult:
        """Register a corrective task and return its chain depth."""

    @abstractmethod
    def check_fix_task_loop(self, original_task_id: str) -> LoopCheckResult:
        """Report the current chain depth for a root task."""

    def as_mapping(self) -> dict[str, Callable[..., Any]]:
        """Name-to-callable table registered with the workflow engine."""
        return {name: getattr(self, name) for name in ACTIVITY_NAMES}
