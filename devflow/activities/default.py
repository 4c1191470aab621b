"""Production activity set: planner, coder, deployer, notifier and rollback wired together."""

from __future__ import annotations

from devflow.activities.coder import CoderActivity
from devflow.activities.contracts import Activities
from devflow.activities.deployer import DeployerActivity
from devflow.activities.notifier import WebhookNotifier
from devflow.activities.planner import PlannerActivity
from devflow.activities.rollback import RollbackActivity
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


class DefaultActivities(Activities):
    """Delegates each contract operation to its activity module."""

    def __init__(
        self,
        planner: PlannerActivity,
        coder: CoderActivity,
        deployer: DeployerActivity,
        notifier: WebhookNotifier,
        rollback: RollbackActivity,
    ):
        self.planner = planner
        self.coder = coder
        self.deployer = deployer
        self.notifier = notifier
        self.rollback = rollback

    def plan_task(self, task: Task) -> ImplementationPlan:
        return self.planner.plan_task(task)

    def execute_code(self, plan: ImplementationPlan) -> ImplementationResult:
        return self.coder.execute_code(plan)

    def verify_build(self, pr_url: str) -> VerificationResult:
        return self.deployer.verify_build(pr_url)

    def send_notification(self, notification: Notification) -> None:
        self.notifier.send_notification(notification)

    def rollback_commit(self, request: RollbackRequest) -> RollbackResult:
        return self.rollback.rollback_commit(request)

    def create_fix_task(self, request: FixTaskRequest) -> FixTaskResult:
        return self.rollback.create_fix_task(request)

    def check_fix_task_loop(self, original_task_id: str) -> LoopCheckResult:
        return self.rollback.check_fix_task_loop(original_task_id)
