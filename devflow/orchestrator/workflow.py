"""Develop-feature workflow: plan, approve, implement, verify, notify.

Deterministic orchestration code. Everything with a side effect (model
calls, git, builds, notifications, the chain counter) goes through
ctx.execute_activity, and every wait goes through ctx.sleep or
ctx.wait_condition, so a run interrupted at any point can be replayed from
its history without repeating completed work.

Phase order:
    planning -> [awaiting_approval] -> coding -> deploying
        -> [retrying -> deploying]* -> complete | failed
with cancelled reachable until implementation has been checked, and failed
reachable from anywhere through the top-level handler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from devflow.activities.contracts import (
    CHECK_FIX_TASK_LOOP,
    CREATE_FIX_TASK,
    EXECUTE_CODE,
    PLAN_TASK,
    ROLLBACK_COMMIT,
    SEND_NOTIFICATION,
    VERIFY_BUILD,
)
from devflow.core.config import WorkflowConfig
from devflow.core.exceptions import ActivityError, NonDeterminismError, WorkflowError
from devflow.core.models import (
    ApprovalStatus,
    FixTaskRequest,
    FixTaskResult,
    ImplementationPlan,
    ImplementationResult,
    LoopCheckResult,
    Notification,
    OrchestrationState,
    RollbackRequest,
    RollbackResult,
    Task,
    VerificationResult,
    WorkflowInput,
    WorkflowOutput,
    WorkflowPhase,
    WorkflowStatus,
)
from devflow.orchestrator import notifications
from devflow.runtime.context import WorkflowContext
from devflow.runtime.retry import NO_RETRY

logger = logging.getLogger("devflow.orchestrator.workflow")

APPROVAL_SIGNAL = "approval"
CANCEL_SIGNAL = "cancel"

# Legal phase transitions; terminal phases have none
VALID_TRANSITIONS: dict[WorkflowPhase, set[WorkflowPhase]] = {
    WorkflowPhase.PLANNING: {
        WorkflowPhase.AWAITING_APPROVAL,
        WorkflowPhase.CODING,
        WorkflowPhase.FAILED,
        WorkflowPhase.CANCELLED,
    },
    WorkflowPhase.AWAITING_APPROVAL: {
        WorkflowPhase.CODING,
        WorkflowPhase.FAILED,
        WorkflowPhase.CANCELLED,
    },
    WorkflowPhase.CODING: {
        WorkflowPhase.DEPLOYING,
        WorkflowPhase.FAILED,
        WorkflowPhase.CANCELLED,
    },
    WorkflowPhase.DEPLOYING: {
        WorkflowPhase.RETRYING,
        WorkflowPhase.COMPLETE,
        WorkflowPhase.FAILED,
    },
    WorkflowPhase.RETRYING: {WorkflowPhase.DEPLOYING, WorkflowPhase.FAILED},
    WorkflowPhase.COMPLETE: set(),
    WorkflowPhase.FAILED: set(),
    WorkflowPhase.CANCELLED: set(),
}


@dataclass(frozen=True)
class WorkflowPolicy:
    """Tunable orchestration parameters."""
    approval_timeout_seconds: float = 24 * 60 * 60
    verification_retries: int = 1
    verification_cooldown_seconds: float = 30.0
    fix_loop_threshold: int = 2
    approval_policy: str = "first_wins"
    rollback_on_verification_failure: bool = False
    subject_prefix: str = notifications.SUBJECT_PREFIX

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfig,
        subject_prefix: str = notifications.SUBJECT_PREFIX,
    ) -> "WorkflowPolicy":
        return cls(
            approval_timeout_seconds=config.approval_timeout_seconds,
            verification_retries=config.verification_retries,
            verification_cooldown_seconds=config.verification_cooldown_seconds,
            fix_loop_threshold=config.fix_loop_threshold,
            approval_policy=config.approval_policy,
            rollback_on_verification_failure=config.rollback_on_verification_failure,
            subject_prefix=subject_prefix,
        )


class DevelopFeatureWorkflow:
    """One develop-feature run. Create a fresh instance per run (or replay)."""

    def __init__(self, policy: Optional[WorkflowPolicy] = None):
        self.policy = policy or WorkflowPolicy()
        self.state = OrchestrationState()
        self._ctx: Optional[WorkflowContext] = None

    # -------------------------------------------------------------------
    # Signal handlers (state mutation only)
    # -------------------------------------------------------------------

    def _on_approval(self, approved: bool, comment: Optional[str] = None) -> None:
        if self.state.is_terminal:
            return
        if self.state.approval_status != ApprovalStatus.PENDING and self.policy.approval_policy == "first_wins":
            self._log(
                logging.INFO,
                "Ignoring approval signal; decision already recorded (%s)",
                self.state.approval_status.value,
            )
            return
        self.state.approval_status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        self.state.approval_comment = comment

    def _on_cancel(self) -> None:
        self.state.cancel_requested = True

    # -------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------

    def run(self, ctx: WorkflowContext, workflow_input: WorkflowInput) -> WorkflowOutput:
        self._ctx = ctx
        ctx.set_signal_handler(APPROVAL_SIGNAL, self._on_approval)
        ctx.set_signal_handler(CANCEL_SIGNAL, self._on_cancel)

        try:
            return self._develop(ctx, workflow_input)
        except NonDeterminismError:
            raise
        except Exception as e:
            return self._fail_unexpectedly(ctx, workflow_input.task, e)

    def _develop(self, ctx: WorkflowContext, inp: WorkflowInput) -> WorkflowOutput:
        task = inp.task
        prefix = self.policy.subject_prefix

        # Corrective runs stop here if the chain is already too deep
        if inp.is_fix_task and inp.original_task_id:
            loop = ctx.execute_activity(CHECK_FIX_TASK_LOOP, inp.original_task_id, LoopCheckResult)
            if loop.is_loop or loop.chain_depth >= self.policy.fix_loop_threshold:
                error = f"Fix-task loop detected after {loop.chain_depth} attempts. Escalated to human."
                self._notify(ctx, notifications.loop_detected(task, inp.original_task_id, loop.chain_depth, prefix))
                self._fail(error)
                return WorkflowOutput(status=WorkflowStatus.FAILED, error=error)

        plan: ImplementationPlan = ctx.execute_activity(PLAN_TASK, task, ImplementationPlan)
        self.state.plan = plan

        if self._cancel_requested(ctx):
            return self._cancelled()

        if not inp.skip_approval:
            outcome = self._await_approval(ctx, task, plan)
            if outcome is not None:
                return outcome

        self._transition(WorkflowPhase.CODING)
        implementation: ImplementationResult = ctx.execute_activity(EXECUTE_CODE, plan, ImplementationResult)
        self.state.pr_url = implementation.pr_url
        self.state.commit_sha = implementation.commit_sha or None

        if self._cancel_requested(ctx):
            return self._cancelled()

        self._transition(WorkflowPhase.DEPLOYING)
        verification = self._verify(ctx, implementation.pr_url)

        if not verification.passed:
            return self._hand_off_fix_task(ctx, inp, implementation, verification)

        self._transition(WorkflowPhase.COMPLETE)
        if inp.notify_on_complete:
            self._notify(ctx, notifications.task_complete(task, implementation, verification, prefix))

        return WorkflowOutput(
            status=WorkflowStatus.COMPLETED,
            pr_url=implementation.pr_url,
            plan=plan,
            commit_sha=implementation.commit_sha,
        )

    # -------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------

    def _await_approval(
        self,
        ctx: WorkflowContext,
        task: Task,
        plan: ImplementationPlan,
    ) -> Optional[WorkflowOutput]:
        """Wait for a human decision. Returns an output if the run ends here."""
        prefix = self.policy.subject_prefix
        self._transition(WorkflowPhase.AWAITING_APPROVAL)
        self._notify(ctx, notifications.plan_ready(task, plan, ctx.workflow_id, prefix))

        decided = ctx.wait_condition(
            lambda: self.state.approval_status != ApprovalStatus.PENDING or self.state.cancel_requested,
            self.policy.approval_timeout_seconds,
        )

        if self.state.cancel_requested:
            return self._cancelled()

        if not decided or self.state.approval_status == ApprovalStatus.PENDING:
            hours = self.policy.approval_timeout_seconds / 3600
            error = f"Plan not approved within {hours:g} hours"
            self._fail(error)
            self._notify(
                ctx,
                notifications.approval_timeout(task, ctx.workflow_id, self.policy.approval_timeout_seconds, prefix),
            )
            return WorkflowOutput(status=WorkflowStatus.FAILED, plan=plan, error=error)

        if self.state.approval_status == ApprovalStatus.REJECTED:
            reason = self.state.approval_comment or "No reason given"
            error = f"Plan rejected: {reason}"
            self._fail(error)
            self._notify(ctx, notifications.plan_rejected(task, reason, prefix))
            return WorkflowOutput(status=WorkflowStatus.FAILED, plan=plan, error=error)

        return None

    def _verify(self, ctx: WorkflowContext, pr_url: str) -> VerificationResult:
        verification: VerificationResult = ctx.execute_activity(VERIFY_BUILD, pr_url, VerificationResult)
        while not verification.passed and self.state.retry_count < self.policy.verification_retries:
            self._transition(WorkflowPhase.RETRYING)
            self.state.retry_count += 1
            ctx.sleep(self.policy.verification_cooldown_seconds)
            self._transition(WorkflowPhase.DEPLOYING)
            verification = ctx.execute_activity(VERIFY_BUILD, pr_url, VerificationResult)
        return verification

    def _hand_off_fix_task(
        self,
        ctx: WorkflowContext,
        inp: WorkflowInput,
        implementation: ImplementationResult,
        verification: VerificationResult,
    ) -> WorkflowOutput:
        task = inp.task
        error = f"Build/test verification failed: {verification.logs}"
        self._fail(error)

        rollback_note = None
        if self.policy.rollback_on_verification_failure and implementation.commit_sha:
            rollback_note = self._rollback(ctx, implementation.commit_sha, error)

        # Single attempt: a retried increment would skew the chain depth
        fix: FixTaskResult = ctx.execute_activity(
            CREATE_FIX_TASK,
            FixTaskRequest(
                original_task_id=inp.original_task_id or task.id,
                original_task_title=task.title,
                error=error,
                commit_sha=implementation.commit_sha or None,
            ),
            FixTaskResult,
            retry_policy=NO_RETRY,
        )
        self._notify(
            ctx,
            notifications.fix_task_created(
                task, implementation.pr_url, error, fix, rollback_note, self.policy.subject_prefix
            ),
        )
        return WorkflowOutput(
            status=WorkflowStatus.FIX_TASK_CREATED,
            pr_url=implementation.pr_url,
            plan=self.state.plan,
            commit_sha=implementation.commit_sha,
            error=error,
            fix_task_id=fix.fix_task_id,
        )

    def _rollback(self, ctx: WorkflowContext, commit_sha: str, reason: str) -> str:
        try:
            result: RollbackResult = ctx.execute_activity(
                ROLLBACK_COMMIT,
                RollbackRequest(commit_sha=commit_sha, reason=reason),
                RollbackResult,
            )
        except ActivityError as e:
            self._log(logging.WARNING, "Rollback of %s failed: %s", commit_sha[:8], e)
            return f"failed: {e}"
        if result.success:
            return f"reverted as {result.revert_commit_sha}"
        return f"failed: {result.error}"

    def _fail_unexpectedly(self, ctx: WorkflowContext, task: Task, error: Exception) -> WorkflowOutput:
        phase = self.state.phase
        self._fail(str(error))
        self._log(logging.ERROR, "Task %s failed during %s: %s", task.id, phase.value, error)
        self._notify(
            ctx,
            notifications.task_failed(task, phase.value, str(error), self.policy.subject_prefix),
        )
        return WorkflowOutput(status=WorkflowStatus.FAILED, plan=self.state.plan, error=str(error))

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _cancel_requested(self, ctx: WorkflowContext) -> bool:
        ctx.checkpoint()
        return self.state.cancel_requested

    def _cancelled(self) -> WorkflowOutput:
        self._transition(WorkflowPhase.CANCELLED, reason="cancel requested")
        return WorkflowOutput(
            status=WorkflowStatus.CANCELLED,
            pr_url=self.state.pr_url,
            plan=self.state.plan,
            commit_sha=self.state.commit_sha,
        )

    def _fail(self, error: str) -> None:
        self.state.error = error
        if not self.state.is_terminal:
            self._transition(WorkflowPhase.FAILED, reason=error[:200])

    def _notify(self, ctx: WorkflowContext, notification: Notification) -> None:
        """Best-effort: a failed notification never changes the outcome."""
        try:
            ctx.execute_activity(SEND_NOTIFICATION, notification)
        except ActivityError as e:
            self._log(logging.WARNING, "Notification '%s' failed: %s", notification.subject, e)

    def _transition(self, new_phase: WorkflowPhase, reason: Optional[str] = None) -> None:
        old_phase = self.state.phase
        if new_phase not in VALID_TRANSITIONS.get(old_phase, set()):
            raise WorkflowError(f"Invalid transition: {old_phase.value} -> {new_phase.value}")
        self.state.phase = new_phase
        if reason:
            self._log(logging.INFO, "Phase %s -> %s (%s)", old_phase.value, new_phase.value, reason)
        else:
            self._log(logging.INFO, "Phase %s -> %s", old_phase.value, new_phase.value)

    def _log(self, level: int, msg: str, *args) -> None:
        # Replayed steps were already logged the first time round
        if self._ctx is not None and self._ctx.is_replaying:
            return
        logger.log(level, msg, *args)
