"""Human-facing notification messages for the develop-feature workflow.

Builders are pure: they only format. Sending is the workflow's job.
"""

from __future__ import annotations

from typing import Optional

from devflow.core.models import (
    FixTaskResult,
    ImplementationPlan,
    ImplementationResult,
    Notification,
    NotificationPriority,
    Task,
    VerificationResult,
)

SUBJECT_PREFIX = "[devflow]"


def _subject(prefix: str, text: str) -> str:
    return f"{prefix} {text}" if prefix else text


def plan_ready(task: Task, plan: ImplementationPlan, workflow_id: str, prefix: str = SUBJECT_PREFIX) -> Notification:
    body = (
        "Implementation plan is ready for review.\n\n"
        f"**Task:** {task.title}\n"
        f"**Workflow ID:** {workflow_id}\n\n"
        f"**Proposed Changes:**\n{plan.summary()}\n\n"
        f"**Verification Plan:**\n{plan.verification_plan}\n\n"
        f"**Estimated Effort:** {plan.estimated_effort}\n\n"
        "Send an approval signal to this workflow to approve or reject."
    )
    return Notification(
        subject=_subject(prefix, f"Plan Ready: {task.title}"),
        body=body,
        priority=NotificationPriority.HIGH,
    )


def loop_detected(
    task: Task,
    original_task_id: str,
    chain_depth: int,
    prefix: str = SUBJECT_PREFIX,
) -> Notification:
    body = (
        f"Fix-task loop detected! Task has failed {chain_depth} times.\n\n"
        f"**Original Task ID:** {original_task_id}\n"
        f"**Task:** {task.title}\n"
        f"**Chain Depth:** {chain_depth}\n\n"
        "**Action Required:** Manual intervention needed. "
        "The automated fix attempts are failing repeatedly.\n\n"
        "Please review the task and either:\n"
        "1. Fix the underlying issue manually\n"
        "2. Cancel the task chain"
    )
    return Notification(
        subject=_subject(prefix, f"LOOP DETECTED: {task.title}"),
        body=body,
        priority=NotificationPriority.HIGH,
    )


def fix_task_created(
    task: Task,
    pr_url: Optional[str],
    error: str,
    fix: FixTaskResult,
    rollback_note: Optional[str] = None,
    prefix: str = SUBJECT_PREFIX,
) -> Notification:
    lines = [
        "Task failed verification. A fix task has been created.",
        "",
        f"**Original Task:** {task.title}",
        f"**PR:** {pr_url}",
        f"**Error:** {error}",
        "",
        f"**Fix Task ID:** {fix.fix_task_id}",
        f"**Attempt:** {fix.chain_depth}",
    ]
    if rollback_note:
        lines.append(f"**Rollback:** {rollback_note}")
    lines += ["", "The fix task will run automatically."]
    return Notification(
        subject=_subject(prefix, f"Task Failed - Fix Task Created: {task.title}"),
        body="\n".join(lines),
        priority=NotificationPriority.HIGH,
    )


def task_complete(
    task: Task,
    implementation: ImplementationResult,
    verification: VerificationResult,
    prefix: str = SUBJECT_PREFIX,
) -> Notification:
    lines = [
        "Task completed successfully!",
        "",
        f"**Task:** {task.title}",
        f"**PR:** {implementation.pr_url}",
        f"**Files Changed:** {', '.join(implementation.files_changed)}",
        "**Tests Passed:** Yes",
        f"**Commit:** {implementation.commit_sha}",
    ]
    if verification.deployed_to:
        lines.append(f"**Deployed To:** {verification.deployed_to}")
    return Notification(
        subject=_subject(prefix, f"Task Complete: {task.title}"),
        body="\n".join(lines),
        priority=NotificationPriority.NORMAL,
    )


def task_failed(task: Task, phase: str, error: str, prefix: str = SUBJECT_PREFIX) -> Notification:
    body = (
        "Task failed unexpectedly.\n\n"
        f"**Task:** {task.title}\n"
        f"**Phase:** {phase}\n"
        f"**Error:** {error}"
    )
    return Notification(
        subject=_subject(prefix, f"Task Failed: {task.title}"),
        body=body,
        priority=NotificationPriority.HIGH,
    )


def approval_timeout(task: Task, workflow_id: str, timeout_seconds: float, prefix: str = SUBJECT_PREFIX) -> Notification:
    hours = timeout_seconds / 3600
    body = (
        f"No approval decision was received within {hours:g} hours; the task was not started.\n\n"
        f"**Task:** {task.title}\n"
        f"**Workflow ID:** {workflow_id}"
    )
    return Notification(
        subject=_subject(prefix, f"Approval Timed Out: {task.title}"),
        body=body,
        priority=NotificationPriority.NORMAL,
    )


def plan_rejected(task: Task, reason: str, prefix: str = SUBJECT_PREFIX) -> Notification:
    body = (
        "The implementation plan was rejected; no code was written.\n\n"
        f"**Task:** {task.title}\n"
        f"**Reason:** {reason}"
    )
    return Notification(
        subject=_subject(prefix, f"Plan Rejected: {task.title}"),
        body=body,
        priority=NotificationPriority.NORMAL,
    )
