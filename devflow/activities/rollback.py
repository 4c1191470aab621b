"""Rollback and corrective-task activities."""

from __future__ import annotations

import logging

from devflow.chain.tracker import ChainTracker
from devflow.core.config import ProjectConfig
from devflow.core.exceptions import ToolError
from devflow.core.models import (
    FixTaskRequest,
    FixTaskResult,
    LoopCheckResult,
    RollbackRequest,
    RollbackResult,
)
from devflow.tools import git_ops

logger = logging.getLogger("devflow.activities.rollback")


class RollbackActivity:
    """Reverts commits on the current branch and tracks fix-task chains.

    Injected dependencies:
        project: Project checkout.
        chain_tracker: Corrective-task chain counter.
        loop_threshold: Depth at which a root task counts as looping.
    """

    def __init__(self, project: ProjectConfig, chain_tracker: ChainTracker, loop_threshold: int = 2):
        self.project = project
        self.chain_tracker = chain_tracker
        self.loop_threshold = loop_threshold

    def rollback_commit(self, request: RollbackRequest) -> RollbackResult:
        """Revert a commit and push the revert. Git failures come back as data."""
        repo = self.project.project_dir
        logger.info("Rolling back %s: %s", request.commit_sha[:8], request.reason)
        try:
            branch = git_ops.current_branch(repo)
            git_ops.pull(repo, branch)
            revert_sha = git_ops.revert(repo, request.commit_sha)
            git_ops.push(repo, branch)
        except ToolError as e:
            logger.error("Rollback of %s failed: %s", request.commit_sha[:8], e)
            return RollbackResult(success=False, error=str(e))
        return RollbackResult(success=True, revert_commit_sha=revert_sha)

    def create_fix_task(self, request: FixTaskRequest) -> FixTaskResult:
        return self.chain_tracker.create_fix_task(request)

    def check_fix_task_loop(self, original_task_id: str) -> LoopCheckResult:
        return self.chain_tracker.check_loop(original_task_id, self.loop_threshold)
