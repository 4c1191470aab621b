"""Coder activity: implements a plan on the task branch and opens a PR.

Idempotency comes from the branch name, which is derived from the task ID.
A retried call checks out the same branch (keeping commits that were already
pushed), pushes again, and gets back the pull request that is already open.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from devflow.activities.prompts import build_coder_prompt, load_system_prompt
from devflow.core.config import PromptLoader, ProjectConfig
from devflow.core.exceptions import NoChangesError, ResponseParseError
from devflow.core.models import ImplementationPlan, ImplementationResult
from devflow.llm.cascade import CascadeInvoker
from devflow.llm.response_parser import parse_json_response
from devflow.tools import git_ops

logger = logging.getLogger("devflow.activities.coder")

ROLE = "coder"


def branch_for_task(task_id: str, prefix: str = "feature/task-") -> str:
    return f"{prefix}{task_id}"


class CoderActivity:
    """Runs the coder cascade inside the project checkout.

    Injected dependencies:
        cascade: Cascade invoker used for generation.
        project: Project checkout, branch and base-branch settings.
        prompt_loader: Source of the coder system prompt.
    """

    def __init__(
        self,
        cascade: CascadeInvoker,
        project: ProjectConfig,
        prompt_loader: Optional[PromptLoader] = None,
    ):
        self.cascade = cascade
        self.project = project
        self.prompt_loader = prompt_loader

    def execute_code(self, plan: ImplementationPlan) -> ImplementationResult:
        started = time.monotonic()
        repo = self.project.project_dir
        branch = branch_for_task(plan.task_id, self.project.branch_prefix)
        logger.info("Implementing %s on %s", plan.task_id, branch)

        git_ops.prepare_branch(repo, branch, self.project.base_branch)

        response = self.cascade.invoke(
            build_coder_prompt(plan, branch),
            role=ROLE,
            cwd=repo,
            system_prompt=load_system_prompt(ROLE, self.prompt_loader),
        )
        reported = _parse_report(response)

        base_ref = f"origin/{self.project.base_branch}"
        if git_ops.commits_ahead(repo, base_ref) == 0:
            raise NoChangesError(f"No commits on {branch} beyond {base_ref} after code generation")

        commit_sha = git_ops.head_sha(repo)
        files_changed = git_ops.changed_files(repo, base_ref)
        if not files_changed:
            files_changed = list(reported.get("filesChanged") or reported.get("files_changed") or [])

        git_ops.push(repo, branch)
        pr_url = git_ops.create_pr(repo, branch, self.project.base_branch)

        tests_passed = reported.get("testsPassed", reported.get("tests_passed", True))
        logger.info(
            "Implemented %s: %s (%d file(s), %.1fs)",
            plan.task_id, pr_url, len(files_changed), time.monotonic() - started,
        )
        return ImplementationResult(
            pr_url=pr_url,
            files_changed=files_changed,
            tests_passed=bool(tests_passed),
            commit_sha=commit_sha,
        )


def _parse_report(response: str) -> dict[str, Any]:
    """The coder's JSON report is advisory; git is the source of truth."""
    try:
        return parse_json_response(response, source="coder")
    except ResponseParseError:
        logger.warning("No JSON report in coder response; relying on git state")
        return {}
