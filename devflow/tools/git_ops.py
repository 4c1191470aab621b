"""Git and GitHub CLI operations for devflow.

Branch preparation and pull-request lookup for the coder activity, revert
and push for the rollback activity. All commands run list-form through
run_command so commit messages and branch names never reach a shell.
"""

from __future__ import annotations

import logging
from typing import Optional

from devflow.core.exceptions import GitOperationError
from devflow.tools.shell import ShellResult, run_command

logger = logging.getLogger("devflow.tools.git_ops")


def _git(repo_path: str, *args: str, check: bool = True) -> ShellResult:
    result = run_command(["git", *args], cwd=repo_path)
    if check and not result.success:
        raise GitOperationError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result


def current_branch(repo_path: str) -> str:
    return _git(repo_path, "rev-parse", "--abbrev-ref", "HEAD").stdout.strip()


def head_sha(repo_path: str) -> str:
    return _git(repo_path, "rev-parse", "HEAD").stdout.strip()


def remote_branch_exists(repo_path: str, branch: str) -> bool:
    result = _git(repo_path, "ls-remote", "--heads", "origin", branch, check=False)
    return result.success and bool(result.stdout.strip())


def prepare_branch(repo_path: str, branch: str, base_branch: str = "main") -> bool:
    """Check out the working branch for a task.

    The branch name is derived from the task ID, so a retried implementation
    lands on the same branch. An existing remote branch is reused rather than
    recreated, which keeps already-pushed commits.

    Returns:
        True if an existing remote branch was reused, False if a fresh branch
        was cut from base_branch.
    """
    _git(repo_path, "fetch", "origin", base_branch)

    if remote_branch_exists(repo_path, branch):
        _git(repo_path, "fetch", "origin", branch)
        _git(repo_path, "checkout", "-B", branch, f"origin/{branch}")
        logger.info("Reusing existing branch %s", branch)
        return True

    _git(repo_path, "checkout", base_branch)
    _git(repo_path, "pull", "origin", base_branch)
    _git(repo_path, "checkout", "-B", branch)
    logger.info("Created branch %s from %s", branch, base_branch)
    return False


def changed_files(repo_path: str, base_ref: str) -> list[str]:
    result = _git(repo_path, "diff", "--name-only", f"{base_ref}...HEAD", check=False)
    if not result.success:
        return []
    return [line for line in result.stdout.splitlines() if line.strip()]


def commits_ahead(repo_path: str, base_ref: str) -> int:
    """Number of commits on HEAD that base_ref does not have."""
    result = _git(repo_path, "rev-list", "--count", f"{base_ref}..HEAD")
    return int(result.stdout.strip() or 0)


def push(repo_path: str, branch: str) -> None:
    _git(repo_path, "push", "origin", branch)
    logger.info("Pushed %s", branch)


def pull(repo_path: str, branch: str) -> None:
    _git(repo_path, "pull", "origin", branch)


def revert(repo_path: str, commit_sha: str) -> str:
    """Revert a commit on the current branch and return the revert commit SHA.

    Raises:
        GitOperationError: If the revert fails. Any in-progress revert is
            aborted first so the working tree is left clean.
    """
    result = _git(repo_path, "revert", "--no-edit", commit_sha, check=False)
    if not result.success:
        abort = _git(repo_path, "revert", "--abort", check=False)
        if not abort.success:
            logger.debug("No revert in progress to abort")
        raise GitOperationError(f"git revert {commit_sha} failed: {result.stderr.strip()}")
    sha = head_sha(repo_path)
    logger.info("Reverted %s as %s", commit_sha[:8], sha[:8])
    return sha


def find_pr_url(repo_path: str, branch: str) -> Optional[str]:
    """Return the URL of the open pull request for a branch, if any."""
    result = run_command(
        ["gh", "pr", "view", branch, "--json", "url", "-q", ".url"],
        cwd=repo_path,
    )
    url = result.stdout.strip()
    if result.success and url:
        return url
    return None


def create_pr(repo_path: str, branch: str, base_branch: str = "main") -> str:
    """Open a pull request for a branch, or return the one already open."""
    existing = find_pr_url(repo_path, branch)
    if existing:
        logger.info("Pull request already open for %s: %s", branch, existing)
        return existing

    result = run_command(
        ["gh", "pr", "create", "--fill", "--base", base_branch, "--head", branch],
        cwd=repo_path,
    )
    if not result.success:
        raise GitOperationError(f"gh pr create failed: {result.stderr.strip()}")
    url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
    logger.info("Opened pull request %s", url)
    return url
