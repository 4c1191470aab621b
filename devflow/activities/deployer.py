"""Deployer activity: pull, install, build and test the project checkout.

verify_build never raises. Anything that goes wrong is reported as a failed
VerificationResult with the reason in its logs, so the workflow decides what
a failure means.
"""

from __future__ import annotations

import logging
import time

from devflow.core.config import ProjectConfig
from devflow.core.models import VerificationResult
from devflow.tools import git_ops
from devflow.tools.shell import run_command

logger = logging.getLogger("devflow.activities.deployer")

LOG_EXCERPT_CHARS = 2000


class DeployerActivity:
    """Build/test verification against the configured project.

    Injected dependencies:
        project: Project directory and build/test/install commands.
    """

    def __init__(self, project: ProjectConfig):
        self.project = project

    def verify_build(self, pr_url: str) -> VerificationResult:
        started = time.monotonic()
        repo = self.project.project_dir
        timeout = self.project.command_timeout_seconds
        logs: list[str] = []
        logger.info("Verifying %s", pr_url)

        try:
            git_ops.pull(repo, git_ops.current_branch(repo))
            logs.append("Pulled latest changes")

            if self.project.install_command:
                install = run_command(self.project.install_command, cwd=repo, timeout=timeout)
                logs.append(
                    "Dependencies installed" if install.success
                    else f"Dependency install failed (rc={install.return_code})"
                )

            build_success = True
            if self.project.build_command:
                build = run_command(self.project.build_command, cwd=repo, timeout=timeout)
                build_success = build.success
                logs.append(
                    "Build succeeded" if build_success
                    else f"Build failed: {build.output[-LOG_EXCERPT_CHARS:]}"
                )

            tests_passed = True
            if self.project.test_command:
                tests = run_command(self.project.test_command, cwd=repo, timeout=timeout)
                tests_passed = tests.success
                logs.append(
                    "Tests passed" if tests_passed
                    else f"Tests failed: {tests.output[-LOG_EXCERPT_CHARS:]}"
                )
        except Exception as e:
            logger.warning("Verification of %s aborted: %s", pr_url, e)
            logs.append(f"Error: {e}")
            return VerificationResult(build_success=False, tests_passed=False, logs="\n".join(logs))

        result = VerificationResult(
            build_success=build_success,
            tests_passed=tests_passed,
            deployed_to=None,
            logs="\n".join(logs),
        )
        logger.info(
            "Verification of %s: build=%s tests=%s (%.1fs)",
            pr_url, build_success, tests_passed, time.monotonic() - started,
        )
        return result
