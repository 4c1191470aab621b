"""Shared fixtures for devflow tests.

Orchestration tests run the real workflow on the real in-process engine;
only the side-effecting activities are replaced by a scripted implementation
that records every call. Tests requiring PostgreSQL are skipped when it is
unavailable.
"""

from __future__ import annotations

import os
import threading
from collections import defaultdict
from pathlib import Path
from typing import Callable, Optional

import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL is available
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from devflow.activities.contracts import Activities
from devflow.core.config import AppConfig, DatabaseConfig, load_config
from devflow.core.models import (
    FileAction,
    FileChange,
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
    WorkflowInput,
)
from devflow.orchestrator.workflow import DevelopFeatureWorkflow, WorkflowPolicy
from devflow.runtime.engine import LocalWorkflowEngine
from devflow.runtime.history import InMemoryHistoryStore
from devflow.runtime.retry import RetryPolicy

FAST_RETRY = RetryPolicy(initial_interval=0.0, maximum_interval=0.0)
FAST_POLICY = WorkflowPolicy(verification_cooldown_seconds=0.0, approval_timeout_seconds=5.0)
RESULT_TIMEOUT = 10.0


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from environment or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "devflow"),
            user=parsed.username or "devflow",
            password=parsed.password or "devflow",
        )
    return DatabaseConfig()


def _postgres_available() -> bool:
    """Check if PostgreSQL is reachable."""
    try:
        import psycopg
        conn = psycopg.connect(_get_db_config().connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available",
)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_engine():
    """Real PostgreSQL engine: creates schema, yields, cleans up."""
    from devflow.db.engine import DatabaseEngine
    engine = DatabaseEngine(_get_db_config())
    engine.initialize_schema()
    yield engine
    engine.close()


@pytest.fixture
def repository(db_engine):
    from devflow.db.repository import Repository
    return Repository(db_engine)


# ---------------------------------------------------------------------------
# Scripted activities
# ---------------------------------------------------------------------------

class SimulatedCrash(BaseException):
    """Stands in for the worker process dying mid-activity."""


class ScriptedActivities(Activities):
    """Activities that return canned results and record every call.

    Options:
        plan_error: Raised by plan_task on every attempt.
        verifications: Results handed out by verify_build in order; the
            last one repeats.
        loop_depth: Chain depth reported by check_fix_task_loop.
        notify_error: Raised by send_notification on every attempt.
        crash_on: Activity name that raises SimulatedCrash on its first call.
        gate: Activity name that blocks until `release` is set, after
            setting `entered`.
    """

    def __init__(
        self,
        plan_error: Optional[Exception] = None,
        verifications: Optional[list[VerificationResult]] = None,
        loop_depth: int = 0,
        notify_error: Optional[Exception] = None,
        crash_on: Optional[str] = None,
        gate: Optional[str] = None,
        pr_url: str = "https://github.com/acme/app/pull/7",
        commit_sha: str = "abc1234def",
    ):
        self.plan_error = plan_error
        self.verifications = list(verifications or [VerificationResult(build_success=True, tests_passed=True)])
        self.loop_depth = loop_depth
        self.notify_error = notify_error
        self.crash_on = crash_on
        self.gate = gate
        self.pr_url = pr_url
        self.commit_sha = commit_sha
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls: dict[str, list] = defaultdict(list)
        self._lock = threading.Lock()

    def _enter(self, name: str, arg) -> None:
        with self._lock:
            self.calls[name].append(arg)
        if self.crash_on == name:
            self.crash_on = None
            raise SimulatedCrash(name)
        if self.gate == name:
            self.entered.set()
            assert self.release.wait(RESULT_TIMEOUT), f"{name} gate never released"

    def count(self, name: str) -> int:
        with self._lock:
            return len(self.calls[name])

    def plan_task(self, task: Task) -> ImplementationPlan:
        self._enter("plan_task", task)
        if self.plan_error is not None:
            raise self.plan_error
        return ImplementationPlan(
            task_id=task.id,
            proposed_changes=[
                FileChange(path="src/api/health.py", action=FileAction.CREATE, description="Health endpoint"),
            ],
            verification_plan="Run the test suite",
            estimated_effort="1 hour",
        )

    def execute_code(self, plan: ImplementationPlan) -> ImplementationResult:
        self._enter("execute_code", plan)
        return ImplementationResult(
            pr_url=self.pr_url,
            files_changed=["src/api/health.py"],
            commit_sha=self.commit_sha,
        )

    def verify_build(self, pr_url: str) -> VerificationResult:
        self._enter("verify_build", pr_url)
        with self._lock:
            if len(self.verifications) > 1:
                return self.verifications.pop(0)
            return self.verifications[0]

    def send_notification(self, notification: Notification) -> None:
        self._enter("send_notification", notification)
        if self.notify_error is not None:
            raise self.notify_error

    def rollback_commit(self, request: RollbackRequest) -> RollbackResult:
        self._enter("rollback_commit", request)
        return RollbackResult(success=True, revert_commit_sha="rev5678")

    def create_fix_task(self, request: FixTaskRequest) -> FixTaskResult:
        self._enter("create_fix_task", request)
        depth = self.count("create_fix_task")
        return FixTaskResult(fix_task_id=f"fix-{request.original_task_id}-{depth}", chain_depth=depth)

    def check_fix_task_loop(self, original_task_id: str) -> LoopCheckResult:
        self._enter("check_fix_task_loop", original_task_id)
        return LoopCheckResult(is_loop=self.loop_depth >= 2, chain_depth=self.loop_depth)


FAILED_BUILD = VerificationResult(build_success=False, tests_passed=False, logs="Build failed: SyntaxError")
PASSED_BUILD = VerificationResult(build_success=True, tests_passed=True, logs="Tests passed")


def make_engine(
    activities: Activities,
    policy: WorkflowPolicy = FAST_POLICY,
    store: Optional[InMemoryHistoryStore] = None,
    workflow_factory: Optional[Callable] = None,
) -> LocalWorkflowEngine:
    return LocalWorkflowEngine(
        workflow_factory=workflow_factory or (lambda: DevelopFeatureWorkflow(policy)),
        activities=activities.as_mapping(),
        store=store or InMemoryHistoryStore(),
        retry_policy=FAST_RETRY,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def sample_task() -> Task:
    return Task(
        id="task-1",
        title="Add health endpoint",
        context="Expose GET /health returning 200",
        acceptance_criteria=["GET /health returns 200", "Covered by a test"],
        files_to_modify=["src/api/health.py"],
    )


@pytest.fixture
def workflow_input(sample_task: Task) -> WorkflowInput:
    return WorkflowInput(task=sample_task)


# ---------------------------------------------------------------------------
# Git fixtures
# ---------------------------------------------------------------------------

def git(path, *args) -> str:
    from devflow.tools.shell import run_command
    result = run_command(["git", *args], cwd=str(path))
    assert result.success, result.stderr
    return result.stdout.strip()


def configure_git_identity(path) -> None:
    git(path, "config", "user.email", "test@test.com")
    git(path, "config", "user.name", "Test")


def commit_file(path, name: str, content: str, message: str) -> str:
    (path / name).write_text(content)
    git(path, "add", "-A")
    git(path, "commit", "-m", message)
    return git(path, "rev-parse", "HEAD")


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """Working clone with an origin remote whose main has one commit."""
    origin = tmp_path / "origin.git"
    work = tmp_path / "work"
    origin.mkdir()
    work.mkdir()
    git(origin, "init", "--bare", "-b", "main")
    git(work, "init", "-b", "main")
    configure_git_identity(work)
    commit_file(work, "README.md", "hello\n", "initial commit")
    git(work, "remote", "add", "origin", str(origin))
    git(work, "push", "origin", "main")
    return work
