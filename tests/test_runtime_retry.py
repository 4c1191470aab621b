"""Tests for devflow/runtime/retry.py and devflow/runtime/metrics.py."""

import pytest

from devflow.core.config import RetryConfig
from devflow.core.exceptions import ActivityError, NonRetryableError
from devflow.runtime.metrics import ActivityMetrics
from devflow.runtime.retry import NO_RETRY, RetryPolicy, execute_with_retry


class Flaky:
    """Fails the first `failures` calls, then returns 'ok'."""

    def __init__(self, failures: int, error: Exception = RuntimeError("boom")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    def test_backoff_doubles(self):
        policy = RetryPolicy()
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [5.0, 10.0, 20.0]

    def test_backoff_capped(self):
        assert RetryPolicy().delay_for(10) == 120.0

    def test_non_retryable_classification(self):
        policy = RetryPolicy()
        assert policy.is_retryable(RuntimeError("x"))
        assert not policy.is_retryable(NonRetryableError("x"))

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            RetryConfig(max_attempts=5, initial_interval_seconds=1.0, backoff_coefficient=3.0, maximum_interval_seconds=9.0)
        )
        assert policy.max_attempts == 5
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 3.0, 9.0]


class TestExecuteWithRetry:
    def test_succeeds_on_third_attempt(self):
        sleeps: list[float] = []
        result, attempts = execute_with_retry("build", Flaky(2), (), RetryPolicy(), sleep=sleeps.append)

        assert result == "ok"
        assert attempts == 3
        assert sleeps == [5.0, 10.0]

    def test_exhausted(self):
        sleeps: list[float] = []
        with pytest.raises(ActivityError) as exc_info:
            execute_with_retry("build", Flaky(5), (), RetryPolicy(), sleep=sleeps.append)

        assert exc_info.value.attempts == 3
        assert exc_info.value.activity == "build"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert len(sleeps) == 2

    def test_non_retryable_fails_fast(self):
        sleeps: list[float] = []
        fn = Flaky(5, error=NonRetryableError("bad json"))
        with pytest.raises(ActivityError, match="bad json") as exc_info:
            execute_with_retry("plan", fn, (), RetryPolicy(), sleep=sleeps.append)

        assert exc_info.value.attempts == 1
        assert fn.calls == 1
        assert sleeps == []

    def test_no_retry_policy(self):
        fn = Flaky(1)
        with pytest.raises(ActivityError):
            execute_with_retry("fix", fn, (), NO_RETRY, sleep=lambda s: None)
        assert fn.calls == 1

    def test_args_passed_through(self):
        result, attempts = execute_with_retry("add", lambda a, b: a + b, (2, 3), RetryPolicy())
        assert (result, attempts) == (5, 1)


class TestActivityMetrics:
    def test_records_completion(self):
        metrics = ActivityMetrics()
        metric = metrics.start("wf-1", "verify_build")
        metrics.complete(metric, "success", attempts=2)

        assert metric.succeeded
        assert metric.attempts == 2
        assert metric.duration_seconds >= 0
        assert metric.completed_at is not None

    def test_filters(self):
        metrics = ActivityMetrics()
        metrics.complete(metrics.start("wf-1", "plan_task"), "success")
        metrics.complete(metrics.start("wf-2", "plan_task"), "failed", error="boom")
        metrics.complete(metrics.start("wf-1", "execute_code"), "success")

        assert metrics.count("plan_task") == 2
        assert metrics.count("plan_task", workflow_id="wf-2") == 1
        assert len(metrics.get(workflow_id="wf-1")) == 2
        assert metrics.get(workflow_id="wf-2")[0].error == "boom"
