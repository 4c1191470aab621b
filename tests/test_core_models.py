"""Tests for devflow/core/models.py."""

import pytest
from pydantic import ValidationError

from devflow.core.models import (
    ApprovalStatus,
    EventKind,
    FileAction,
    FileChange,
    HistoryEvent,
    ImplementationPlan,
    OrchestrationState,
    Task,
    TaskPriority,
    VerificationResult,
    WorkflowInput,
    WorkflowOutput,
    WorkflowPhase,
    WorkflowStatus,
)


class TestTask:
    def test_defaults(self):
        task = Task(id="t-1", title="Add endpoint")

        assert task.priority == TaskPriority.MEDIUM
        assert task.acceptance_criteria == []
        assert task.created_at.tzinfo is not None

    def test_frozen(self):
        task = Task(id="t-1", title="Add endpoint")
        with pytest.raises(ValidationError):
            task.title = "changed"

    def test_json_round_trip(self, sample_task):
        assert Task.model_validate_json(sample_task.model_dump_json()) == sample_task


class TestPlan:
    def test_summary(self):
        plan = ImplementationPlan(
            task_id="t-1",
            proposed_changes=[
                FileChange(path="a.py", action=FileAction.CREATE, description="new"),
                FileChange(path="b.py", action="delete"),
            ],
        )
        assert plan.summary() == "- CREATE a.py: new\n- DELETE b.py: "

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            FileChange(path="a.py", action="rename")


class TestVerificationResult:
    @pytest.mark.parametrize(
        "build, tests, passed",
        [(True, True, True), (True, False, False), (False, True, False)],
    )
    def test_passed(self, build, tests, passed):
        assert VerificationResult(build_success=build, tests_passed=tests).passed is passed


class TestOrchestrationState:
    def test_initial(self):
        state = OrchestrationState()

        assert state.phase == WorkflowPhase.PLANNING
        assert state.approval_status == ApprovalStatus.PENDING
        assert state.retry_count == 0
        assert not state.cancel_requested
        assert not state.is_terminal

    @pytest.mark.parametrize("phase", [WorkflowPhase.COMPLETE, WorkflowPhase.FAILED, WorkflowPhase.CANCELLED])
    def test_terminal_phases(self, phase):
        assert OrchestrationState(phase=phase).is_terminal

    def test_serializes_with_enum_values(self):
        data = OrchestrationState(phase=WorkflowPhase.DEPLOYING).model_dump(mode="json")
        assert data["phase"] == "deploying"
        assert data["approval_status"] == "pending"


class TestWorkflowIO:
    def test_input_defaults(self, sample_task):
        workflow_input = WorkflowInput(task=sample_task)

        assert workflow_input.skip_approval is True
        assert workflow_input.notify_on_complete is True
        assert workflow_input.is_fix_task is False
        assert workflow_input.original_task_id is None

    def test_output_status_values(self):
        assert WorkflowOutput(status=WorkflowStatus.FIX_TASK_CREATED).model_dump(mode="json")["status"] == "fix_task_created"


class TestHistoryEvent:
    def test_round_trip(self):
        event = HistoryEvent(seq=3, kind=EventKind.SIGNAL, name="approval", payload={"args": [True, None]})
        restored = HistoryEvent.model_validate_json(event.model_dump_json())

        assert restored == event
        assert restored.kind is EventKind.SIGNAL
