"""Orchestrator: the develop-feature workflow and its notifications."""

from devflow.orchestrator.workflow import (
    APPROVAL_SIGNAL,
    CANCEL_SIGNAL,
    VALID_TRANSITIONS,
    DevelopFeatureWorkflow,
    WorkflowPolicy,
)

__all__ = [
    "APPROVAL_SIGNAL",
    "CANCEL_SIGNAL",
    "VALID_TRANSITIONS",
    "DevelopFeatureWorkflow",
    "WorkflowPolicy",
]
