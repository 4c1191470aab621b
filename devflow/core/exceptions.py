"""Custom exception hierarchy for devflow.

All exceptions inherit from DevflowError so callers can catch broadly
or narrowly as needed.
"""

from __future__ import annotations

from typing import Optional


class DevflowError(Exception):
    """Base exception for all devflow errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(DevflowError):
    """Invalid or missing configuration."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class DatabaseError(DevflowError):
    """Failed database operation."""


class SchemaInitError(DatabaseError):
    """Failed to initialize database schema."""


class ConnectionError(DatabaseError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

class LLMError(DevflowError):
    """Failed LLM operation."""


class RateLimitError(LLMError):
    """Hit API rate limit."""


class AuthenticationError(LLMError):
    """Invalid API key or unauthorized."""


class ModelNotFoundError(LLMError):
    """Requested model not available."""


class ResponseParseError(LLMError):
    """Failed to parse LLM response."""


class CascadeExhaustedError(LLMError):
    """Every backend in a role's cascade failed."""

    def __init__(self, role: str, failures: list[str]):
        self.role = role
        self.failures = failures
        detail = "\n".join(failures) if failures else "no backends attempted"
        super().__init__(f"All models in cascade exhausted for role: {role}\n{detail}")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolError(DevflowError):
    """Tool execution failure."""


class ShellTimeoutError(ToolError):
    """Shell command exceeded timeout."""


class GitOperationError(ToolError):
    """Git operation failed."""


class NoChangesError(ToolError):
    """Code generation finished without committing anything to the task branch."""


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------

class NonRetryableError(DevflowError):
    """Activity failure the execution engine must not retry."""


class ActivityError(DevflowError):
    """Activity failed after its retry policy was exhausted."""

    def __init__(self, activity: str, attempts: int, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.activity = activity
        self.attempts = attempts
        self.cause = cause
        if message is None:
            message = str(cause) if cause is not None else f"Activity {activity} failed"
        super().__init__(message)


class ChainTrackerError(DevflowError):
    """Fix-task chain store failure."""


class NotificationError(DevflowError):
    """Notification delivery failed."""


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

class WorkflowError(DevflowError):
    """Workflow engine failure."""


class NonDeterminismError(WorkflowError):
    """Replayed history does not match the commands the workflow issued."""

    def __init__(self, seq: int, expected: str, actual: str):
        self.seq = seq
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"History mismatch at event {seq}: recorded {expected}, workflow issued {actual}"
        )


class WorkflowNotFoundError(WorkflowError):
    """No workflow with the requested ID is known to the engine."""
