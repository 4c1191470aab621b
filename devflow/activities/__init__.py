"""Activities: the side-effecting steps the orchestrator delegates to."""

from devflow.activities.contracts import ACTIVITY_NAMES, Activities
from devflow.activities.default import DefaultActivities

__all__ = ["ACTIVITY_NAMES", "Activities", "DefaultActivities"]
