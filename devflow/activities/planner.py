"""Planner activity: turns a task into an ImplementationPlan via the planner cascade."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from pydantic import ValidationError

from devflow.activities.prompts import build_planner_prompt, load_system_prompt
from devflow.core.config import PromptLoader
from devflow.core.exceptions import NonRetryableError, ResponseParseError
from devflow.core.models import FileChange, ImplementationPlan, Task
from devflow.llm.cascade import CascadeInvoker
from devflow.llm.response_parser import parse_json_response

logger = logging.getLogger("devflow.activities.planner")

ROLE = "planner"


class PlannerActivity:
    """Plans a task with the planner model cascade.

    Injected dependencies:
        cascade: Cascade invoker used for generation.
        project_dir: Working directory handed to CLI backends.
        prompt_loader: Source of the planner system prompt.
    """

    def __init__(
        self,
        cascade: CascadeInvoker,
        project_dir: Optional[str] = None,
        prompt_loader: Optional[PromptLoader] = None,
    ):
        self.cascade = cascade
        self.project_dir = project_dir
        self.prompt_loader = prompt_loader

    def plan_task(self, task: Task) -> ImplementationPlan:
        """Plan a task.

        Raises:
            CascadeExhaustedError: Every planner backend failed (retryable).
            NonRetryableError: The model answered but no plan could be parsed.
        """
        started = time.monotonic()
        logger.info("Planning task %s: %s", task.id, task.title)

        response = self.cascade.invoke(
            build_planner_prompt(task),
            role=ROLE,
            cwd=self.project_dir,
            system_prompt=load_system_prompt(ROLE, self.prompt_loader),
        )

        try:
            plan = plan_from_response(task.id, response)
        except (ResponseParseError, ValidationError) as e:
            logger.error("Planner output for %s unusable: %s", task.id, e)
            raise NonRetryableError(f"Failed to parse JSON from planner response: {e}") from e

        logger.info(
            "Planned %s: %d change(s) in %.1fs",
            task.id, len(plan.proposed_changes), time.monotonic() - started,
        )
        return plan


def plan_from_response(task_id: str, response: str) -> ImplementationPlan:
    """Build a plan from raw planner output.

    Accepts camelCase or snake_case keys. The task ID always comes from the
    task, never from the model.
    """
    data = parse_json_response(response, source="planner")
    raw_changes = _first(data, "proposedChanges", "proposed_changes") or []
    if not isinstance(raw_changes, list):
        raise ResponseParseError("proposedChanges is not a list")

    changes = [
        FileChange(
            path=c["path"],
            action=str(c.get("action", "modify")).lower(),
            description=c.get("description", ""),
        )
        for c in raw_changes
        if isinstance(c, dict) and c.get("path")
    ]
    return ImplementationPlan(
        task_id=task_id,
        proposed_changes=changes,
        verification_plan=_first(data, "verificationPlan", "verification_plan") or "",
        estimated_effort=_first(data, "estimatedEffort", "estimated_effort") or "",
        dependencies=data.get("dependencies") or [],
    )


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None
