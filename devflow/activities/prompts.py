"""Role prompts for the generation activities.

System prompts live in config/prompts/<role>.md so they can be tuned per
deployment; the one-line defaults below only apply when a file is missing.
"""

from __future__ import annotations

from typing import Optional

from devflow.core.config import PromptLoader
from devflow.core.models import ImplementationPlan, Task

_FALLBACK_PROMPTS = {
    "planner": "You are a software architect. Return ONLY a JSON implementation plan.",
    "coder": "You are a senior developer. Implement the plan, commit, and return ONLY JSON.",
}


def load_system_prompt(role: str, loader: Optional[PromptLoader] = None) -> str:
    loader = loader or PromptLoader()
    return loader.load(f"{role}.md", default=_FALLBACK_PROMPTS.get(role, ""))


def build_planner_prompt(task: Task) -> str:
    criteria = "\n".join(f"{i}. {c}" for i, c in enumerate(task.acceptance_criteria, 1))
    if task.files_to_modify:
        files = "\n".join(f"- {f}" for f in task.files_to_modify)
    else:
        files = "Not specified - analyze the codebase to determine."

    return (
        "## Task to Plan\n\n"
        f"**ID:** {task.id}\n"
        f"**Title:** {task.title}\n\n"
        f"**Context:**\n{task.context}\n\n"
        f"**Acceptance Criteria:**\n{criteria or 'None given.'}\n\n"
        f"**Files to Consider:**\n{files}\n\n"
        f"**Priority:** {task.priority.value}\n\n"
        "---\n\n"
        "Analyze this task and create a detailed implementation plan. Return ONLY valid JSON."
    )


def build_coder_prompt(plan: ImplementationPlan, branch: str) -> str:
    return (
        "## Implementation Plan\n\n"
        f"**Task ID:** {plan.task_id}\n"
        f"**Branch:** {branch}\n\n"
        f"**Changes to Implement:**\n{plan.summary()}\n\n"
        f"**Verification Plan:**\n{plan.verification_plan}\n\n"
        "---\n\n"
        "Implement ALL the changes described above, then commit them:\n"
        "1. git add .\n"
        f'2. git commit -m "feat({plan.task_id}): implement changes"\n\n'
        "Return ONLY valid JSON with the result."
    )
