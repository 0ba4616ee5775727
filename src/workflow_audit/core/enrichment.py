from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Mapping

from .types import UsageStats, Workflow


def enrich_workflows(
    workflows: Iterable[Workflow], usage: Mapping[int, UsageStats]
) -> tuple[Workflow, ...]:
    """Return copies of `workflows` carrying their usage statistics, if any."""

    out: list[Workflow] = []
    for workflow in workflows:
        stats = usage.get(workflow.id)
        out.append(replace(workflow, usage=stats) if stats is not None else workflow)
    return tuple(out)


def has_execution_history(workflows: Iterable[Workflow]) -> bool:
    return any(workflow.usage is not None and workflow.usage.has_history for workflow in workflows)
