from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .detectors import entry_step, parse_app_name
from .types import (
    CONFIDENCE_LEVELS,
    KIND_POLLING_TRIGGER,
    EfficiencyFinding,
    PricingResolution,
    Workflow,
)
from .utils import guard_nan, safe_ratio

DOWNGRADE_USAGE_RATIO = 0.70
PREMIUM_FEATURES = ("paths", "filters", "webhooks", "custom_logic")
_CUSTOM_LOGIC_TOKENS = ("code", "python", "javascript")


def is_zombie(workflow: Workflow) -> bool:
    return workflow.enabled and workflow.monthly_tasks == 0


def _all_findings(findings_by_workflow: Mapping[int, Sequence[EfficiencyFinding]]) -> list[EfficiencyFinding]:
    out: list[EfficiencyFinding] = []
    for findings in findings_by_workflow.values():
        out.extend(findings)
    return out


def global_metrics(
    workflows: Sequence[Workflow],
    findings_by_workflow: Mapping[int, Sequence[EfficiencyFinding]],
    pricing: PricingResolution,
) -> dict[str, Any]:
    findings = _all_findings(findings_by_workflow)
    waste_usd = guard_nan(sum(item.estimated_monthly_savings_usd for item in findings))
    return {
        "total_workflows": len(workflows),
        "active_workflows": sum(1 for workflow in workflows if workflow.enabled),
        "zombie_workflows": sum(1 for workflow in workflows if is_zombie(workflow)),
        "total_monthly_tasks": sum(workflow.monthly_tasks for workflow in workflows),
        "estimated_monthly_waste_tasks": int(round(safe_ratio(waste_usd, pricing.cost_per_unit))),
        "estimated_monthly_waste_usd": waste_usd,
        "estimated_annual_waste_usd": waste_usd * 12,
        "total_findings": len(findings),
        "high_severity_findings": sum(1 for item in findings if item.severity == "high"),
    }


def confidence_overview(
    workflows: Sequence[Workflow],
    findings_by_workflow: Mapping[int, Sequence[EfficiencyFinding]],
    has_history: bool,
) -> dict[str, int]:
    """Distribution of confidence tiers over workflows and findings together.

    A workflow counts as ``high`` when any execution log backed the analysis
    and ``medium`` otherwise; each finding adds its own tier on top.
    """

    counts = {level: 0 for level in CONFIDENCE_LEVELS}
    counts["high" if has_history else "medium"] += len(workflows)
    for finding in _all_findings(findings_by_workflow):
        counts[finding.confidence] = counts.get(finding.confidence, 0) + 1
    return counts


def premium_features(workflows: Iterable[Workflow]) -> dict[str, bool]:
    flags = {name: False for name in PREMIUM_FEATURES}
    for workflow in workflows:
        for step in workflow.steps:
            action = step.action.lower()
            integration = step.integration.lower()
            if "path" in action or "path" in integration:
                flags["paths"] = True
            if "filter" in action:
                flags["filters"] = True
            if "webhook" in action or "webhook" in integration:
                flags["webhooks"] = True
            if any(token in integration for token in _CUSTOM_LOGIC_TOKENS):
                flags["custom_logic"] = True
    return flags


def plan_analysis(workflows: Sequence[Workflow], pricing: PricingResolution) -> dict[str, Any]:
    features = premium_features(workflows)
    utilization = safe_ratio(pricing.actual_usage, pricing.tier_capacity)
    return {
        "plan": pricing.plan,
        "current_usage": pricing.actual_usage,
        "tier_capacity": pricing.tier_capacity,
        "tier_price_usd": pricing.tier_price,
        "usage_ratio": utilization,
        "premium_features": features,
        "premium_features_detected": [name for name in PREMIUM_FEATURES if features[name]],
        # Branching cannot be rebuilt on a lower plan.
        "downgrade_safe": utilization < DOWNGRADE_USAGE_RATIO and not features["paths"],
    }


def trigger_app(workflow: Workflow) -> str:
    step = entry_step(workflow)
    if step is None or not step.is_read:
        return "Unknown"
    return parse_app_name(step.integration)


def workflow_summary(workflow: Workflow) -> dict[str, Any]:
    usage = workflow.usage
    if usage is not None:
        error_rate = usage.error_rate if usage.total_runs > 0 else None
        total_runs = usage.total_runs
        last_run = usage.last_run
    else:
        error_rate = None
        total_runs = 0
        last_run = None
    return {
        "id": str(workflow.id),
        "source_id": workflow.source_id,
        "title": workflow.name,
        "status": workflow.status,
        "step_count": workflow.step_count,
        "trigger_app": trigger_app(workflow),
        "last_run": last_run,
        "error_rate": error_rate,
        "total_runs": total_runs,
    }


def system_metrics(
    workflows: Sequence[Workflow],
    findings_by_workflow: Mapping[int, Sequence[EfficiencyFinding]],
) -> dict[str, Any]:
    total_steps = sum(workflow.step_count for workflow in workflows)
    polling = sum(
        1
        for workflow in workflows
        if any(item.kind == KIND_POLLING_TRIGGER for item in findings_by_workflow.get(workflow.id, ()))
    )
    total_runs = sum(workflow.usage.total_runs for workflow in workflows if workflow.usage is not None)
    total_tasks = sum(workflow.monthly_tasks for workflow in workflows)
    return {
        "avg_steps_per_workflow": safe_ratio(total_steps, len(workflows)),
        "avg_tasks_per_run": safe_ratio(total_tasks, total_runs),
        "polling_trigger_count": polling,
        "instant_trigger_count": len(workflows) - polling,
        "total_monthly_tasks": total_tasks,
    }
