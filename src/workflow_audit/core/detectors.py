"""Per-workflow efficiency detectors.

Every detector has the signature ``(workflow, cost_per_unit) -> finding | None``,
reads only its arguments and never raises on malformed step chains; a chain it
cannot make sense of simply produces no finding.
"""

from __future__ import annotations

from typing import Callable

from .types import (
    KIND_ERROR_LOOP,
    KIND_LATE_FILTER,
    KIND_POLLING_TRIGGER,
    EfficiencyFinding,
    Step,
    Workflow,
)
from .utils import guard_nan, split_camel

# Conservative monthly run estimate when no execution history exists: the
# 750-task entry tier divided by ~1.5 steps per run.
FALLBACK_MONTHLY_RUNS = 500
# Share of polling-trigger tasks assumed recoverable by an instant trigger.
POLLING_REDUCTION_RATE = 0.20
# Filter rejection rate assumed when history shows no rejections or is absent.
LATE_FILTER_FALLBACK_RATE = 0.30
ERROR_RATE_THRESHOLD = 10.0
ERROR_RATE_HIGH_SEVERITY = 50.0
ERROR_STREAK_NOTABLE = 3

EFFORT_HOURS = {
    KIND_ERROR_LOOP: 0.5,
    KIND_LATE_FILTER: 1.0,
    KIND_POLLING_TRIGGER: 2.0,
}

POLLING_APPS = (
    "RSS",
    "WordPress",
    "GoogleSheets",
    "GoogleForms",
    "Airtable",
    "Excel",
    "Dropbox",
    "GoogleDrive",
    "OneDrive",
    "MySQL",
    "PostgreSQL",
    "SQLServer",
    "MongoDB",
)

Detector = Callable[[Workflow, float], "EfficiencyFinding | None"]


def compact_app_name(integration: str) -> str:
    """``"GoogleSheetsV2CLIAPI@2.9.1"`` -> ``"GoogleSheetsV2"``."""

    base = integration.split("@", 1)[0]
    while base.endswith("CLIAPI"):
        base = base[: -len("CLIAPI")]
    while base.endswith("API"):
        base = base[: -len("API")]
    return base


def parse_app_name(integration: str) -> str:
    """Human-readable integration name, e.g. ``"WordPressCLIAPI@1.8.0"`` -> ``"WordPress"``."""

    return split_camel(compact_app_name(integration))


def is_polling_integration(integration: str) -> bool:
    compact = compact_app_name(integration)
    return any(app in compact for app in POLLING_APPS)


def entry_step(workflow: Workflow) -> Step | None:
    roots = [step for step in workflow.steps if step.parent_id is None]
    if len(roots) != 1:
        return None
    return roots[0]


def step_chain(workflow: Workflow) -> list[Step]:
    """Steps in execution order, following parent links from the entry step."""

    root = entry_step(workflow)
    if root is None:
        return []
    chain = [root]
    visited = {root.id}
    current = root.id
    while True:
        nxt = next(
            (step for step in workflow.steps if step.parent_id == current and step.id not in visited),
            None,
        )
        if nxt is None:
            return chain
        chain.append(nxt)
        visited.add(nxt.id)
        current = nxt.id


def is_filter_step(step: Step) -> bool:
    if "filter" in step.action.lower():
        return True
    return bool(step.title and "filter" in step.title.lower())


def _has_runs(workflow: Workflow) -> bool:
    return workflow.usage is not None and workflow.usage.total_runs > 0


def detect_polling_trigger(workflow: Workflow, cost_per_unit: float) -> EfficiencyFinding | None:
    trigger = entry_step(workflow)
    if trigger is None or not trigger.is_read:
        return None
    if not is_polling_integration(trigger.integration):
        return None

    app_name = parse_app_name(trigger.integration)
    steps = workflow.step_count
    pct = int(round(POLLING_REDUCTION_RATE * 100))
    if _has_runs(workflow):
        runs = workflow.usage.total_runs
        wasted_tasks = guard_nan(runs * steps * POLLING_REDUCTION_RATE)
        explanation = (
            f"Estimated: {runs} runs x {steps} steps x {pct}% polling overhead = "
            f"{wasted_tasks:.0f} wasted tasks"
        )
        has_execution_data = True
    else:
        runs = FALLBACK_MONTHLY_RUNS
        wasted_tasks = guard_nan(runs * steps * POLLING_REDUCTION_RATE)
        explanation = (
            f"Estimated: ~{runs} monthly runs x {steps} steps x {pct}% polling overhead "
            "(conservative, no execution data)"
        )
        has_execution_data = False
    savings = guard_nan(wasted_tasks * cost_per_unit)

    return EfficiencyFinding(
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        kind=KIND_POLLING_TRIGGER,
        severity="medium",
        # Polling overhead cannot be measured, only estimated.
        confidence="medium" if has_execution_data else "low",
        estimated_monthly_savings_usd=savings,
        is_fallback=not has_execution_data,
        message=f"Uses polling trigger: {app_name}",
        details=(
            f"This workflow uses '{app_name}' which relies on polling. It checks for new data "
            "at regular intervals, consuming tasks even when no new data is available. Consider "
            "whether a webhook-based trigger could be used instead for real-time processing and "
            "reduced task consumption."
        ),
        savings_explanation=explanation,
        estimated_effort_hours=EFFORT_HOURS[KIND_POLLING_TRIGGER],
        meta={
            "trigger_app": app_name,
            "integration": trigger.integration,
            "monthly_runs": runs,
            "steps": steps,
            "reduction_rate": POLLING_REDUCTION_RATE,
        },
    )


def _late_filter_savings(
    workflow: Workflow, actions_before_filter: int, cost_per_unit: float
) -> tuple[float, str, bool, float | None, int]:
    usage = workflow.usage
    if usage is not None and usage.total_runs > 0:
        runs = usage.total_runs
        if usage.success_count < runs:
            rejection_rate = guard_nan((runs - usage.success_count) / runs)
        else:
            rejection_rate = LATE_FILTER_FALLBACK_RATE
        wasted_tasks = guard_nan(runs * actions_before_filter * rejection_rate)
        savings = guard_nan(wasted_tasks * cost_per_unit)
        explanation = (
            f"Based on ${cost_per_unit:.4f} per task, {actions_before_filter} actions before filter, "
            f"and {rejection_rate * 100:.0f}% filter rejection rate from {runs} executions"
        )
        return savings, explanation, False, rejection_rate, runs
    if usage is not None:
        return 0.0, "Insufficient execution data for savings calculation", True, None, 0

    runs = FALLBACK_MONTHLY_RUNS
    rejection_rate = LATE_FILTER_FALLBACK_RATE
    wasted_tasks = guard_nan(runs * actions_before_filter * rejection_rate)
    savings = guard_nan(wasted_tasks * cost_per_unit)
    explanation = (
        f"Estimated: ~{runs} monthly runs, {actions_before_filter} actions before filter, "
        f"{int(round(rejection_rate * 100))}% rejection rate (conservative estimate, no execution data)"
    )
    return savings, explanation, True, rejection_rate, runs


def detect_late_filter_placement(workflow: Workflow, cost_per_unit: float) -> EfficiencyFinding | None:
    chain = step_chain(workflow)
    for index, step in enumerate(chain):
        if not is_filter_step(step) or index <= 1:
            continue
        actions_before_filter = sum(1 for prior in chain[1:index] if prior.is_write)
        if actions_before_filter == 0:
            continue

        savings, explanation, is_fallback, rejection_rate, runs = _late_filter_savings(
            workflow, actions_before_filter, cost_per_unit
        )
        if not is_fallback and savings > 0:
            confidence = "high"
        elif savings == 0:
            confidence = "low"
        else:
            confidence = "medium"

        position = index + 1
        return EfficiencyFinding(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            kind=KIND_LATE_FILTER,
            severity="high",
            confidence=confidence,
            estimated_monthly_savings_usd=savings,
            is_fallback=is_fallback,
            message="Filter is placed too late in the workflow",
            details=(
                f"This workflow has a filter at position {position} with {actions_before_filter} "
                "action step(s) before it. Moving the filter right after the trigger stops those "
                "actions from running for items that do not pass the filter criteria."
            ),
            savings_explanation=explanation,
            estimated_effort_hours=EFFORT_HOURS[KIND_LATE_FILTER],
            meta={
                "filter_position": position,
                "actions_before_filter": actions_before_filter,
                "rejection_rate": rejection_rate,
                "monthly_runs": runs,
            },
        )
    return None


_TREND_NOTES = {
    "increasing": "Error rate is INCREASING over time, indicating a worsening issue.",
    "decreasing": "Error rate is decreasing, showing signs of improvement.",
    "stable": "Error rate has remained stable.",
}


def detect_error_loop(workflow: Workflow, cost_per_unit: float) -> EfficiencyFinding | None:
    usage = workflow.usage
    if usage is None or usage.total_runs <= 0 or usage.error_rate <= ERROR_RATE_THRESHOLD:
        return None

    parts = [
        f"This workflow has experienced {usage.error_count} errors out of {usage.total_runs} "
        f"total runs ({usage.error_rate:.1f}% error rate)."
    ]
    if usage.error_trend in _TREND_NOTES:
        parts.append(_TREND_NOTES[usage.error_trend])
    if usage.max_streak > ERROR_STREAK_NOTABLE:
        parts.append(
            f"Critical: maximum consecutive failure streak of {usage.max_streak} executions detected."
        )
    if usage.most_common_error:
        parts.append(f"Most common error: '{usage.most_common_error}'.")
    parts.append(
        "High error rates indicate configuration issues, authentication problems, or "
        "incompatible data formats. Fix the underlying issue to stop wasting tasks on failed runs."
    )

    # A failed run still bills every step it reached; assume all of them.
    steps = workflow.step_count
    wasted_tasks = usage.error_count * steps
    savings = guard_nan(wasted_tasks * cost_per_unit)

    return EfficiencyFinding(
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        kind=KIND_ERROR_LOOP,
        severity="high" if usage.error_rate > ERROR_RATE_HIGH_SEVERITY else "medium",
        confidence="high",
        estimated_monthly_savings_usd=savings,
        is_fallback=False,
        message=f"High error rate detected: {usage.error_rate:.1f}%",
        details=" ".join(parts),
        savings_explanation=(
            f"Based on ${cost_per_unit:.4f} per task, {usage.error_count} failed runs x "
            f"{steps} steps = {wasted_tasks} wasted tasks"
        ),
        estimated_effort_hours=EFFORT_HOURS[KIND_ERROR_LOOP],
        meta={
            "error_rate": usage.error_rate,
            "most_common_error": usage.most_common_error,
            "error_trend": usage.error_trend,
            "max_streak": usage.max_streak,
        },
    )


DETECTORS: tuple[tuple[str, Detector], ...] = (
    (KIND_POLLING_TRIGGER, detect_polling_trigger),
    (KIND_LATE_FILTER, detect_late_filter_placement),
    (KIND_ERROR_LOOP, detect_error_loop),
)


def run_detectors(workflow: Workflow, cost_per_unit: float) -> list[EfficiencyFinding]:
    findings: list[EfficiencyFinding] = []
    for _kind, detector in DETECTORS:
        finding = detector(workflow, cost_per_unit)
        if finding is not None:
            findings.append(finding)
    return findings
