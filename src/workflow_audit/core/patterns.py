from __future__ import annotations

from typing import Iterable

from .types import (
    KIND_ERROR_LOOP,
    KIND_LATE_FILTER,
    KIND_POLLING_TRIGGER,
    EfficiencyFinding,
    PatternFinding,
)
from .utils import guard_nan, safe_ratio

MIN_AFFECTED = 3
MEDIUM_SEVERITY_AT = 5
HIGH_SEVERITY_AT = 8

PATTERN_NAMES = {
    KIND_POLLING_TRIGGER: "Polling Trigger Overuse",
    KIND_LATE_FILTER: "Late Filter Placement",
    KIND_ERROR_LOOP: "Widespread Error Loops",
}

REFACTOR_GUIDANCE = {
    KIND_POLLING_TRIGGER: "Switch to instant webhook triggers where possible to reduce polling overhead",
    KIND_LATE_FILTER: "Move filters immediately after trigger to reduce wasted tasks on filtered items",
    KIND_ERROR_LOOP: "Review authentication, fix configuration issues, and add proper error handling",
}


def pattern_severity(affected_count: int) -> str:
    if affected_count >= HIGH_SEVERITY_AT:
        return "high"
    if affected_count >= MEDIUM_SEVERITY_AT:
        return "medium"
    return "low"


def detect_patterns(findings: Iterable[EfficiencyFinding], cost_per_unit: float) -> list[PatternFinding]:
    """Group findings by kind and promote kinds shared by enough workflows to patterns."""

    groups: dict[str, list[EfficiencyFinding]] = {}
    for finding in findings:
        groups.setdefault(finding.kind, []).append(finding)

    patterns: list[PatternFinding] = []
    for kind, members in groups.items():
        affected: list[int] = []
        for finding in members:
            if finding.workflow_id not in affected:
                affected.append(finding.workflow_id)
        if len(affected) < MIN_AFFECTED:
            continue
        waste_usd = guard_nan(sum(finding.estimated_monthly_savings_usd for finding in members))
        patterns.append(
            PatternFinding(
                kind=kind,
                name=PATTERN_NAMES.get(kind, kind),
                affected_workflow_ids=tuple(affected),
                total_waste_tasks=int(round(safe_ratio(waste_usd, cost_per_unit))),
                total_waste_usd=waste_usd,
                severity=pattern_severity(len(affected)),
                refactor_guidance=REFACTOR_GUIDANCE.get(kind, ""),
            )
        )
    patterns.sort(key=lambda item: item.affected_count * item.total_waste_usd, reverse=True)
    return patterns
