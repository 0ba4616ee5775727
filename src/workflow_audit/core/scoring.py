from __future__ import annotations

from collections import Counter
from typing import Any, Iterable

from .detectors import parse_app_name
from .types import KIND_ERROR_LOOP, KIND_LATE_FILTER, KIND_POLLING_TRIGGER, EfficiencyFinding, Workflow
from .utils import guard_nan

MAX_SCORE = 100
SCORE_PENALTIES = {
    (KIND_POLLING_TRIGGER, "medium"): 10,
    (KIND_LATE_FILTER, "high"): 25,
    (KIND_ERROR_LOOP, "high"): 30,
    (KIND_ERROR_LOOP, "medium"): 20,
}


def efficiency_score(findings: Iterable[EfficiencyFinding]) -> int:
    """0-100, starting from 100 and docked per finding; unlisted combinations cost nothing."""

    score = MAX_SCORE
    for finding in findings:
        score -= SCORE_PENALTIES.get((finding.kind, finding.severity), 0)
    return max(0, score)


def total_savings(findings: Iterable[EfficiencyFinding]) -> float:
    return guard_nan(sum(finding.estimated_monthly_savings_usd for finding in findings))


def app_inventory(workflows: Iterable[Workflow]) -> list[dict[str, Any]]:
    counts: Counter[str] = Counter()
    for workflow in workflows:
        for step in workflow.steps:
            if step.integration:
                counts[step.integration] += 1
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        {"name": parse_app_name(raw), "raw_api": raw, "count": count}
        for raw, count in ordered
    ]
