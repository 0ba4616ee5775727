from __future__ import annotations

from typing import Any, Iterable

from .types import EfficiencyFinding

DEFAULT_TOP_N = 10


def rank_opportunities(
    findings: Iterable[EfficiencyFinding], limit: int = DEFAULT_TOP_N
) -> list[dict[str, Any]]:
    """Flatten findings, order by monthly savings (stable) and keep the top `limit`."""

    ordered = sorted(findings, key=lambda item: item.estimated_monthly_savings_usd, reverse=True)
    ranked: list[dict[str, Any]] = []
    for rank, finding in enumerate(ordered[: max(0, int(limit))], start=1):
        ranked.append(
            {
                "rank": rank,
                "workflow_id": str(finding.workflow_id),
                "workflow_name": finding.workflow_name,
                "kind": finding.kind,
                "severity": finding.severity,
                "confidence": finding.confidence,
                "estimated_monthly_savings_usd": finding.estimated_monthly_savings_usd,
                "estimated_annual_savings_usd": finding.estimated_annual_savings_usd,
                "is_fallback": finding.is_fallback,
                "message": finding.message,
                "estimated_effort_hours": finding.estimated_effort_hours,
            }
        )
    return ranked
