from __future__ import annotations

import pytest

from tests.conftest import make_step, make_workflow
from workflow_audit.core.patterns import detect_patterns
from workflow_audit.core.ranking import rank_opportunities
from workflow_audit.core.scoring import app_inventory, efficiency_score, total_savings
from workflow_audit.core.types import EfficiencyFinding


def _finding(workflow_id: int, kind: str = "polling_trigger", savings: float = 1.0, severity: str = "medium"):
    return EfficiencyFinding(
        workflow_id=workflow_id,
        workflow_name=f"Workflow {workflow_id}",
        kind=kind,
        severity=severity,
        confidence="low",
        estimated_monthly_savings_usd=savings,
        is_fallback=True,
        message="m",
        details="d",
        savings_explanation="e",
        estimated_effort_hours=2.0,
    )


def test_three_workflows_form_a_pattern():
    findings = [_finding(1), _finding(2), _finding(3)]
    patterns = detect_patterns(findings, cost_per_unit=0.5)
    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.affected_count == 3
    assert pattern.severity == "low"
    assert pattern.total_waste_usd == pytest.approx(3.0)
    assert pattern.total_waste_tasks == 6
    assert pattern.name == "Polling Trigger Overuse"


def test_two_workflows_never_form_a_pattern():
    assert detect_patterns([_finding(1), _finding(2)], cost_per_unit=0.5) == []


def test_pattern_severity_escalates():
    five = detect_patterns([_finding(i) for i in range(5)], 0.1)[0]
    eight = detect_patterns([_finding(i) for i in range(8)], 0.1)[0]
    assert five.severity == "medium"
    assert eight.severity == "high"


def test_patterns_sorted_by_count_times_waste():
    findings = [_finding(i, "polling_trigger", 1.0) for i in range(3)]
    findings += [_finding(i, "error_loop", 5.0, "high") for i in range(3)]
    patterns = detect_patterns(findings, 0.1)
    assert [item.kind for item in patterns] == ["error_loop", "polling_trigger"]
    assert patterns[0].refactor_guidance.startswith("Review authentication")


def test_zero_cost_per_unit_gives_zero_waste_tasks():
    pattern = detect_patterns([_finding(i) for i in range(3)], 0.0)[0]
    assert pattern.total_waste_tasks == 0


def test_ranking_keeps_top_ten_descending():
    findings = [_finding(i, savings=float(i)) for i in range(15)]
    ranked = rank_opportunities(findings)
    assert len(ranked) == 10
    assert [item["rank"] for item in ranked] == list(range(1, 11))
    savings = [item["estimated_monthly_savings_usd"] for item in ranked]
    assert savings == sorted(savings, reverse=True)
    assert len(set(savings)) == 10
    assert savings[0] == 14.0


def test_ranking_ties_keep_input_order():
    ranked = rank_opportunities([_finding(1, savings=2.0), _finding(2, savings=2.0)])
    assert [item["workflow_id"] for item in ranked] == ["1", "2"]


def test_efficiency_score_penalties_and_floor():
    assert efficiency_score([]) == 100
    assert efficiency_score([_finding(1)]) == 90
    assert efficiency_score([_finding(1, "late_filter_placement", severity="high")]) == 75
    heavy = [_finding(1, "error_loop", severity="high")] * 4
    assert efficiency_score(heavy) == 0


def test_total_savings_sums_monthly():
    assert total_savings([_finding(1, savings=1.5), _finding(2, savings=2.5)]) == pytest.approx(4.0)


def test_app_inventory_counts_and_orders():
    workflows = [
        make_workflow(1, [make_step(1, None, "RSSCLIAPI@1.0.0", "read"), make_step(2, 1, "SlackCLIAPI@1.0.0")]),
        make_workflow(2, [make_step(1, None, "SlackCLIAPI@1.0.0", "read")]),
    ]
    inventory = app_inventory(workflows)
    assert inventory[0] == {"name": "Slack", "raw_api": "SlackCLIAPI@1.0.0", "count": 2}
    assert inventory[1]["name"] == "RSS"
