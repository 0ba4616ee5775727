from __future__ import annotations

import pytest

from tests.conftest import GENERATED_AT, make_export, polling_workflow_dict
from workflow_audit.core import detectors, pricing
from workflow_audit.core.engine import analyze_account, analyze_batch, analyze_workflow, list_workflows
from workflow_audit.core.types import EfficiencyFinding, PricingTier
from workflow_audit.core.utils import json_dumps


def _analyze(modern_export, task_history, reference_csv, **kwargs):
    kwargs.setdefault("generated_at", GENERATED_AT)
    return analyze_account(modern_export, [task_history, reference_csv], **kwargs)


def test_full_account_report(modern_export, task_history, reference_csv):
    lines: list[str] = []
    result = _analyze(modern_export, task_history, reference_csv, plan="professional", actual_usage=2000, logger=lines.append)
    assert result["success"] is True, result
    report = result["report"]

    assert report["schema_version"] == "1.0.0"
    meta = report["audit_metadata"]
    assert meta["generated_at"] == GENERATED_AT
    assert meta["analysis_mode"] == "full"
    assert meta["input_sources"]["execution_logs"] == 2
    assert meta["pricing_assumptions"]["cost_per_unit_usd"] == pytest.approx(49.0 / 2000)
    assert meta["confidence_overview"] == {"high": 6, "medium": 1, "low": 1}

    metrics = report["global_metrics"]
    assert metrics["total_workflows"] == 4
    assert metrics["active_workflows"] == 3
    assert metrics["zombie_workflows"] == 1
    assert metrics["total_monthly_tasks"] == 90
    assert metrics["estimated_annual_waste_usd"] == metrics["estimated_monthly_waste_usd"] * 12

    ranked = report["opportunities_ranked"]
    assert [(item["workflow_id"], item["kind"]) for item in ranked] == [
        ("101", "polling_trigger"),
        ("103", "error_loop"),
        ("102", "polling_trigger"),
        ("102", "late_filter_placement"),
    ]
    assert report["patterns"] == []

    by_id = {entry["workflow_id"]: entry for entry in report["per_workflow_findings"]}
    assert by_id["101"]["warnings"] == ["INCOMPLETE_DATA"]
    assert by_id["103"]["warnings"] == []
    assert by_id["103"]["efficiency_score"] == 70

    plan = report["plan_analysis"]
    assert plan["premium_features"]["filters"] is True
    assert plan["premium_features"]["webhooks"] is True
    assert plan["premium_features"]["paths"] is False
    assert plan["downgrade_safe"] is False
    assert "report validated" in lines


def test_downgrade_safe_when_usage_is_low(modern_export, task_history, reference_csv):
    report = _analyze(modern_export, task_history, reference_csv, actual_usage=1000)["report"]
    assert report["plan_analysis"]["tier_capacity"] == 1500
    assert report["plan_analysis"]["downgrade_safe"] is True


def test_without_logs_analysis_is_partial(modern_export):
    report = analyze_account(modern_export, generated_at=GENERATED_AT)["report"]
    assert report["audit_metadata"]["analysis_mode"] == "partial"
    assert all(entry["warnings"] == ["INCOMPLETE_DATA"] for entry in report["per_workflow_findings"])


def test_identical_inputs_give_identical_reports(modern_export, task_history, reference_csv):
    first = _analyze(modern_export, task_history, reference_csv, generated_at=None)["report"]
    second = _analyze(modern_export, task_history, reference_csv, generated_at=None)["report"]
    first["audit_metadata"].pop("generated_at")
    second["audit_metadata"].pop("generated_at")
    assert json_dumps(first) == json_dumps(second)


def test_subset_selection(modern_export, task_history, reference_csv):
    report = _analyze(modern_export, task_history, reference_csv, workflow_ids=["zap_dormant", 103])["report"]
    assert [entry["workflow_name"] for entry in report["per_workflow_findings"]] == [
        "Webhook to CRM",
        "Dormant newsletter",
    ]


def test_selection_matching_nothing_fails(modern_export):
    result = analyze_account(modern_export, workflow_ids=["999"])
    assert result == {"success": False, "message": "None of the selected workflow ids were found: 999"}


def test_non_integer_usage_fails_without_raising(modern_export):
    result = analyze_account(modern_export, actual_usage="abc")
    assert result == {"success": False, "message": "Actual usage must be an integer, got 'abc'"}
    assert analyze_batch(modern_export, workflow_ids=["101"], actual_usage="abc")["success"] is False


def test_malformed_export_fails_with_position():
    result = analyze_account('{"zaps": [}')
    assert result["success"] is False
    assert "line 1" in result["message"]


def test_pricing_misconfiguration_aborts(monkeypatch, modern_export):
    broken = {"professional": (PricingTier(2000, 49.0), PricingTier(750, 19.99))}
    monkeypatch.setattr(pricing, "PRICING_TABLES", broken)
    for result in (
        analyze_account(modern_export),
        analyze_workflow(modern_export, workflow_id=101),
        analyze_batch(modern_export, workflow_ids=[101]),
    ):
        assert result["success"] is False
        assert result["message"].startswith("Pricing configuration error:")


def _negative_detector(workflow, cost_per_unit):
    return EfficiencyFinding(
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        kind="error_loop",
        severity="high",
        confidence="high",
        estimated_monthly_savings_usd=-1.0,
        is_fallback=False,
        message="broken",
        details="",
        savings_explanation="",
        estimated_effort_hours=0.5,
    )


def _nan_detector(workflow, cost_per_unit):
    finding = _negative_detector(workflow, cost_per_unit)
    return EfficiencyFinding(**{**finding.__dict__, "estimated_monthly_savings_usd": float("nan")})


@pytest.mark.parametrize("detector", [_negative_detector, _nan_detector])
def test_invalid_numbers_fail_the_whole_call(monkeypatch, modern_export, detector):
    monkeypatch.setattr(detectors, "DETECTORS", (("error_loop", detector),))
    result = analyze_account(modern_export)
    assert result["success"] is False
    assert result["message"].startswith("Validation failed:")
    assert "report" not in result

    single = analyze_workflow(modern_export, workflow_id=101)
    assert single["success"] is False
    assert single["message"].startswith("Validation failed:")


def test_single_workflow(modern_export, task_history):
    result = analyze_workflow(modern_export, [task_history], workflow_id="103")
    assert result["success"] is True
    assert result["mode"] == "full"
    assert result["message"] == "Audited: Webhook to CRM"
    assert result["efficiency_score"] == 70
    assert [item["kind"] for item in result["findings"]] == ["error_loop"]
    assert result["workflow"]["error_rate"] == 60.0


def test_single_workflow_unknown_id(modern_export):
    result = analyze_workflow(modern_export, workflow_id="nope")
    assert result == {"success": False, "message": "Workflow with id nope not found"}


def test_batch_summary(modern_export, task_history):
    result = analyze_batch(modern_export, [task_history], workflow_ids=["101", "102", "103"])
    assert result["success"] is True
    assert result["workflow_count"] == 3
    assert result["total_nodes"] == 9
    assert result["total_flags"] == 4
    assert result["average_efficiency_score"] == 75
    scope = result["scope_metadata"]
    assert scope["total_workflows_in_account"] == 4
    assert scope["excluded_count"] == 1
    assert scope["excluded_summaries"][0]["title"] == "Dormant newsletter"
    metrics = result["system_metrics"]
    assert metrics["polling_trigger_count"] == 2
    assert metrics["instant_trigger_count"] == 1
    assert metrics["avg_steps_per_workflow"] == 3.0
    assert result["combined_apps"][0]["name"] == "Slack"


def test_batch_requires_selection(modern_export):
    result = analyze_batch(modern_export, workflow_ids=[])
    assert result == {"success": False, "message": "No workflows selected for analysis"}


def test_batch_patterns_across_workflows():
    export = make_export([polling_workflow_dict(i) for i in range(1, 4)])
    result = analyze_batch(export, workflow_ids=["1", "2", "3"])
    assert [item["affected_count"] for item in result["patterns"]] == [3]
    assert result["patterns"][0]["affected_workflow_ids"] == ["1", "2", "3"]


def test_list_workflows_preview(modern_export, task_history):
    result = list_workflows(modern_export, [task_history])
    assert result["success"] is True
    summaries = {item["title"]: item for item in result["workflows"]}
    assert summaries["RSS to Slack"]["trigger_app"] == "RSS"
    assert summaries["RSS to Slack"]["error_rate"] is None
    assert summaries["Webhook to CRM"]["error_rate"] == 60.0
    assert summaries["Webhook to CRM"]["total_runs"] == 20
    assert summaries["Dormant newsletter"]["trigger_app"] == "Schedule"
    assert summaries["Dormant newsletter"]["id"] != "zap_dormant"
    assert summaries["Dormant newsletter"]["source_id"] == "zap_dormant"
