from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Sequence

from jsonschema import ValidationError, validate

from .aggregation import confidence_overview, global_metrics, plan_analysis
from .patterns import detect_patterns
from .pricing import PRICING_TABLE_VERSION
from .ranking import DEFAULT_TOP_N, rank_opportunities
from .scoring import app_inventory, efficiency_score, total_savings
from .types import EfficiencyFinding, PricingResolution, Workflow
from .utils import load_schema, now_iso

SCHEMA_VERSION = "1.0.0"
ENGINE_VERSION = "1.0.0"
REPORT_SCHEMA = "report.schema.json"

WARNING_INCOMPLETE_DATA = "INCOMPLETE_DATA"

_FINANCIAL_TOKENS = ("savings", "waste", "price", "cost_per_unit")


class ReportValidationError(ValueError):
    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        if path:
            message = f"{message} at {path}"
        super().__init__(message)


def is_financial_key(key: str) -> bool:
    lowered = key.lower()
    return lowered.endswith("_usd") or any(token in lowered for token in _FINANCIAL_TOKENS)


def _walk_numbers(node: Any, path: str, financial: bool) -> Iterable[tuple[str, float, bool]]:
    if isinstance(node, bool):
        return
    if isinstance(node, (int, float)):
        yield path, float(node), financial
        return
    if isinstance(node, Mapping):
        for key, value in node.items():
            key_text = str(key)
            yield from _walk_numbers(value, f"{path}.{key_text}", is_financial_key(key_text))
        return
    if isinstance(node, (list, tuple)):
        for index, value in enumerate(node):
            yield from _walk_numbers(value, f"{path}[{index}]", financial)


def check_numbers(payload: Any) -> None:
    """Reject any non-finite number and any negative financial figure.

    Nothing is corrected in place: one bad field fails the whole payload.
    """

    for path, value, financial in _walk_numbers(payload, "$", False):
        if math.isnan(value) or math.isinf(value):
            raise ReportValidationError(f"non-finite value {value!r}", path)
        if financial and value < 0:
            raise ReportValidationError(f"negative financial value {value!r}", path)


def validate_report(report: dict[str, Any]) -> None:
    check_numbers(report)
    try:
        validate(instance=report, schema=load_schema(REPORT_SCHEMA))
    except ValidationError as exc:
        location = "$" + "".join(
            f"[{part}]" if isinstance(part, int) else f".{part}" for part in exc.absolute_path
        )
        raise ReportValidationError(exc.message, location) from exc


def workflow_findings_entry(
    workflow: Workflow, findings: Sequence[EfficiencyFinding]
) -> dict[str, Any]:
    warnings: list[str] = []
    if workflow.usage is None:
        warnings.append(WARNING_INCOMPLETE_DATA)
    monthly = total_savings(findings)
    return {
        "workflow_id": str(workflow.id),
        "workflow_name": workflow.name,
        "status": workflow.status,
        "efficiency_score": efficiency_score(findings),
        "estimated_monthly_savings_usd": monthly,
        "estimated_annual_savings_usd": monthly * 12,
        "warnings": warnings,
        "findings": [finding.as_dict() for finding in findings],
    }


def build_report(
    workflows: Sequence[Workflow],
    findings_by_workflow: Mapping[int, Sequence[EfficiencyFinding]],
    pricing: PricingResolution,
    *,
    has_history: bool,
    execution_logs: int = 0,
    export_version: str = "",
    top_n: int = DEFAULT_TOP_N,
    generated_at: str | None = None,
) -> dict[str, Any]:
    ordered: list[EfficiencyFinding] = []
    for workflow in workflows:
        ordered.extend(findings_by_workflow.get(workflow.id, ()))

    pricing_assumptions = pricing.as_dict()
    pricing_assumptions["pricing_table_version"] = PRICING_TABLE_VERSION
    return {
        "schema_version": SCHEMA_VERSION,
        "audit_metadata": {
            "generated_at": generated_at or now_iso(),
            "engine_version": ENGINE_VERSION,
            "analysis_mode": "full" if has_history else "partial",
            "input_sources": {
                "export_document": True,
                "execution_logs": int(execution_logs),
                "export_version": export_version,
            },
            "pricing_assumptions": pricing_assumptions,
            "confidence_overview": confidence_overview(workflows, findings_by_workflow, has_history),
        },
        "global_metrics": global_metrics(workflows, findings_by_workflow, pricing),
        "per_workflow_findings": [
            workflow_findings_entry(workflow, findings_by_workflow.get(workflow.id, ()))
            for workflow in workflows
        ],
        "opportunities_ranked": rank_opportunities(ordered, top_n),
        "patterns": [item.as_dict() for item in detect_patterns(ordered, pricing.cost_per_unit)],
        "plan_analysis": plan_analysis(workflows, pricing),
        "app_inventory": app_inventory(workflows),
    }
