"""Public entry points.

Every function here is a complete, stateless analysis over the bytes it is
given and returns a plain mapping with a ``success`` flag. Configuration,
input and validation failures come back as ``{"success": False, "message": ...}``
and are never raised to the caller.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from . import detectors
from .aggregation import system_metrics, workflow_summary
from .archive import ArchiveError, open_bundle
from .enrichment import enrich_workflows, has_execution_history
from .model_builder import ExportParseError, parse_export
from .patterns import detect_patterns
from .pricing import PricingConfigError, UsageError, resolve_pricing, validate_pricing_tables
from .ranking import DEFAULT_TOP_N
from .reaudit import build_metadata
from .report import ReportValidationError, build_report, check_numbers, validate_report
from .scoring import app_inventory, efficiency_score, total_savings
from .telemetry import aggregate_usage
from .types import EfficiencyFinding, PricingResolution, Workflow
from .utils import resolve_logger


class SelectionError(ValueError):
    pass


@dataclass(frozen=True)
class PreparedExport:
    version: str
    workflows: tuple[Workflow, ...]
    has_history: bool
    execution_logs: int


def failure(message: str) -> dict[str, Any]:
    return {"success": False, "message": message}


def _run_guarded(action: Callable[[], dict[str, Any]], logger: Callable[[str], None]) -> dict[str, Any]:
    try:
        return action()
    except PricingConfigError as exc:
        logger(f"aborted: pricing configuration error: {exc}")
        return failure(f"Pricing configuration error: {exc}")
    except ReportValidationError as exc:
        logger(f"aborted: validation failed: {exc}")
        return failure(f"Validation failed: {exc}")
    except (ArchiveError, ExportParseError, SelectionError, UsageError) as exc:
        logger(f"aborted: {exc}")
        return failure(str(exc))


def prepare_export(
    export_text: str | bytes,
    log_blobs: Iterable[str | bytes] | None,
    logger: Callable[[str], None],
) -> PreparedExport:
    blobs = list(log_blobs or ())
    document = parse_export(export_text)
    logger(f"parsed export: {len(document.workflows)} workflow(s)")
    usage = aggregate_usage(blobs)
    logger(f"telemetry: {len(blobs)} blob(s), usage for {len(usage)} workflow(s)")
    workflows = enrich_workflows(document.workflows, usage)
    return PreparedExport(
        version=document.version,
        workflows=workflows,
        has_history=has_execution_history(workflows),
        execution_logs=len(blobs),
    )


def select_workflows(
    workflows: Sequence[Workflow], workflow_ids: Iterable[Any] | None, *, required: bool = False
) -> list[Workflow]:
    """Workflows matching `workflow_ids`, in document order.

    An absent or empty selection means every workflow unless `required` is set.
    A non-empty selection that matches nothing is an input error.
    """

    wanted = [item for item in (workflow_ids or ()) if str(item).strip()]
    if not wanted:
        if required:
            raise SelectionError("No workflows selected for analysis")
        return list(workflows)
    selected = [workflow for workflow in workflows if any(workflow.matches(item) for item in wanted)]
    if not selected:
        raise SelectionError(
            "None of the selected workflow ids were found: " + ", ".join(str(item) for item in wanted)
        )
    return selected


def _detect(
    workflows: Sequence[Workflow], pricing: PricingResolution, logger: Callable[[str], None]
) -> dict[int, list[EfficiencyFinding]]:
    findings = {
        workflow.id: detectors.run_detectors(workflow, pricing.cost_per_unit) for workflow in workflows
    }
    logger(f"detectors: {sum(len(items) for items in findings.values())} finding(s)")
    return findings


def _workflow_result(workflow: Workflow, findings: Sequence[EfficiencyFinding], has_history: bool) -> dict[str, Any]:
    monthly = total_savings(findings)
    return {
        "success": True,
        "message": f"Audited: {workflow.name}",
        "mode": "full" if has_history and workflow.usage is not None else "partial",
        "workflow": workflow_summary(workflow),
        "total_nodes": workflow.step_count,
        "apps": app_inventory([workflow]),
        "findings": [finding.as_dict() for finding in findings],
        "efficiency_score": efficiency_score(findings),
        "estimated_monthly_savings_usd": monthly,
        "estimated_annual_savings_usd": monthly * 12,
    }


def list_workflows(
    export_text: str | bytes,
    log_blobs: Iterable[str | bytes] | None = None,
    *,
    logger: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Preview: one summary per workflow, without heuristics or pricing."""

    log = resolve_logger(logger)

    def action() -> dict[str, Any]:
        prepared = prepare_export(export_text, log_blobs, log)
        summaries = [workflow_summary(workflow) for workflow in prepared.workflows]
        return {
            "success": True,
            "message": f"Found {len(summaries)} workflow(s)",
            "workflows": summaries,
        }

    return _run_guarded(action, log)


def analyze_account(
    export_text: str | bytes,
    log_blobs: Iterable[str | bytes] | None = None,
    *,
    plan: str | None = None,
    actual_usage: int | None = None,
    workflow_ids: Iterable[Any] | None = None,
    top_n: int = DEFAULT_TOP_N,
    generated_at: str | None = None,
    logger: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    log = resolve_logger(logger)

    def action() -> dict[str, Any]:
        validate_pricing_tables()
        pricing = resolve_pricing(plan, actual_usage)
        log(f"pricing: {pricing.plan} tier {pricing.tier_capacity} at {pricing.cost_per_unit:.6f}/task")
        prepared = prepare_export(export_text, log_blobs, log)
        selected = select_workflows(prepared.workflows, workflow_ids)
        findings = _detect(selected, pricing, log)
        report = build_report(
            selected,
            findings,
            pricing,
            has_history=prepared.has_history,
            execution_logs=prepared.execution_logs,
            export_version=prepared.version,
            top_n=top_n,
            generated_at=generated_at,
        )
        validate_report(report)
        log("report validated")
        return {
            "success": True,
            "message": f"Successfully audited {len(selected)} workflow(s)",
            "report": report,
        }

    return _run_guarded(action, log)


def analyze_workflow(
    export_text: str | bytes,
    log_blobs: Iterable[str | bytes] | None = None,
    *,
    workflow_id: Any,
    plan: str | None = None,
    actual_usage: int | None = None,
    logger: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    log = resolve_logger(logger)

    def action() -> dict[str, Any]:
        validate_pricing_tables()
        pricing = resolve_pricing(plan, actual_usage)
        prepared = prepare_export(export_text, log_blobs, log)
        workflow = next((item for item in prepared.workflows if item.matches(workflow_id)), None)
        if workflow is None:
            raise SelectionError(f"Workflow with id {workflow_id} not found")
        findings = _detect([workflow], pricing, log)[workflow.id]
        result = _workflow_result(workflow, findings, prepared.has_history)
        result["pricing_assumptions"] = pricing.as_dict()
        check_numbers(result)
        return result

    return _run_guarded(action, log)


def analyze_batch(
    export_text: str | bytes,
    log_blobs: Iterable[str | bytes] | None = None,
    *,
    workflow_ids: Iterable[Any] | None,
    plan: str | None = None,
    actual_usage: int | None = None,
    logger: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Audit a selected project of workflows and summarize it as a whole."""

    log = resolve_logger(logger)

    def action() -> dict[str, Any]:
        validate_pricing_tables()
        pricing = resolve_pricing(plan, actual_usage)
        prepared = prepare_export(export_text, log_blobs, log)
        selected = select_workflows(prepared.workflows, workflow_ids, required=True)
        findings = _detect(selected, pricing, log)

        results = [
            _workflow_result(workflow, findings[workflow.id], prepared.has_history)
            for workflow in selected
        ]
        all_findings = [item for workflow in selected for item in findings[workflow.id]]
        scores = [result["efficiency_score"] for result in results]
        monthly = total_savings(all_findings)
        selected_ids = {workflow.id for workflow in selected}

        result = {
            "success": True,
            "message": f"Successfully audited {len(results)} workflow(s)",
            "workflow_count": len(results),
            "individual_results": results,
            "total_nodes": sum(workflow.step_count for workflow in selected),
            "total_estimated_savings_usd": monthly,
            "total_estimated_annual_savings_usd": monthly * 12,
            # Half-up, not banker's rounding.
            "average_efficiency_score": int(math.floor(sum(scores) / len(scores) + 0.5)),
            "total_flags": len(all_findings),
            "combined_apps": app_inventory(selected),
            "patterns": [item.as_dict() for item in detect_patterns(all_findings, pricing.cost_per_unit)],
            "scope_metadata": {
                "total_workflows_in_account": len(prepared.workflows),
                "analyzed_count": len(selected),
                "excluded_count": len(prepared.workflows) - len(selected),
                "analyzed_summaries": [workflow_summary(workflow) for workflow in selected],
                "excluded_summaries": [
                    workflow_summary(workflow)
                    for workflow in prepared.workflows
                    if workflow.id not in selected_ids
                ],
            },
            "system_metrics": system_metrics(selected, findings),
            "pricing_assumptions": pricing.as_dict(),
        }
        check_numbers(result)
        return result

    return _run_guarded(action, log)


def list_archive(
    archive_bytes: bytes,
    *,
    logger: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    log = resolve_logger(logger)
    try:
        bundle = open_bundle(archive_bytes)
    except ArchiveError as exc:
        log(f"aborted: {exc}")
        return failure(str(exc))
    return list_workflows(bundle.export_bytes, bundle.log_blobs, logger=log)


def analyze_archive(
    archive_bytes: bytes,
    *,
    plan: str | None = None,
    actual_usage: int | None = None,
    workflow_ids: Iterable[Any] | None = None,
    top_n: int = DEFAULT_TOP_N,
    generated_at: str | None = None,
    logger: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Full-account analysis of a ZIP export, with re-audit metadata attached."""

    log = resolve_logger(logger)
    try:
        validate_pricing_tables()
        bundle = open_bundle(archive_bytes)
    except PricingConfigError as exc:
        return failure(f"Pricing configuration error: {exc}")
    except ArchiveError as exc:
        log(f"aborted: {exc}")
        return failure(str(exc))
    log(f"archive: {bundle.export_name} with {len(bundle.log_names)} log file(s)")

    result = analyze_account(
        bundle.export_bytes,
        bundle.log_blobs,
        plan=plan,
        actual_usage=actual_usage,
        workflow_ids=workflow_ids,
        top_n=top_n,
        generated_at=generated_at,
        logger=log,
    )
    if not result["success"]:
        return result

    report = result["report"]
    metadata = build_metadata(
        archive_bytes,
        resolve_pricing(plan, actual_usage),
        [entry["workflow_id"] for entry in report["per_workflow_findings"]],
        generated_at=report["audit_metadata"]["generated_at"],
    )
    result["archive"] = bundle.as_dict()
    result["reaudit_metadata"] = metadata.as_dict()
    return result
