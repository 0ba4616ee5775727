from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from workflow_audit.core.archive import ArchiveError, open_bundle
from workflow_audit.core.engine import (
    analyze_archive,
    analyze_batch,
    analyze_workflow,
    failure,
    list_archive,
)
from workflow_audit.core.report import ENGINE_VERSION, SCHEMA_VERSION
from workflow_audit.core.settings import load_settings
from workflow_audit.core.utils import env_int

app = FastAPI(title="Workflow audit")


def max_upload_bytes() -> int | None:
    return env_int("MAX_UPLOAD_BYTES", None, min_value=1)


async def _read_archive(request: Request) -> bytes:
    body = await request.body()
    limit = max_upload_bytes()
    if limit is not None and len(body) > limit:
        raise HTTPException(status_code=413, detail="Upload too large")
    if not body:
        raise HTTPException(status_code=400, detail="Request body must be a ZIP export")
    return body


def _usage_param(request: Request, default: int) -> int:
    raw = request.query_params.get("usage")
    if raw is None or not raw.strip():
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        raise HTTPException(status_code=400, detail="usage must be an integer")


def _respond(result: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=200 if result.get("success") else 400, content=result)


@app.get("/api/health")
async def health_api() -> JSONResponse:
    return JSONResponse({"status": "ok", "engine_version": ENGINE_VERSION, "schema_version": SCHEMA_VERSION})


@app.post("/api/workflows")
async def workflows_api(request: Request) -> JSONResponse:
    return _respond(list_archive(await _read_archive(request)))


@app.post("/api/audit")
async def audit_api(request: Request) -> JSONResponse:
    settings = load_settings()
    body = await _read_archive(request)
    result = analyze_archive(
        body,
        plan=request.query_params.get("plan") or settings.plan,
        actual_usage=_usage_param(request, settings.actual_usage),
        workflow_ids=request.query_params.getlist("workflow_id") or list(settings.workflow_ids),
        top_n=settings.top_n,
    )
    return _respond(result)


@app.post("/api/audit/workflows/{workflow_id}")
async def workflow_audit_api(request: Request, workflow_id: str) -> JSONResponse:
    settings = load_settings()
    body = await _read_archive(request)
    try:
        bundle = open_bundle(body)
    except ArchiveError as exc:
        return _respond(failure(str(exc)))
    result = analyze_workflow(
        bundle.export_bytes,
        bundle.log_blobs,
        workflow_id=workflow_id,
        plan=request.query_params.get("plan") or settings.plan,
        actual_usage=_usage_param(request, settings.actual_usage),
    )
    return _respond(result)


@app.post("/api/audit/batch")
async def batch_audit_api(request: Request) -> JSONResponse:
    settings = load_settings()
    body = await _read_archive(request)
    try:
        bundle = open_bundle(body)
    except ArchiveError as exc:
        return _respond(failure(str(exc)))
    result = analyze_batch(
        bundle.export_bytes,
        bundle.log_blobs,
        workflow_ids=request.query_params.getlist("workflow_id"),
        plan=request.query_params.get("plan") or settings.plan,
        actual_usage=_usage_param(request, settings.actual_usage),
    )
    return _respond(result)
