from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path
from typing import Any

import pytest

from workflow_audit.core.types import Step, UsageStats, Workflow

FIXTURES = Path(__file__).resolve().parent / "fixtures"
GENERATED_AT = "2025-01-01T00:00:00+00:00"


def make_step(
    step_id: int,
    parent_id: int | None,
    integration: str = "SlackCLIAPI@1.0.0",
    direction: str = "write",
    action: str = "",
    title: str | None = None,
) -> Step:
    return Step(
        id=step_id,
        parent_id=parent_id,
        direction=direction,
        integration=integration,
        action=action,
        title=title,
    )


def make_usage(total_runs: int, success_count: int = 0, error_count: int = 0, **extra: Any) -> UsageStats:
    error_rate = error_count * 100.0 / total_runs if total_runs else 0.0
    return UsageStats(
        total_runs=total_runs,
        success_count=success_count,
        error_count=error_count,
        error_rate=error_rate,
        **extra,
    )


def make_workflow(
    workflow_id: int,
    steps: list[Step],
    usage: UsageStats | None = None,
    name: str | None = None,
    status: str = "on",
) -> Workflow:
    return Workflow(
        id=workflow_id,
        source_id=str(workflow_id),
        name=name or f"Workflow {workflow_id}",
        status=status,
        steps=tuple(steps),
        usage=usage,
    )


def step_dict(
    step_id: Any,
    parent_id: Any,
    api: str,
    type_of: str = "write",
    action: str = "",
    title: str | None = None,
) -> dict[str, Any]:
    return {
        "id": step_id,
        "parent_id": parent_id,
        "type_of": type_of,
        "selected_api": api,
        "action": action,
        "title": title,
        "params": {},
    }


def workflow_dict(workflow_id: Any, title: str, steps: list[dict[str, Any]], status: str = "on") -> dict[str, Any]:
    return {"id": workflow_id, "title": title, "status": status, "steps": steps}


def polling_workflow_dict(workflow_id: Any, title: str | None = None) -> dict[str, Any]:
    return workflow_dict(
        workflow_id,
        title or f"RSS digest {workflow_id}",
        [
            step_dict(1, None, "RSSCLIAPI@1.0.0", "read", "new_item"),
            step_dict(2, 1, "SlackCLIAPI@1.0.0", "write", "send_message"),
        ],
    )


def make_export(workflows: list[dict[str, Any]], version: str = "1.0") -> str:
    return json.dumps({"metadata": {"version": version}, "zaps": workflows})


def make_csv(rows: list[tuple[Any, ...]], header: str = "zap_id,status,error_message,timestamp") -> str:
    lines = [header]
    for row in rows:
        lines.append(",".join("" if value is None else str(value) for value in row))
    return "\n".join(lines) + "\n"


def make_zip(files: dict[str, str | bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


@pytest.fixture()
def modern_export() -> str:
    return read_fixture("export_modern.json")


@pytest.fixture()
def legacy_export() -> str:
    return read_fixture("export_legacy.json")


@pytest.fixture()
def task_history() -> str:
    return read_fixture("task_history.csv")


@pytest.fixture()
def reference_csv() -> str:
    return read_fixture("task_history_download_urls.csv")


@pytest.fixture()
def account_zip(modern_export: str, task_history: str, reference_csv: str) -> bytes:
    return make_zip(
        {
            "export/zapfile.json": modern_export,
            "export/task_history.csv": task_history,
            "export/task_history_download_urls.csv": reference_csv,
        }
    )
