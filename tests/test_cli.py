from __future__ import annotations

import json

import pytest

import workflow_audit.cli as cli
from workflow_audit.core.utils import json_dumps


@pytest.fixture()
def inputs(tmp_path, modern_export, task_history, account_zip):
    export = tmp_path / "zapfile.json"
    export.write_text(modern_export, encoding="utf-8")
    history = tmp_path / "task_history.csv"
    history.write_text(task_history, encoding="utf-8")
    archive = tmp_path / "export.zip"
    archive.write_bytes(account_zip)
    return {"export": str(export), "log": str(history), "archive": str(archive)}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PLAN", "ACTUAL_USAGE", "TOP_N", "CLI_PROGRESS", "ALLOW_NETWORK"):
        monkeypatch.delenv(f"WORKFLOW_AUDIT_{name}", raising=False)


def test_cli_analyze_writes_report(tmp_path, inputs):
    out = tmp_path / "report.json"
    cli.main(["analyze", "--export", inputs["export"], "--log", inputs["log"], "--plan", "team", "--out", str(out)])
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["success"] is True
    assert payload["report"]["audit_metadata"]["pricing_assumptions"]["plan"] == "team"


def test_cli_list_prints_summaries(capsys, inputs):
    cli.main(["list", "--archive", inputs["archive"]])
    payload = json.loads(capsys.readouterr().out)
    assert [item["title"] for item in payload["workflows"]][0] == "RSS to Slack"


def test_cli_progress_goes_to_stderr(capsys, inputs):
    cli.main(["--progress", "batch", "--export", inputs["export"], "--workflow-id", "101", "--workflow-id", "102"])
    captured = capsys.readouterr()
    assert json.loads(captured.out)["workflow_count"] == 2
    assert "[workflow-audit] parsed export" in captured.err


def test_cli_failure_exits_nonzero(capsys, inputs):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["workflow", "--export", inputs["export"], "--workflow-id", "nope"])
    assert excinfo.value.code == 1
    assert json.loads(capsys.readouterr().out)["success"] is False


def test_cli_missing_input(tmp_path):
    with pytest.raises(SystemExit, match="Input not found"):
        cli.main(["list", "--export", str(tmp_path / "missing.json")])


def test_cli_verify_roundtrip(tmp_path, capsys, inputs):
    cli.main(["analyze", "--archive", inputs["archive"]])
    result = json.loads(capsys.readouterr().out)
    metadata_path = tmp_path / "reaudit.json"
    metadata_path.write_text(json_dumps(result["reaudit_metadata"]), encoding="utf-8")

    cli.main(["verify", "--metadata", str(metadata_path), "--archive", inputs["archive"]])
    assert "archive matches (4 workflow(s))" in capsys.readouterr().out

    other = tmp_path / "other.zip"
    other.write_bytes(b"changed")
    with pytest.raises(SystemExit, match="Hash mismatch"):
        cli.main(["verify", "--metadata", str(metadata_path), "--archive", str(other)])


def test_cli_serve_refuses_network_hosts(monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda *args, **kwargs: calls.append(kwargs))
    with pytest.raises(SystemExit, match="Network disabled"):
        cli.main(["serve", "--host", "0.0.0.0"])
    cli.main(["serve", "--host", "127.0.0.1", "--port", "8123"])
    assert calls == [{"host": "127.0.0.1", "port": 8123}]
