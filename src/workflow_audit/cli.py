from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

import uvicorn
from jsonschema import ValidationError

from workflow_audit.core.archive import ArchiveError, open_bundle
from workflow_audit.core.engine import (
    analyze_account,
    analyze_archive,
    analyze_batch,
    analyze_workflow,
    list_archive,
    list_workflows,
)
from workflow_audit.core.reaudit import ReauditMetadataError, deserialize_metadata, matches_source
from workflow_audit.core.settings import Settings, load_settings
from workflow_audit.core.utils import env_flag, json_dumps

LOCAL_HOSTS = {"127.0.0.1", "localhost", "::1"}


def _progress_logger(settings: Settings) -> Callable[[str], None] | None:
    if not settings.progress:
        return None

    def log(msg: str) -> None:
        print(f"[workflow-audit] {msg}", file=sys.stderr, flush=True)

    return log


def _read_archive(path: str) -> bytes:
    archive_path = Path(path)
    if not archive_path.exists():
        raise SystemExit(f"Input not found: {archive_path}")
    return archive_path.read_bytes()


def _read_inputs(args: argparse.Namespace) -> tuple[bytes, list[bytes]]:
    if args.archive:
        try:
            bundle = open_bundle(_read_archive(args.archive))
        except ArchiveError as exc:
            raise SystemExit(str(exc))
        return bundle.export_bytes, list(bundle.log_blobs)
    if not args.export:
        raise SystemExit("Provide --archive or --export")
    export_path = Path(args.export)
    if not export_path.exists():
        raise SystemExit(f"Input not found: {export_path}")
    blobs: list[bytes] = []
    for raw in args.log or []:
        path = Path(raw)
        if not path.exists():
            raise SystemExit(f"Input not found: {path}")
        blobs.append(path.read_bytes())
    return export_path.read_bytes(), blobs


def _emit(result: dict[str, Any], out: str | None = None) -> None:
    text = json_dumps(result)
    if out:
        Path(out).write_text(text + "\n", encoding="utf-8")
        print(out)
    else:
        print(text)
    if not result.get("success"):
        raise SystemExit(1)


def cmd_list(args: argparse.Namespace, settings: Settings) -> None:
    logger = _progress_logger(settings)
    if args.archive:
        result = list_archive(_read_archive(args.archive), logger=logger)
    else:
        export_bytes, blobs = _read_inputs(args)
        result = list_workflows(export_bytes, blobs, logger=logger)
    _emit(result, args.out)


def cmd_analyze(args: argparse.Namespace, settings: Settings) -> None:
    logger = _progress_logger(settings)
    workflow_ids = args.workflow_id or list(settings.workflow_ids)
    if args.archive:
        result = analyze_archive(
            _read_archive(args.archive),
            plan=settings.plan,
            actual_usage=settings.actual_usage,
            workflow_ids=workflow_ids,
            top_n=settings.top_n,
            logger=logger,
        )
    else:
        export_bytes, blobs = _read_inputs(args)
        result = analyze_account(
            export_bytes,
            blobs,
            plan=settings.plan,
            actual_usage=settings.actual_usage,
            workflow_ids=workflow_ids,
            top_n=settings.top_n,
            logger=logger,
        )
    _emit(result, args.out)


def cmd_workflow(args: argparse.Namespace, settings: Settings) -> None:
    export_bytes, blobs = _read_inputs(args)
    result = analyze_workflow(
        export_bytes,
        blobs,
        workflow_id=args.workflow_id,
        plan=settings.plan,
        actual_usage=settings.actual_usage,
        logger=_progress_logger(settings),
    )
    _emit(result, args.out)


def cmd_batch(args: argparse.Namespace, settings: Settings) -> None:
    export_bytes, blobs = _read_inputs(args)
    result = analyze_batch(
        export_bytes,
        blobs,
        workflow_ids=args.workflow_id or list(settings.workflow_ids),
        plan=settings.plan,
        actual_usage=settings.actual_usage,
        logger=_progress_logger(settings),
    )
    _emit(result, args.out)


def cmd_verify(metadata_path: str, archive_path: str) -> None:
    try:
        metadata = deserialize_metadata(Path(metadata_path).read_text(encoding="utf-8"))
    except ReauditMetadataError as exc:
        raise SystemExit(f"Invalid re-audit metadata: {exc}")
    if not matches_source(metadata, _read_archive(archive_path)):
        raise SystemExit(f"Hash mismatch for {archive_path}: expected {metadata.file_hash}")
    print(f"{metadata.report_code}: archive matches ({len(metadata.zap_ids_analyzed)} workflow(s))")


def cmd_serve(host: str, port: int) -> None:
    from workflow_audit.ui.server import app

    if not env_flag("ALLOW_NETWORK") and host not in LOCAL_HOSTS:
        raise SystemExit("Network disabled: use localhost or set WORKFLOW_AUDIT_ALLOW_NETWORK=1")
    uvicorn.run(app, host=host, port=port)


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--archive", help="ZIP export containing the export document and CSV logs")
    parser.add_argument("--export", help="Export document (JSON)")
    parser.add_argument("--log", action="append", help="Execution-log CSV; repeatable")
    parser.add_argument("--settings")
    parser.add_argument("--plan")
    parser.add_argument("--usage", type=int)
    parser.add_argument("--out")


def _resolve_settings(args: argparse.Namespace) -> Settings:
    try:
        settings = load_settings(getattr(args, "settings", None))
    except ValidationError as exc:
        raise SystemExit(f"Invalid settings: {exc.message}")
    overrides: dict[str, Any] = {}
    if getattr(args, "plan", None):
        overrides["plan"] = args.plan
    if getattr(args, "usage", None) is not None:
        overrides["actual_usage"] = max(0, args.usage)
    if getattr(args, "top_n", None):
        overrides["top_n"] = args.top_n
    if getattr(args, "progress", False):
        overrides["progress"] = True
    if not overrides:
        return settings
    return replace(settings, **overrides)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="workflow-audit")
    parser.add_argument("--progress", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    list_parser = sub.add_parser("list")
    _add_input_arguments(list_parser)

    analyze_parser = sub.add_parser("analyze")
    _add_input_arguments(analyze_parser)
    analyze_parser.add_argument("--workflow-id", action="append")
    analyze_parser.add_argument("--top-n", type=int)

    workflow_parser = sub.add_parser("workflow")
    _add_input_arguments(workflow_parser)
    workflow_parser.add_argument("--workflow-id", required=True)

    batch_parser = sub.add_parser("batch")
    _add_input_arguments(batch_parser)
    batch_parser.add_argument("--workflow-id", action="append")

    verify_parser = sub.add_parser("verify")
    verify_parser.add_argument("--metadata", required=True)
    verify_parser.add_argument("--archive", required=True)

    serve_parser = sub.add_parser("serve")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    if args.command == "serve":
        cmd_serve(args.host, args.port)
        return
    if args.command == "verify":
        cmd_verify(args.metadata, args.archive)
        return

    settings = _resolve_settings(args)
    if args.command == "list":
        cmd_list(args, settings)
    elif args.command == "analyze":
        cmd_analyze(args, settings)
    elif args.command == "workflow":
        cmd_workflow(args, settings)
    elif args.command == "batch":
        cmd_batch(args, settings)
    else:
        raise SystemExit(2)


if __name__ == "__main__":
    main()
