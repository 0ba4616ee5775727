from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import validate

from .utils import env_flag, env_int, env_str, load_schema

SETTINGS_SCHEMA = "settings.schema.json"


@dataclass(frozen=True)
class Settings:
    plan: str = "professional"
    actual_usage: int = 2000
    top_n: int = 10
    workflow_ids: tuple[str, ...] = field(default_factory=tuple)
    progress: bool = False


def _apply_defaults(schema: dict[str, Any], instance: dict[str, Any]) -> dict[str, Any]:
    resolved = copy.deepcopy(instance)
    for key, prop in sorted((schema.get("properties") or {}).items()):
        if key not in resolved and isinstance(prop, dict) and "default" in prop:
            resolved[key] = copy.deepcopy(prop["default"])
    return resolved


def read_settings_file(path: str | Path | None) -> Any:
    if not path:
        return {}
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(content)
    else:
        data = yaml.safe_load(content)
    return data if data is not None else {}


def resolve_settings(raw: Any = None) -> Settings:
    """Apply schema defaults, validate, then let WORKFLOW_AUDIT_* variables override."""

    schema = load_schema(SETTINGS_SCHEMA)
    resolved = _apply_defaults(schema, raw) if isinstance(raw, dict) else raw
    if resolved is None:
        resolved = _apply_defaults(schema, {})
    validate(instance=resolved, schema=schema)

    return Settings(
        plan=env_str("PLAN", resolved["plan"]) or resolved["plan"],
        actual_usage=env_int("ACTUAL_USAGE", resolved["actual_usage"], min_value=0),
        top_n=env_int("TOP_N", resolved["top_n"], min_value=1),
        workflow_ids=tuple(str(item) for item in resolved["workflow_ids"]),
        progress=env_flag("CLI_PROGRESS", bool(resolved["progress"])),
    )


def load_settings(path: str | Path | None = None) -> Settings:
    return resolve_settings(read_settings_file(path))
