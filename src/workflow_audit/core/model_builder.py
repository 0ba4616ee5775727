"""Export document parsing.

Two generations of the export format coexist:

- legacy: steps under a keyed ``nodes`` mapping, workflow fields ``name`` and
  ``state``;
- modern: steps under an ordered ``steps`` (or ``actions``) list, workflow
  fields ``title`` and ``status``.

The document is parsed into an untyped tree first and every logical field is
then resolved from a short ordered list of accepted key names (first present
key wins). Only fields without a sensible default are required.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from .types import DIRECTION_WRITE, ExportDocument, Step, Workflow
from .utils import decode_text, stable_id

WORKFLOW_LIST_KEYS = ("zaps", "workflows")
WORKFLOW_NAME_KEYS = ("title", "name")
WORKFLOW_STATUS_KEYS = ("status", "state")
STEP_LIST_KEYS = ("steps", "actions")
STEP_MAPPING_KEYS = ("nodes",)
STEP_DIRECTION_KEYS = ("type_of", "type")
STEP_INTEGRATION_KEYS = ("selected_api", "app")

_MISSING = object()


class ExportParseError(ValueError):
    def __init__(self, message: str, line: int | None = None, column: int | None = None) -> None:
        self.line = line
        self.column = column
        if line is not None and column is not None:
            message = f"{message} at line {line}, column {column}"
        super().__init__(message)


def first_present(data: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return _MISSING


def coerce_identifier(value: Any) -> int | None:
    """Map a numeric or textual identifier onto the canonical integer space.

    Non-numeric strings (``"step_001"``) fold into a stable surrogate so that
    identity and parent linkage keep working; nothing here raises.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else stable_id(repr(value))
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        try:
            return int(token)
        except ValueError:
            return stable_id(token)
    return None


def _text(value: Any, default: str = "") -> str:
    if value is _MISSING or not isinstance(value, str):
        return default
    return value


def _bool(value: Any) -> bool:
    return value if isinstance(value, bool) else False


def parse_step(data: Any, *, workflow_label: str) -> Step:
    if not isinstance(data, Mapping):
        raise ExportParseError(f"failed to parse step in workflow {workflow_label}: expected an object")
    step_id = coerce_identifier(data.get("id"))
    title = data.get("title")
    return Step(
        id=step_id if step_id is not None else 0,
        parent_id=coerce_identifier(data.get("parent_id")),
        root_id=coerce_identifier(data.get("root_id")),
        direction=_text(first_present(data, STEP_DIRECTION_KEYS), DIRECTION_WRITE),
        integration=_text(first_present(data, STEP_INTEGRATION_KEYS)),
        action=_text(data.get("action")),
        title=title if isinstance(title, str) else None,
        paused=_bool(data.get("paused")),
        params=data.get("params"),
        meta=data.get("meta"),
    )


def _raw_steps(data: Mapping[str, Any]) -> list[Any]:
    listed = first_present(data, STEP_LIST_KEYS)
    if listed is not _MISSING:
        # A list key wins even when it is malformed; it is not a legacy export.
        return list(listed) if isinstance(listed, list) else []
    mapped = first_present(data, STEP_MAPPING_KEYS)
    if isinstance(mapped, Mapping):
        return list(mapped.values())
    return []


def parse_workflow(data: Any, index: int) -> Workflow:
    if not isinstance(data, Mapping):
        raise ExportParseError(f"workflow at index {index} is not an object")
    raw_id = data.get("id")
    workflow_id = coerce_identifier(raw_id)
    if workflow_id is None:
        raise ExportParseError(f"workflow at index {index}: missing field 'id'")
    name = first_present(data, WORKFLOW_NAME_KEYS)
    if not isinstance(name, str):
        raise ExportParseError(f"workflow {raw_id}: missing field 'title' or 'name'")
    status = first_present(data, WORKFLOW_STATUS_KEYS)
    if not isinstance(status, str):
        raise ExportParseError(f"workflow {raw_id}: missing field 'status' or 'state'")
    label = str(raw_id)
    steps = tuple(parse_step(item, workflow_label=label) for item in _raw_steps(data))
    return Workflow(
        id=workflow_id,
        source_id=str(raw_id).strip(),
        name=name,
        status=status,
        steps=steps,
    )


def load_tree(raw: str | bytes) -> Any:
    text = decode_text(raw)
    if not text.strip():
        raise ExportParseError("export document is empty")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExportParseError(f"failed to parse export document: {exc.msg}", exc.lineno, exc.colno) from exc


def parse_export(raw: str | bytes) -> ExportDocument:
    tree = load_tree(raw)
    if not isinstance(tree, Mapping):
        raise ExportParseError("export document root must be an object")
    items = first_present(tree, WORKFLOW_LIST_KEYS)
    if items is _MISSING:
        raise ExportParseError("missing field 'zaps' or 'workflows'")
    if not isinstance(items, list):
        raise ExportParseError("field 'zaps'/'workflows' must be a list")

    metadata = tree.get("metadata")
    version = ""
    if isinstance(metadata, Mapping) and isinstance(metadata.get("version"), str):
        version = metadata["version"]

    workflows: list[Workflow] = []
    seen: set[int] = set()
    for index, item in enumerate(items):
        workflow = parse_workflow(item, index)
        if workflow.id in seen:
            raise ExportParseError(f"duplicate workflow id {workflow.source_id}")
        seen.add(workflow.id)
        workflows.append(workflow)
    return ExportDocument(version=version, workflows=tuple(workflows))
