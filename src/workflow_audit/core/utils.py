from __future__ import annotations

import hashlib
import json
import math
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

ENV_PREFIX = "WORKFLOW_AUDIT_"
SCHEMAS_DIR = Path(__file__).resolve().parents[1] / "schemas"

_FLOAT_PRECISION = 10
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _canonicalize(value: Any) -> Any:
    if isinstance(value, float):
        return round(value, _FLOAT_PRECISION)
    if isinstance(value, dict):
        return {key: _canonicalize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_canonicalize(item) for item in value]
    if isinstance(value, tuple):
        return [_canonicalize(item) for item in value]
    return value


def json_dumps(data: Any) -> str:
    return json.dumps(
        _canonicalize(data), ensure_ascii=False, indent=2, sort_keys=True
    )


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def load_schema(name: str) -> dict[str, Any]:
    return read_json(SCHEMAS_DIR / name)


def bytes_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def stable_id(text: str) -> int:
    """Deterministic non-negative integer surrogate for a textual identifier.

    Uses the first 60 bits of the SHA-256 digest so the value stays a plain
    positive integer in JSON and sorts like the numeric identifiers it sits
    next to.
    """

    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return int(digest[:15], 16)


def guard_nan(value: float) -> float:
    """Clamp NaN and +/-Infinity to 0.0; finite values pass through."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def safe_ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return guard_nan(float(numerator) / float(denominator))


def decode_text(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="replace")
    else:
        text = str(raw)
    # Excel-style exports prepend a BOM.
    return text.lstrip("\ufeff")


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(f"{ENV_PREFIX}{name}", "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


def env_int(name: str, default: int | None = None, *, min_value: int | None = None) -> int | None:
    raw = os.environ.get(f"{ENV_PREFIX}{name}", "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if min_value is not None and value < min_value:
        return default
    return value


def env_str(name: str, default: str | None = None) -> str | None:
    raw = os.environ.get(f"{ENV_PREFIX}{name}", "").strip()
    return raw or default


def null_logger(msg: str) -> None:
    pass


def resolve_logger(logger: Callable[[str], None] | None) -> Callable[[str], None]:
    return logger if logger is not None else null_logger


_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z])(?=[A-Z])")


def split_camel(text: str) -> str:
    return _CAMEL_BOUNDARY_RE.sub(" ", text)
