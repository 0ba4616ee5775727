from __future__ import annotations

import io
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np
import pandas as pd

from .model_builder import coerce_identifier
from .types import UsageStats
from .utils import decode_text, guard_nan, safe_ratio

WORKFLOW_ID_COLUMNS = ("zap_id", "workflow_id")
STATUS_COLUMNS = ("status",)
MESSAGE_COLUMNS = ("error_message", "error")
TIMESTAMP_COLUMNS = ("timestamp",)

SUCCESS_STATUSES = frozenset({"success"})
ERROR_STATUSES = frozenset({"error", "failed", "failure"})

TREND_INCREASING_FACTOR = 1.2
TREND_DECREASING_FACTOR = 0.8


@dataclass(frozen=True)
class Execution:
    is_success: bool
    is_error: bool
    message: str | None
    timestamp: str | None


def _cell(value: Any) -> str | None:
    """Cell text, or None when the row was too short to carry the field."""

    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    return str(value).strip()


def _find_column(columns: list[Any], names: Iterable[str]) -> Any | None:
    lowered = [(col, str(col).strip().lower()) for col in columns]
    for name in names:
        for col, lower in lowered:
            if lower == name:
                return col
    return None


def read_log_frame(raw: str | bytes) -> pd.DataFrame | None:
    text = decode_text(raw)
    if not text.strip():
        return None
    try:
        return pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            index_col=False,
            on_bad_lines="skip",
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError):
        return None


def is_execution_log(frame: pd.DataFrame) -> bool:
    columns = list(frame.columns)
    return (
        _find_column(columns, WORKFLOW_ID_COLUMNS) is not None
        and _find_column(columns, STATUS_COLUMNS) is not None
    )


def extract_executions(frame: pd.DataFrame) -> list[tuple[int, Execution]]:
    columns = list(frame.columns)
    id_col = _find_column(columns, WORKFLOW_ID_COLUMNS)
    status_col = _find_column(columns, STATUS_COLUMNS)
    if id_col is None or status_col is None:
        return []
    message_col = _find_column(columns, MESSAGE_COLUMNS)
    timestamp_col = _find_column(columns, TIMESTAMP_COLUMNS)

    # Positional access keeps duplicate/mangled header names out of the way.
    positions = [columns.index(id_col), columns.index(status_col)]
    positions.append(columns.index(message_col) if message_col is not None else -1)
    positions.append(columns.index(timestamp_col) if timestamp_col is not None else -1)

    out: list[tuple[int, Execution]] = []
    for row in frame.itertuples(index=False, name=None):
        raw_id, raw_status, raw_message, raw_ts = (
            row[pos] if pos >= 0 else None for pos in positions
        )
        id_text = _cell(raw_id)
        status = _cell(raw_status)
        if not id_text or not status:
            continue
        workflow_id = coerce_identifier(id_text)
        if workflow_id is None:
            continue
        status = status.lower()
        is_error = status in ERROR_STATUSES
        message = _cell(raw_message) if is_error else None
        timestamp = _cell(raw_ts)
        out.append(
            (
                workflow_id,
                Execution(
                    is_success=status in SUCCESS_STATUSES,
                    is_error=is_error,
                    message=message or None,
                    timestamp=timestamp or None,
                ),
            )
        )
    return out


def classify_trend(error_flags: np.ndarray) -> str | None:
    total = int(error_flags.size)
    mid = total // 2
    if mid == 0:
        return None
    first_rate = guard_nan(float(error_flags[:mid].sum()) / mid)
    second_rate = guard_nan(float(error_flags[mid:].sum()) / (total - mid))
    if second_rate > first_rate * TREND_INCREASING_FACTOR:
        return "increasing"
    if second_rate < first_rate * TREND_DECREASING_FACTOR:
        return "decreasing"
    return "stable"


def longest_error_streak(error_flags: np.ndarray) -> int:
    longest = 0
    current = 0
    for flag in error_flags:
        if flag:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def _chronological(executions: list[Execution]) -> list[Execution]:
    if executions and all(item.timestamp for item in executions):
        # ISO-8601 strings sort lexicographically; sorted() is stable on ties.
        return sorted(executions, key=lambda item: item.timestamp or "")
    return executions


def summarize_executions(executions: list[Execution]) -> UsageStats:
    total = len(executions)
    success_count = sum(1 for item in executions if item.is_success)
    error_count = sum(1 for item in executions if item.is_error)

    file_order = np.fromiter((item.is_error for item in executions), dtype=bool, count=total)
    chrono = _chronological(executions)
    chrono_flags = np.fromiter((item.is_error for item in chrono), dtype=bool, count=total)

    errors = Counter(item.message for item in executions if item.message)
    most_common = errors.most_common(1)[0][0] if errors else None
    timestamps = [item.timestamp for item in executions if item.timestamp]

    return UsageStats(
        total_runs=total,
        success_count=success_count,
        error_count=error_count,
        error_rate=safe_ratio(error_count * 100.0, total),
        has_history=True,
        most_common_error=most_common,
        error_trend=classify_trend(chrono_flags),
        max_streak=longest_error_streak(file_order),
        last_run=max(timestamps) if timestamps else None,
    )


def aggregate_usage(blobs: Iterable[str | bytes] | None) -> dict[int, UsageStats]:
    """Aggregate execution-log CSV blobs into per-workflow usage statistics.

    A blob only counts as an execution log when its header carries both a
    workflow identifier column and a status column. Anything else (reference
    listings of download URLs, unreadable text) is skipped without error.
    """

    grouped: dict[int, list[Execution]] = {}
    for raw in blobs or ():
        frame = read_log_frame(raw)
        if frame is None or not is_execution_log(frame):
            continue
        for workflow_id, execution in extract_executions(frame):
            grouped.setdefault(workflow_id, []).append(execution)
    return {
        workflow_id: summarize_executions(executions)
        for workflow_id, executions in grouped.items()
    }
