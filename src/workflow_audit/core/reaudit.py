"""Re-audit metadata.

A report can carry enough provenance to be re-run and compared later: the
hash of the archive it was built from, the pricing in force at the time and
the identifiers of the workflows it covered.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Iterable

from .types import PricingResolution
from .utils import bytes_sha256, json_dumps, now_iso, stable_id

METADATA_VERSION = "1.0.0"
_REQUIRED_FIELDS = ("report_code", "zap_ids_analyzed", "file_hash", "pricing_snapshot")


class ReauditMetadataError(ValueError):
    pass


@dataclass(frozen=True)
class PricingSnapshot:
    plan_type: str
    tier_tasks: int
    tier_price: float
    price_per_task: float

    @classmethod
    def from_resolution(cls, pricing: PricingResolution) -> "PricingSnapshot":
        return cls(
            plan_type=pricing.plan,
            tier_tasks=pricing.tier_capacity,
            tier_price=pricing.tier_price,
            price_per_task=pricing.cost_per_unit,
        )


@dataclass(frozen=True)
class ReauditMetadata:
    report_id: int
    report_code: str
    generation_timestamp: str
    pricing_snapshot: PricingSnapshot
    zap_ids_analyzed: tuple[str, ...]
    file_hash: str
    metadata_version: str = METADATA_VERSION

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["zap_ids_analyzed"] = list(self.zap_ids_analyzed)
        return payload


def build_metadata(
    source: bytes,
    pricing: PricingResolution,
    workflow_ids: Iterable[Any],
    generated_at: str | None = None,
) -> ReauditMetadata:
    file_hash = bytes_sha256(source)
    return ReauditMetadata(
        report_id=stable_id(file_hash),
        report_code=f"AUDIT-{file_hash[:8].upper()}",
        generation_timestamp=generated_at or now_iso(),
        pricing_snapshot=PricingSnapshot.from_resolution(pricing),
        zap_ids_analyzed=tuple(str(item) for item in workflow_ids),
        file_hash=file_hash,
    )


def serialize_metadata(metadata: ReauditMetadata) -> str:
    return json_dumps(metadata.as_dict())


def deserialize_metadata(text: str) -> ReauditMetadata:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ReauditMetadataError(f"Failed to parse metadata JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ReauditMetadataError("Metadata must be a JSON object")

    version = payload.get("metadata_version")
    if not version:
        raise ReauditMetadataError("Missing required field: metadata_version")
    if version != METADATA_VERSION:
        raise ReauditMetadataError(
            f'Unsupported metadata version: {version}. Expected "{METADATA_VERSION}"'
        )
    for name in _REQUIRED_FIELDS:
        if name not in payload:
            raise ReauditMetadataError(f"Missing required field: {name}")
    if not isinstance(payload["zap_ids_analyzed"], list):
        raise ReauditMetadataError("Field zap_ids_analyzed must be a list")

    snapshot = payload["pricing_snapshot"]
    if not isinstance(snapshot, dict):
        raise ReauditMetadataError("Field pricing_snapshot must be an object")
    try:
        pricing_snapshot = PricingSnapshot(
            plan_type=str(snapshot["plan_type"]),
            tier_tasks=int(snapshot["tier_tasks"]),
            tier_price=float(snapshot["tier_price"]),
            price_per_task=float(snapshot["price_per_task"]),
        )
        report_id = int(payload.get("report_id") or 0)
    except (KeyError, TypeError, ValueError) as exc:
        raise ReauditMetadataError(f"Invalid metadata field: {exc}") from exc

    return ReauditMetadata(
        report_id=report_id,
        report_code=str(payload["report_code"]),
        generation_timestamp=str(payload.get("generation_timestamp") or ""),
        pricing_snapshot=pricing_snapshot,
        zap_ids_analyzed=tuple(str(item) for item in payload["zap_ids_analyzed"]),
        file_hash=str(payload["file_hash"]),
        metadata_version=version,
    )


def matches_source(metadata: ReauditMetadata, source: bytes) -> bool:
    return metadata.file_hash == bytes_sha256(source)
