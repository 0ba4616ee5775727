from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CONFIDENCE_LEVELS = ("high", "medium", "low")

KIND_POLLING_TRIGGER = "polling_trigger"
KIND_LATE_FILTER = "late_filter_placement"
KIND_ERROR_LOOP = "error_loop"

DIRECTION_READ = "read"
DIRECTION_WRITE = "write"

ENABLED_STATUSES = frozenset({"on", "enabled", "active"})


@dataclass(frozen=True)
class Step:
    id: int
    parent_id: int | None
    direction: str
    integration: str
    action: str = ""
    title: str | None = None
    root_id: int | None = None
    paused: bool = False
    params: Any = None
    meta: Any = None

    @property
    def is_write(self) -> bool:
        return self.direction == DIRECTION_WRITE

    @property
    def is_read(self) -> bool:
        return self.direction == DIRECTION_READ


@dataclass(frozen=True)
class UsageStats:
    total_runs: int = 0
    success_count: int = 0
    error_count: int = 0
    error_rate: float = 0.0
    has_history: bool = True
    most_common_error: str | None = None
    error_trend: str | None = None
    max_streak: int = 0
    last_run: str | None = None


@dataclass(frozen=True)
class Workflow:
    id: int
    source_id: str
    name: str
    status: str
    steps: tuple[Step, ...] = ()
    usage: UsageStats | None = None

    @property
    def enabled(self) -> bool:
        return self.status.strip().lower() in ENABLED_STATUSES

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def monthly_tasks(self) -> int:
        # Each run executes every step.
        if self.usage is None:
            return 0
        return self.usage.total_runs * self.step_count

    def matches(self, identifier: Any) -> bool:
        token = str(identifier).strip()
        return token == str(self.id) or token == self.source_id


@dataclass(frozen=True)
class ExportDocument:
    version: str
    workflows: tuple[Workflow, ...]


@dataclass(frozen=True)
class PricingTier:
    capacity: int
    price: float


@dataclass(frozen=True)
class PricingResolution:
    plan: str
    tier_capacity: int
    tier_price: float
    cost_per_unit: float
    actual_usage: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "tier_capacity": self.tier_capacity,
            "tier_price_usd": self.tier_price,
            "cost_per_unit_usd": self.cost_per_unit,
            "actual_usage": self.actual_usage,
        }


@dataclass(frozen=True)
class EfficiencyFinding:
    workflow_id: int
    workflow_name: str
    kind: str
    severity: str
    confidence: str
    estimated_monthly_savings_usd: float
    is_fallback: bool
    message: str
    details: str
    savings_explanation: str
    estimated_effort_hours: float
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def estimated_annual_savings_usd(self) -> float:
        return self.estimated_monthly_savings_usd * 12

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "severity": self.severity,
            "confidence": self.confidence,
            "message": self.message,
            "details": self.details,
            "impact": {
                "estimated_monthly_savings_usd": self.estimated_monthly_savings_usd,
                "estimated_annual_savings_usd": self.estimated_annual_savings_usd,
                "savings_explanation": self.savings_explanation,
            },
            "implementation": {"estimated_effort_hours": self.estimated_effort_hours},
            "is_fallback": self.is_fallback,
            "meta": dict(self.meta),
        }


@dataclass(frozen=True)
class PatternFinding:
    kind: str
    name: str
    affected_workflow_ids: tuple[int, ...]
    total_waste_tasks: int
    total_waste_usd: float
    severity: str
    refactor_guidance: str

    @property
    def affected_count(self) -> int:
        return len(self.affected_workflow_ids)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "affected_workflow_ids": [str(wid) for wid in self.affected_workflow_ids],
            "affected_count": self.affected_count,
            "total_waste_tasks": self.total_waste_tasks,
            "total_waste_usd": self.total_waste_usd,
            "severity": self.severity,
            "refactor_guidance": self.refactor_guidance,
        }
