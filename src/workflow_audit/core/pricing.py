from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from .types import PricingResolution, PricingTier
from .utils import guard_nan

PRICING_TABLE_VERSION = "2025-01"
BASE_PLAN = "professional"
DEFAULT_ACTUAL_USAGE = 2_000


def _tiers(*rows: tuple[int, float]) -> tuple[PricingTier, ...]:
    return tuple(PricingTier(capacity=capacity, price=price) for capacity, price in rows)


# Monthly task capacity -> monthly price (USD), ascending by capacity.
PRICING_TABLES: Mapping[str, tuple[PricingTier, ...]] = MappingProxyType(
    {
        "professional": _tiers(
            (750, 19.99),
            (1_500, 39.0),
            (2_000, 49.0),
            (5_000, 89.0),
            (10_000, 129.0),
            (20_000, 189.0),
            (50_000, 289.0),
            (100_000, 489.0),
            (200_000, 769.0),
            (300_000, 1_069.0),
            (400_000, 1_269.0),
            (500_000, 1_499.0),
            (750_000, 1_999.0),
            (1_000_000, 2_199.0),
            (1_500_000, 2_999.0),
            (1_750_000, 3_199.0),
            (2_000_000, 3_389.0),
        ),
        "team": _tiers(
            (2_000, 69.0),
            (5_000, 119.0),
            (10_000, 169.0),
            (20_000, 249.0),
            (50_000, 399.0),
            (100_000, 599.0),
            (200_000, 999.0),
            (300_000, 1_199.0),
            (400_000, 1_399.0),
            (500_000, 1_799.0),
            (750_000, 2_199.0),
            (1_000_000, 2_499.0),
            (1_500_000, 3_399.0),
            (1_750_000, 3_799.0),
            (2_000_000, 3_999.0),
        ),
    }
)


class PricingConfigError(RuntimeError):
    """Raised when a tier table would misprice: empty or not strictly ascending."""


class UsageError(ValueError):
    pass


def validate_pricing_tables(tables: Mapping[str, tuple[PricingTier, ...]] | None = None) -> None:
    tables = PRICING_TABLES if tables is None else tables
    if BASE_PLAN not in tables:
        raise PricingConfigError(f"base plan '{BASE_PLAN}' has no tier table")
    for plan, tiers in tables.items():
        if not tiers:
            raise PricingConfigError(f"{plan} pricing tiers are empty")
        for index in range(1, len(tiers)):
            previous, current = tiers[index - 1], tiers[index]
            if current.capacity <= previous.capacity:
                raise PricingConfigError(
                    f"{plan} pricing tiers not sorted: {current.capacity} <= "
                    f"{previous.capacity} at index {index}"
                )


def normalize_plan(plan: str | None) -> str:
    token = str(plan or "").strip().lower()
    if token in PRICING_TABLES:
        return token
    return BASE_PLAN


def select_tier(tiers: tuple[PricingTier, ...], actual_usage: int) -> PricingTier:
    for tier in tiers:
        if tier.capacity >= actual_usage:
            return tier
    return tiers[-1]


def coerce_usage(value: object) -> int:
    if isinstance(value, bool):
        raise UsageError(f"Actual usage must be an integer, got {value!r}")
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError, OverflowError):
        raise UsageError(f"Actual usage must be an integer, got {value!r}") from None


def resolve_pricing(plan: str | None, actual_usage: int | None = None) -> PricingResolution:
    """Resolve the billed tier for `actual_usage` and its effective cost per task.

    Billing always ceilings to the next tier; usage beyond the largest tier is
    priced at the largest tier.
    """

    plan_id = normalize_plan(plan)
    usage = DEFAULT_ACTUAL_USAGE if actual_usage is None else max(0, coerce_usage(actual_usage))
    tier = select_tier(PRICING_TABLES[plan_id], usage)
    cost_per_unit = guard_nan(tier.price / tier.capacity) if tier.capacity > 0 else 0.0
    return PricingResolution(
        plan=plan_id,
        tier_capacity=tier.capacity,
        tier_price=tier.price,
        cost_per_unit=max(0.0, cost_per_unit),
        actual_usage=usage,
    )
