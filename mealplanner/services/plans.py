"""Subscription plan tiers and their generation limits."""
from dataclasses import dataclass
from typing import Literal, Optional

from ..settings import settings

PlanTier = Literal["free", "basic", "ultra"]

GENERATION_PERIOD_DAYS = 30


@dataclass(frozen=True)
class PlanConfig:
    name: str
    tier: PlanTier
    monthly_generation_limit: Optional[int]  # None = unlimited
    daily_rate_limit: Optional[int]  # None = no daily cap


PLAN_CONFIGS: dict[str, PlanConfig] = {
    "free": PlanConfig(name="Free", tier="free", monthly_generation_limit=5, daily_rate_limit=None),
    "basic": PlanConfig(name="Basic", tier="basic", monthly_generation_limit=None, daily_rate_limit=50),
    "ultra": PlanConfig(name="Ultra", tier="ultra", monthly_generation_limit=None, daily_rate_limit=100),
}


def tier_from_price_id(price_id: Optional[str]) -> PlanTier:
    if not price_id:
        return "free"
    if settings.stripe_ultra_price_id and price_id == settings.stripe_ultra_price_id:
        return "ultra"
    if settings.stripe_basic_price_id and price_id == settings.stripe_basic_price_id:
        return "basic"
    # Unknown price ids come from legacy/migrated subscriptions; treat as basic
    return "basic"


def resolve_plan(subscription_status: Optional[str], subscription_plan: Optional[str]) -> PlanConfig:
    """Map the billing snapshot onto a plan config.

    Missing or canceled subscriptions are free; only active/trialing ones
    get a paid tier. Anything else (past_due, unpaid, ...) is free.
    """
    if not subscription_status or subscription_status == "canceled" or not subscription_plan:
        return PLAN_CONFIGS["free"]

    if subscription_status in ("active", "trialing"):
        return PLAN_CONFIGS[tier_from_price_id(subscription_plan)]

    return PLAN_CONFIGS["free"]


def has_unlimited_generations(tier: PlanTier) -> bool:
    return PLAN_CONFIGS[tier].monthly_generation_limit is None
