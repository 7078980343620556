"""Generation quota gate.

Check and mutation are separate: `check_generation_allowed` never writes; it
signals `period_reset_needed` and the caller runs `reset_generation_period`
before creating the job. `increment_generation_count` runs only after a job
completes, as one atomic UPDATE so concurrent generations by the same user
cannot lose counts.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import User
from ..schemas import UsageStatsOut, GenerationUsageOut, DailyUsageOut
from .plans import GENERATION_PERIOD_DAYS, PlanTier, resolve_plan, has_unlimited_generations

logger = logging.getLogger("mealplanner.quota")


@dataclass
class UsageCheckResult:
    allowed: bool
    current_usage: int
    limit: Optional[int]
    remaining: Optional[int]
    plan_tier: PlanTier
    reason: Optional[str] = None  # monthly_limit | daily_limit | period_reset_needed
    period_reset_date: Optional[datetime] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def needs_period_reset(period_start: Optional[datetime], now: datetime) -> bool:
    if period_start is None:
        return True
    return (now - period_start).days >= GENERATION_PERIOD_DAYS


def next_reset_date(period_start: datetime) -> datetime:
    return period_start + timedelta(days=GENERATION_PERIOD_DAYS)


def check_generation_allowed(db: Session, user_id: str, now: Optional[datetime] = None) -> UsageCheckResult:
    """Decide whether `user_id` may start a new generation."""
    now = now or _utc_now()

    try:
        user = db.get(User, user_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Usage check failed to read user {user_id}: {e}")
        user = None

    if user is None:
        # Fail open: availability over strict enforcement
        logger.error(f"Usage check: no readable user record for {user_id}, allowing generation")
        return UsageCheckResult(
            allowed=True, current_usage=0, limit=None, remaining=None, plan_tier="free"
        )

    plan = resolve_plan(user.subscription_status, user.subscription_plan)
    period_start = _as_utc(user.generation_period_start)

    if not has_unlimited_generations(plan.tier) and needs_period_reset(period_start, now):
        return UsageCheckResult(
            allowed=True,
            reason="period_reset_needed",
            current_usage=0,
            limit=plan.monthly_generation_limit,
            remaining=plan.monthly_generation_limit,
            period_reset_date=next_reset_date(now),
            plan_tier=plan.tier,
        )

    if plan.monthly_generation_limit is not None:
        used = user.generations_used_this_period or 0
        limit = plan.monthly_generation_limit
        if used >= limit:
            return UsageCheckResult(
                allowed=False,
                reason="monthly_limit",
                current_usage=used,
                limit=limit,
                remaining=0,
                period_reset_date=next_reset_date(period_start),
                plan_tier=plan.tier,
            )
        return UsageCheckResult(
            allowed=True,
            current_usage=used,
            limit=limit,
            remaining=limit - used,
            period_reset_date=next_reset_date(period_start),
            plan_tier=plan.tier,
        )

    if plan.daily_rate_limit is not None:
        today = now.date()
        used_today = (user.generations_today or 0) if user.generations_today_date == today else 0
        limit = plan.daily_rate_limit
        if used_today >= limit:
            return UsageCheckResult(
                allowed=False,
                reason="daily_limit",
                current_usage=used_today,
                limit=limit,
                remaining=0,
                plan_tier=plan.tier,
            )
        return UsageCheckResult(
            allowed=True,
            current_usage=used_today,
            limit=limit,
            remaining=limit - used_today,
            plan_tier=plan.tier,
        )

    return UsageCheckResult(
        allowed=True,
        current_usage=user.generations_used_this_period or 0,
        limit=None,
        remaining=None,
        plan_tier=plan.tier,
    )


def reset_generation_period(db: Session, user_id: str, now: Optional[datetime] = None) -> None:
    now = now or _utc_now()
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(generations_used_this_period=0, generation_period_start=now)
    )
    db.commit()
    logger.info(f"Generation period reset for user {user_id}")


def increment_generation_count(db: Session, user_id: str, now: Optional[datetime] = None) -> bool:
    """Atomically count one successful generation.

    Returns False when no user row matched. Database errors propagate.
    """
    now = now or _utc_now()
    today = now.date()

    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            generations_used_this_period=User.generations_used_this_period + 1,
            total_generations_lifetime=User.total_generations_lifetime + 1,
            generations_today=case(
                (User.generations_today_date == today, User.generations_today + 1),
                else_=1,
            ),
            generations_today_date=today,
            generation_period_start=func.coalesce(User.generation_period_start, now),
        )
    )
    db.commit()

    if result.rowcount != 1:
        logger.warning(f"Generation count not incremented: user {user_id} not found")
        return False
    return True


def get_usage_stats(db: Session, user_id: str, now: Optional[datetime] = None) -> Optional[UsageStatsOut]:
    """Usage summary for display. None when the user is unknown."""
    now = now or _utc_now()
    user = db.get(User, user_id)
    if user is None:
        return None

    plan = resolve_plan(user.subscription_status, user.subscription_plan)
    period_start = _as_utc(user.generation_period_start)

    used = user.generations_used_this_period or 0
    if not has_unlimited_generations(plan.tier) and needs_period_reset(period_start, now):
        used = 0  # reset happens on the next generation

    daily_used = (user.generations_today or 0) if user.generations_today_date == now.date() else 0
    limit = plan.monthly_generation_limit

    return UsageStatsOut(
        plan_tier=plan.tier,
        plan_name=plan.name,
        generations=GenerationUsageOut(
            used=used,
            limit=limit,
            remaining=max(0, limit - used) if limit is not None else None,
            is_unlimited=limit is None,
        ),
        daily=DailyUsageOut(
            used=daily_used,
            limit=plan.daily_rate_limit,
            is_unlimited=plan.daily_rate_limit is None,
        ),
        period_reset_date=next_reset_date(period_start) if period_start else None,
        total_lifetime=user.total_generations_lifetime or 0,
    )
