import pytest
from datetime import datetime, timedelta, timezone, date
from unittest.mock import MagicMock
from sqlalchemy.exc import SQLAlchemyError

from mealplanner.models import User
from mealplanner.services.plans import resolve_plan
from mealplanner.services.quota import (
    check_generation_allowed,
    get_usage_stats,
    increment_generation_count,
    reset_generation_period,
)
from mealplanner.settings import settings

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# --- Plan resolution ---

@pytest.mark.parametrize("status,plan,expected", [
    (None, None, "free"),
    ("canceled", "price_basic", "free"),
    ("active", None, "free"),
    ("active", "price_basic", "basic"),
    ("trialing", "price_basic", "basic"),
    ("past_due", "price_basic", "free"),
    ("active", "price_legacy_unknown", "basic"),
])
def test_resolve_plan(status, plan, expected):
    assert resolve_plan(status, plan).tier == expected


def test_resolve_plan_ultra(monkeypatch):
    monkeypatch.setattr(settings, "stripe_ultra_price_id", "price_ultra")
    plan = resolve_plan("active", "price_ultra")
    assert plan.tier == "ultra"
    assert plan.daily_rate_limit == 100
    assert plan.monthly_generation_limit is None


# --- Gate ---

def test_free_user_under_limit(db_session, user_factory):
    user_factory("u1", generations_used_this_period=3, generation_period_start=NOW - timedelta(days=2))

    check = check_generation_allowed(db_session, "u1", now=NOW)

    assert check.allowed is True
    assert check.reason is None
    assert check.current_usage == 3
    assert check.limit == 5
    assert check.remaining == 2
    assert check.plan_tier == "free"


def test_free_user_at_monthly_limit(db_session, user_factory):
    start = NOW - timedelta(days=10)
    user_factory("u1", generations_used_this_period=5, generation_period_start=start)

    check = check_generation_allowed(db_session, "u1", now=NOW)

    assert check.allowed is False
    assert check.reason == "monthly_limit"
    assert check.remaining == 0
    assert check.period_reset_date == start + timedelta(days=30)


def test_expired_period_signals_reset(db_session, user_factory):
    user_factory("u1", generations_used_this_period=5, generation_period_start=NOW - timedelta(days=31))

    check = check_generation_allowed(db_session, "u1", now=NOW)

    assert check.allowed is True
    assert check.reason == "period_reset_needed"
    assert check.current_usage == 0
    assert check.remaining == 5


def test_missing_period_start_signals_reset(db_session, user_factory):
    user_factory("u1")
    check = check_generation_allowed(db_session, "u1", now=NOW)
    assert check.reason == "period_reset_needed"


def test_check_does_not_write(db_session, user_factory):
    user_factory("u1", generations_used_this_period=5, generation_period_start=NOW - timedelta(days=31))

    check_generation_allowed(db_session, "u1", now=NOW)

    db_session.expire_all()
    user = db_session.get(User, "u1")
    assert user.generations_used_this_period == 5


def test_basic_daily_cap(db_session, user_factory):
    user_factory(
        "u1",
        subscription_status="active",
        subscription_plan="price_basic",
        generations_today=50,
        generations_today_date=NOW.date(),
    )

    check = check_generation_allowed(db_session, "u1", now=NOW)

    assert check.allowed is False
    assert check.reason == "daily_limit"
    assert check.limit == 50
    assert check.plan_tier == "basic"


def test_daily_counter_from_yesterday_does_not_count(db_session, user_factory):
    user_factory(
        "u1",
        subscription_status="active",
        subscription_plan="price_basic",
        generations_today=50,
        generations_today_date=NOW.date() - timedelta(days=1),
    )

    check = check_generation_allowed(db_session, "u1", now=NOW)

    assert check.allowed is True
    assert check.current_usage == 0
    assert check.remaining == 50


def test_paid_tier_ignores_monthly_counter(db_session, user_factory):
    user_factory(
        "u1",
        subscription_status="trialing",
        subscription_plan="price_basic",
        generations_used_this_period=500,
        generation_period_start=NOW - timedelta(days=90),
    )
    check = check_generation_allowed(db_session, "u1", now=NOW)
    assert check.allowed is True
    assert check.reason is None


def test_unknown_user_fails_open(db_session):
    check = check_generation_allowed(db_session, "nobody", now=NOW)
    assert check.allowed is True
    assert check.plan_tier == "free"


def test_store_error_fails_open():
    db = MagicMock()
    db.get.side_effect = SQLAlchemyError("connection reset")

    check = check_generation_allowed(db, "u1", now=NOW)

    assert check.allowed is True
    db.rollback.assert_called_once()


# --- Mutations ---

def test_reset_generation_period(db_session, user_factory):
    user_factory("u1", generations_used_this_period=5, generation_period_start=NOW - timedelta(days=40))

    reset_generation_period(db_session, "u1", now=NOW)

    user = db_session.get(User, "u1")
    assert user.generations_used_this_period == 0
    assert check_generation_allowed(db_session, "u1", now=NOW).remaining == 5


def test_increment_counts_everything(db_session, user_factory):
    user_factory("u1", generations_used_this_period=2, total_generations_lifetime=10)

    assert increment_generation_count(db_session, "u1", now=NOW) is True

    user = db_session.get(User, "u1")
    assert user.generations_used_this_period == 3
    assert user.total_generations_lifetime == 11
    assert user.generations_today == 1
    assert user.generations_today_date == NOW.date()
    assert user.generation_period_start is not None


def test_increment_same_day_accumulates(db_session, user_factory):
    user_factory("u1", generations_today=4, generations_today_date=NOW.date())

    increment_generation_count(db_session, "u1", now=NOW)
    increment_generation_count(db_session, "u1", now=NOW)

    user = db_session.get(User, "u1")
    assert user.generations_today == 6


def test_increment_new_day_restarts_daily_counter(db_session, user_factory):
    user_factory("u1", generations_today=7, generations_today_date=date(2026, 3, 14))

    increment_generation_count(db_session, "u1", now=NOW)

    user = db_session.get(User, "u1")
    assert user.generations_today == 1
    assert user.generations_today_date == NOW.date()


def test_increment_unknown_user(db_session):
    assert increment_generation_count(db_session, "nobody", now=NOW) is False


def test_usage_stats(db_session, user_factory):
    start = NOW - timedelta(days=3)
    user_factory(
        "u1",
        generations_used_this_period=2,
        generation_period_start=start,
        generations_today=1,
        generations_today_date=NOW.date(),
        total_generations_lifetime=9,
    )

    stats = get_usage_stats(db_session, "u1", now=NOW)

    assert stats.plan_tier == "free"
    assert stats.generations.used == 2
    assert stats.generations.remaining == 3
    assert stats.generations.is_unlimited is False
    assert stats.daily.used == 1
    assert stats.daily.is_unlimited is True
    assert stats.total_lifetime == 9
    assert stats.period_reset_date.replace(tzinfo=timezone.utc) == start + timedelta(days=30)


def test_usage_stats_unknown_user(db_session):
    assert get_usage_stats(db_session, "nobody", now=NOW) is None
