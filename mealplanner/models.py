"""SQLAlchemy ORM models for the meal plan service.

Tables:
- users: subscription snapshot + generation usage counters (quota gate input)
- api_tokens: hashed bearer tokens resolving to a user id
- meal_plan_jobs: durable generation job records with status tracking
"""

from __future__ import annotations

import uuid
from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Text,
    Integer,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Account row as seen by the generation service.

    Subscription fields are written by the billing integration; the usage
    counters are written only by the quota service.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)

    # Billing snapshot
    subscription_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    subscription_plan: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)  # price id

    # Usage counters
    generations_used_this_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generation_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    generations_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generations_today_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_generations_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    tokens: Mapped[list["ApiToken"]] = relationship(
        "ApiToken", back_populates="user", cascade="all, delete-orphan"
    )


class ApiToken(Base):
    """Bearer token (stored as sha256 hex) bound to a user."""
    __tablename__ = "api_tokens"
    __table_args__ = (
        Index("ix_api_tokens_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="tokens")


class MealPlanJob(Base):
    """One meal plan generation request tracked through its lifecycle."""
    __tablename__ = "meal_plan_jobs"
    __table_args__ = (
        Index("ix_meal_plan_jobs_user_id", "user_id"),
        Index("ix_meal_plan_jobs_pending_poll", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Status: pending | processing | completed | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    params: Mapped[dict] = mapped_column(JSONB, nullable=False)
    result: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
