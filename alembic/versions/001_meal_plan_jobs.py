"""Users, api tokens and meal plan generation jobs

Revision ID: 001_meal_plan_jobs
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_meal_plan_jobs"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users: billing snapshot + generation counters
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("subscription_status", sa.String(40), nullable=True),
        sa.Column("subscription_plan", sa.String(120), nullable=True),
        sa.Column("generations_used_this_period", sa.Integer, nullable=False, server_default="0"),
        sa.Column("generation_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generations_today", sa.Integer, nullable=False, server_default="0"),
        sa.Column("generations_today_date", sa.Date, nullable=True),
        sa.Column("total_generations_lifetime", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # API tokens (sha256 of the bearer token)
    op.create_table(
        "api_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"])

    # Generation jobs
    op.create_table(
        "meal_plan_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("params", postgresql.JSONB, nullable=False),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_meal_plan_jobs_user_id", "meal_plan_jobs", ["user_id"])
    # Sweeper query: oldest pending first
    op.create_index("ix_meal_plan_jobs_pending_poll", "meal_plan_jobs", ["status", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_meal_plan_jobs_pending_poll", table_name="meal_plan_jobs")
    op.drop_index("ix_meal_plan_jobs_user_id", table_name="meal_plan_jobs")
    op.drop_table("meal_plan_jobs")
    op.drop_index("ix_api_tokens_user_id", table_name="api_tokens")
    op.drop_table("api_tokens")
    op.drop_table("users")
