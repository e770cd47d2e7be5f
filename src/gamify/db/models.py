"""ORM models for the gamification engine.

All tables are created by the ``001_gamification_core`` Alembic migration.
JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from gamify.db.base import Base, BigIntPK, JSONType, utcnow

# ---------------------------------------------------------------------------
# Directory (read-only for the engine)
# ---------------------------------------------------------------------------


class Circle(Base):
    """A group of users sharing circle quests and a combined score."""

    __tablename__ = "circles"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    total_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member", server_default="member")
    circle_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("circles.id", ondelete="SET NULL"), nullable=True
    )
    attributes: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Events and ledger
# ---------------------------------------------------------------------------


class Event(Base):
    """One recorded user action. Never mutated after creation."""

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_user_type_date", "user_id", "event_type", "event_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="web", server_default="web")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    rejection_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    event_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, server_default="{}")


class LedgerEntry(Base):
    """Append-only point movement. balance_after is the running total."""

    __tablename__ = "points_ledger"
    __table_args__ = (
        Index("ix_points_ledger_user_date", "user_id", "entry_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    related_event_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class UserScoreTotal(Base):
    """Denormalized lifetime total, incremented atomically with each ledger append."""

    __tablename__ = "user_score_totals"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, autoincrement=False
    )
    total_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Streaks and milestones
# ---------------------------------------------------------------------------


class Streak(Base):
    """Consecutive-day activity counter, one row per (user, streak_type)."""

    __tablename__ = "streaks"
    __table_args__ = (
        UniqueConstraint("user_id", "streak_type", name="uq_streaks_user_type"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    streak_type: Mapped[str] = mapped_column(String(32), nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    grace_used_this_week: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class Milestone(Base):
    """Recorded one-off milestone rewards (e.g. comment like thresholds)."""

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "milestone_type", "entity_id", "milestone_value", name="uq_milestones_user_type_entity_value"
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    milestone_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    milestone_value: Mapped[int] = mapped_column(Integer, nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Dynamic badge definitions. Override static defaults sharing a slug."""

    __tablename__ = "badge_definitions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="behavior")
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="bronze")
    max_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class UserBadge(Base):
    """Per-user badge progress. current_progress never decreases."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_slug", name="uq_user_badges_user_slug"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_slug: Mapped[str] = mapped_column(String(64), nullable=False)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_earned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    earned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class TaskDefinition(Base):
    """Dynamic quest definitions. Override static defaults sharing a slug."""

    __tablename__ = "task_definitions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    task_type: Mapped[str] = mapped_column(String(16), nullable=False)
    target_value: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    scoring_event_types: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    reward_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badge_progress_contribution: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="dynamic", server_default="dynamic")


class UserTask(Base):
    """A user's counter for one quest in one period."""

    __tablename__ = "user_tasks"
    __table_args__ = (
        UniqueConstraint("user_id", "task_definition_id", "period_key", name="uq_user_tasks_user_def_period"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_definition_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("task_definitions.id", ondelete="CASCADE"), nullable=False
    )
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="in_progress")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class CircleTask(Base):
    """A circle's shared counter for one quest in one period."""

    __tablename__ = "circle_tasks"
    __table_args__ = (
        UniqueConstraint("circle_id", "task_definition_id", "period_key", name="uq_circle_tasks_circle_def_period"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    circle_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("circles.id", ondelete="CASCADE"), nullable=False)
    task_definition_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("task_definitions.id", ondelete="CASCADE"), nullable=False
    )
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    target_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="in_progress")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class CircleTaskContribution(Base):
    """Per-member, per-day contribution journal for a circle task."""

    __tablename__ = "circle_task_contributions"
    __table_args__ = (
        UniqueConstraint(
            "circle_task_id", "user_id", "contribution_date", name="uq_circle_contrib_task_user_date"
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    circle_task_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("circle_tasks.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    contribution_date: Mapped[date] = mapped_column(Date, nullable=False)
    contribution_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Leagues
# ---------------------------------------------------------------------------


class Level(Base):
    """A league tier. Lower rank_order is a higher tier."""

    __tablename__ = "levels"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    rank_order: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    min_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    max_score: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)


class UserLevel(Base):
    """League membership history. Exactly one is_current row per user."""

    __tablename__ = "user_levels"
    __table_args__ = (
        Index(
            "uq_user_levels_current",
            "user_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    level_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("levels.id", ondelete="CASCADE"), nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transition_type: Mapped[str] = mapped_column(String(16), nullable=False, default="initial")
    week_id: Mapped[str | None] = mapped_column(String(16), nullable=True)


# ---------------------------------------------------------------------------
# Period snapshots
# ---------------------------------------------------------------------------


class LevelSnapshot(Base):
    """A member's closed-week standing inside one league."""

    __tablename__ = "level_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "level_id", "week_start", name="uq_level_snapshots_user_level_week"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    level_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("levels.id", ondelete="CASCADE"), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    week_end: Mapped[date] = mapped_column(Date, nullable=False)
    weekly_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rank_position: Mapped[int] = mapped_column(Integer, nullable=False)
    total_members: Mapped[int] = mapped_column(Integer, nullable=False)
    position_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transition: Mapped[str] = mapped_column(String(16), nullable=False, default="retain")


class UserScoreSnapshot(Base):
    """A user's earned points for one closed period."""

    __tablename__ = "user_score_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "period_type", "period_start", name="uq_user_score_snapshots_period"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rank_position: Mapped[int | None] = mapped_column(Integer, nullable=True)


class CircleScoreSnapshot(Base):
    """A circle's combined member points for one closed period."""

    __tablename__ = "circle_score_snapshots"
    __table_args__ = (
        UniqueConstraint("circle_id", "period_type", "period_start", name="uq_circle_score_snapshots_period"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    circle_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("circles.id", ondelete="CASCADE"), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank_position: Mapped[int | None] = mapped_column(Integer, nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notifications."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    subtype: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    notification_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, server_default="{}"
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
