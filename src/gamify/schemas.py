"""Pydantic result models returned by the engine services."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel


class IngestStatus(StrEnum):
    VALID = "valid"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    UNAVAILABLE = "unavailable"


# --- Ingestion ---


class IngestResult(BaseModel):
    status: IngestStatus
    event_id: int | None = None
    awarded_points: int = 0
    messages: list[str] = []
    daily_remaining: int | None = None
    current_balance: int = 0
    code: int = 200
    rejection_reason: str | None = None
    earned_badges: list[str] = []
    previous_points: int | None = None


# --- Streak ---


class StreakResult(BaseModel):
    current_streak: int
    is_new_milestone: bool = False
    bonus_points: int = 0


class StreakInfo(BaseModel):
    streak_type: str
    current_count: int = 0
    longest_count: int = 0
    last_activity_date: date | None = None
    grace_remaining: int


# --- Badges ---


class ConditionResult(BaseModel):
    passed: bool
    progress: int
    max: int


class EarnedBadge(BaseModel):
    slug: str
    title: str
    tier: str
    category: str


class BadgeProgress(BaseModel):
    slug: str
    title: str
    description: str | None = None
    icon: str | None = None
    category: str
    tier: str
    max_progress: int
    current_progress: int = 0
    is_earned: bool = False
    earned_at: datetime | None = None
    percent: float = 0.0


# --- Quests ---


class TaskProgress(BaseModel):
    slug: str
    title: str
    task_type: str
    period_key: str
    current_value: int
    target_value: int
    status: str
    reward_score: int


class TaskCompletion(BaseModel):
    user_id: int
    slug: str
    task_type: str
    period_key: str
    reward_score: int


class Contributor(BaseModel):
    user_id: int
    display_name: str | None = None
    total_contribution: int


# --- Leagues and rankings ---


class LevelStanding(BaseModel):
    user_id: int
    weekly_score: int
    position: int
    total_members: int
    transition: str = "retain"
    reward: int = 0


class RankingRow(BaseModel):
    subject_id: int
    score: int
    rank_position: int
