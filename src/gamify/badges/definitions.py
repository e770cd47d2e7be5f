"""Static badge catalogue and the merged definition model."""

from __future__ import annotations

from functools import cached_property
from typing import Any

from pydantic import BaseModel

from gamify.badges.conditions import AnyCondition, parse_condition
from gamify.db.models import BadgeDefinition
from gamify.definition_source import DefinitionSource

BADGE_CATEGORIES = ("behavior", "discipline", "social", "milestone")
BADGE_TIERS = ("bronze", "silver", "gold")


class BadgeDef(BaseModel):
    slug: str
    title: str
    description: str | None = None
    icon: str | None = None
    category: str = "behavior"
    tier: str = "bronze"
    max_progress: int = 1
    conditions: dict[str, Any]
    is_active: bool = True
    source: DefinitionSource = DefinitionSource.STATIC

    @cached_property
    def condition(self) -> AnyCondition:
        return parse_condition(self.conditions)

    @classmethod
    def from_row(cls, row: BadgeDefinition) -> BadgeDef:
        return cls(
            slug=row.slug,
            title=row.title,
            description=row.description,
            icon=row.icon,
            category=row.category,
            tier=row.tier,
            max_progress=row.max_progress,
            conditions=row.conditions or {},
            is_active=row.is_active,
            source=DefinitionSource.DYNAMIC,
        )


STATIC_BADGES: list[dict[str, Any]] = [
    # Behavior
    {
        "slug": "early_bird",
        "title": "Early Bird",
        "description": "Complete 10 morning workouts (before 09:00)",
        "icon": "🌅",
        "category": "behavior",
        "tier": "bronze",
        "max_progress": 10,
        "conditions": {
            "type": "COUNT",
            "event": "exercise_completed",
            "target": 10,
            "context_filter": {"time_of_day": "morning"},
        },
    },
    {
        "slug": "water_keeper",
        "title": "Water Keeper",
        "description": "Reach your water goal on 14 different days",
        "icon": "💧",
        "category": "behavior",
        "tier": "bronze",
        "max_progress": 14,
        "conditions": {"type": "COUNT_UNIQUE_DAYS", "event": "water_goal_reached"},
    },
    {
        "slug": "consistency_master",
        "title": "Consistency Master",
        "description": "Keep a 30 day login streak",
        "icon": "🔥",
        "category": "behavior",
        "tier": "gold",
        "max_progress": 30,
        "conditions": {"type": "STREAK", "streak_type": "daily_login", "target": 30},
    },
    # Discipline
    {
        "slug": "weekly_champion",
        "title": "Weekly Champion",
        "description": "Complete a weekly quest 4 weeks in a row",
        "icon": "🏆",
        "category": "discipline",
        "tier": "gold",
        "max_progress": 4,
        "conditions": {"type": "CONSECUTIVE_WEEKS", "event": "weekly_task_completed", "target": 4},
    },
    {
        "slug": "monthly_grinder",
        "title": "Monthly Grinder",
        "description": "Complete 50 quests in a single month",
        "icon": "⚔️",
        "category": "discipline",
        "tier": "silver",
        "max_progress": 50,
        "conditions": {"type": "COUNT_IN_PERIOD", "event": "task_completed", "period": "monthly", "target": 50},
    },
    {
        "slug": "comeback_kid",
        "title": "Comeback Kid",
        "description": "Come back after 7+ days away and stay active for 3 days",
        "icon": "🔄",
        "category": "discipline",
        "tier": "bronze",
        "max_progress": 3,
        "conditions": {"type": "COMEBACK", "min_gap_days": 7, "active_days_after": 3},
    },
    # Social
    {
        "slug": "team_player",
        "title": "Team Player",
        "description": "Contribute at least 10% to 3 different circle quests",
        "icon": "🤝",
        "category": "social",
        "tier": "silver",
        "max_progress": 3,
        "conditions": {"type": "CIRCLE_CONTRIBUTION", "min_contribution_percent": 10, "unique_tasks": 3},
    },
    {
        "slug": "motivator",
        "title": "Motivator",
        "description": "High-five or comment on 10 different people",
        "icon": "🙌",
        "category": "social",
        "tier": "bronze",
        "max_progress": 10,
        "conditions": {"type": "COUNT_UNIQUE_USERS", "events": ["highfive_sent", "comment_created"]},
    },
    {
        "slug": "circle_hero",
        "title": "Circle Hero",
        "description": "Push a circle quest over the line with 20%+ in its last 24 hours",
        "icon": "🦸",
        "category": "social",
        "tier": "gold",
        "max_progress": 1,
        "conditions": {"type": "CIRCLE_HERO", "min_contribution_percent": 20, "completion_window_hours": 24},
    },
    # Milestone
    {
        "slug": "first_week",
        "title": "First Week",
        "description": "Complete your first weekly quest",
        "icon": "🎯",
        "category": "milestone",
        "tier": "bronze",
        "max_progress": 1,
        "conditions": {"type": "COUNT", "event": "weekly_task_completed", "target": 1},
    },
    {
        "slug": "century",
        "title": "Century",
        "description": "Complete 100 quests in total",
        "icon": "💯",
        "category": "milestone",
        "tier": "gold",
        "max_progress": 100,
        "conditions": {"type": "COUNT", "event": "task_completed", "target": 100},
    },
]


def static_badges() -> list[BadgeDef]:
    return [BadgeDef(**data) for data in STATIC_BADGES]
