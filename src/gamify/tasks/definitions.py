"""Quest catalogue and seeding.

Static quests are materialized into ``task_definitions`` with
``source='static'`` so user and circle rows can reference them. Re-seeding
refreshes static rows from this catalogue but never touches rows an operator
has taken over (``source='dynamic'``).
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import TaskDefinition
from gamify.definition_source import DefinitionSource
from gamify.period_service import PeriodType

logger = logging.getLogger(__name__)

TASK_TYPES = ("daily", "weekly", "monthly", "circle")

# Circle quests run on the weekly calendar
TASK_PERIOD: dict[str, PeriodType] = {
    "daily": PeriodType.DAILY,
    "weekly": PeriodType.WEEKLY,
    "monthly": PeriodType.MONTHLY,
    "circle": PeriodType.WEEKLY,
}


class TaskDef(BaseModel):
    id: int
    slug: str
    title: str
    description: str | None = None
    task_type: str
    target_value: int
    scoring_event_types: list[str]
    reward_score: int = 0
    badge_progress_contribution: int = 0
    is_active: bool = True
    source: DefinitionSource = DefinitionSource.STATIC

    @property
    def period_type(self) -> PeriodType:
        return TASK_PERIOD[self.task_type]

    @classmethod
    def from_row(cls, row: TaskDefinition) -> TaskDef:
        return cls(
            id=row.id,
            slug=row.slug,
            title=row.title,
            description=row.description,
            task_type=row.task_type,
            target_value=row.target_value,
            scoring_event_types=list(row.scoring_event_types or []),
            reward_score=row.reward_score,
            badge_progress_contribution=row.badge_progress_contribution,
            is_active=row.is_active,
            source=DefinitionSource(row.source),
        )


STATIC_TASKS: list[dict[str, Any]] = [
    # Daily
    {
        "slug": "daily_water",
        "title": "Hit your water goal",
        "task_type": "daily",
        "target_value": 1,
        "scoring_event_types": ["water_goal_reached"],
        "reward_score": 5,
    },
    {
        "slug": "daily_exercise",
        "title": "Finish one workout",
        "task_type": "daily",
        "target_value": 1,
        "scoring_event_types": ["exercise_completed"],
        "reward_score": 10,
    },
    {
        "slug": "daily_content",
        "title": "Read one article",
        "task_type": "daily",
        "target_value": 1,
        "scoring_event_types": ["blog_points_claimed"],
        "reward_score": 5,
    },
    # Weekly
    {
        "slug": "weekly_4_exercise",
        "title": "Work out on 4 days this week",
        "task_type": "weekly",
        "target_value": 4,
        "scoring_event_types": ["exercise_completed"],
        "reward_score": 25,
        "badge_progress_contribution": 25,
    },
    {
        "slug": "weekly_5_nutrition",
        "title": "Stay on plan 5 days this week",
        "task_type": "weekly",
        "target_value": 5,
        "scoring_event_types": ["nutrition_goal_reached", "diet_completed"],
        "reward_score": 30,
    },
    {
        "slug": "weekly_3_mindful",
        "title": "Three mindful sessions",
        "task_type": "weekly",
        "target_value": 3,
        "scoring_event_types": ["mindful_exercise_completed"],
        "reward_score": 20,
    },
    # Monthly
    {
        "slug": "monthly_20_active_days",
        "title": "Be active on 20 days this month",
        "task_type": "monthly",
        "target_value": 20,
        "scoring_event_types": ["login_success"],
        "reward_score": 100,
        "badge_progress_contribution": 100,
    },
    {
        "slug": "monthly_50_tasks",
        "title": "Complete 50 quests this month",
        "task_type": "monthly",
        "target_value": 50,
        "scoring_event_types": ["task_completed"],
        "reward_score": 150,
    },
    # Circle
    {
        "slug": "circle_150_exercise",
        "title": "150 circle workouts",
        "task_type": "circle",
        "target_value": 150,
        "scoring_event_types": ["exercise_completed"],
        "reward_score": 50,
    },
    {
        "slug": "circle_300k_steps",
        "title": "300,000 steps together",
        "task_type": "circle",
        "target_value": 300000,
        "scoring_event_types": ["steps_logged"],
        "reward_score": 75,
    },
    {
        "slug": "circle_20_day_streak",
        "title": "20 active circle days",
        "task_type": "circle",
        "target_value": 20,
        "scoring_event_types": ["circle_daily_active"],
        "reward_score": 100,
    },
]


async def seed_task_definitions(db: AsyncSession) -> int:
    """Upsert the static catalogue. Returns number of definitions written."""
    seeded = 0
    for task_data in STATIC_TASKS:
        values = {
            "description": None,
            "badge_progress_contribution": 0,
            "is_active": True,
            **task_data,
            "source": DefinitionSource.STATIC.value,
        }
        stmt = upsert_insert(db, TaskDefinition).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "title": stmt.excluded.title,
                "task_type": stmt.excluded.task_type,
                "target_value": stmt.excluded.target_value,
                "scoring_event_types": stmt.excluded.scoring_event_types,
                "reward_score": stmt.excluded.reward_score,
                "badge_progress_contribution": stmt.excluded.badge_progress_contribution,
            },
            where=TaskDefinition.source == DefinitionSource.STATIC.value,
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d task definitions", seeded)
    return seeded
