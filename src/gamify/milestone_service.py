"""Comment like-count milestones, each rewarded once per comment."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import Milestone

logger = logging.getLogger(__name__)

COMMENT_LIKE_MILESTONES: dict[int, int] = {
    3: 1,
    7: 1,
    10: 2,
    25: 2,
    50: 5,
    100: 5,
    150: 5,
}
RECURRING_STEP = 50
RECURRING_POINTS = 5


def crossed_like_thresholds(like_count: int) -> dict[int, int]:
    """Every threshold at or below like_count -> bonus points.

    Past the table, each further multiple of 50 is worth 5.
    """
    crossed = {t: p for t, p in COMMENT_LIKE_MILESTONES.items() if like_count >= t}
    last_fixed = max(COMMENT_LIKE_MILESTONES)
    for threshold in range(last_fixed + RECURRING_STEP, like_count + 1, RECURRING_STEP):
        crossed[threshold] = RECURRING_POINTS
    return crossed


class MilestoneService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def record(self, user_id: int, milestone_type: str, entity_id: int, value: int, points: int) -> bool:
        """Insert the milestone. False if it was already recorded."""
        stmt = upsert_insert(self.db, Milestone).values(
            user_id=user_id,
            milestone_type=milestone_type,
            entity_id=entity_id,
            milestone_value=value,
            points_awarded=points,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["user_id", "milestone_type", "entity_id", "milestone_value"]
        ).returning(Milestone.id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def check_comment_likes(self, author_id: int, comment_id: int, like_count: int) -> list[tuple[int, int]]:
        """Record newly crossed thresholds. Returns [(threshold, points), ...] ascending.

        Bursts (e.g. 162 -> 210) still reward every threshold passed on the way.
        """
        new: list[tuple[int, int]] = []
        for threshold, points in sorted(crossed_like_thresholds(like_count).items()):
            if await self.record(author_id, "comment_likes", comment_id, threshold, points):
                new.append((threshold, points))
        if new:
            logger.info(
                "Comment %d by user %d crossed like milestones %s",
                comment_id, author_id, [t for t, _ in new],
            )
        return new

    async def get_recorded(self, user_id: int, milestone_type: str, entity_id: int) -> list[int]:
        result = await self.db.execute(
            select(Milestone.milestone_value)
            .where(
                Milestone.user_id == user_id,
                Milestone.milestone_type == milestone_type,
                Milestone.entity_id == entity_id,
            )
            .order_by(Milestone.milestone_value)
        )
        return list(result.scalars().all())
