"""Daily streak tracking with weekly grace days."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import Streak
from gamify.period_service import PeriodService
from gamify.schemas import StreakInfo, StreakResult

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PER_WEEK = 2

# streak length -> bonus points
STREAK_BONUSES: dict[int, int] = {
    7: 10,
    14: 25,
    30: 50,
    60: 100,
    90: 150,
}


def next_streak_state(
    current_count: int,
    last_activity: date | None,
    today: date,
    grace_used: int,
    grace_limit: int = DEFAULT_GRACE_PER_WEEK,
) -> tuple[int, int]:
    """Return (new_count, new_grace_used) for activity on ``today``.

    Same day: unchanged. Gap of 1: +1. Gap of 2 with grace left: +1 and one
    grace consumed. Anything else restarts at 1.
    """
    if last_activity is None:
        return 1, grace_used

    gap = (today - last_activity).days
    if gap <= 0:
        return current_count, grace_used
    if gap == 1:
        return current_count + 1, grace_used
    if gap == 2 and grace_used < grace_limit:
        return current_count + 1, grace_used + 1
    return 1, grace_used


def streak_bonus(count: int) -> int:
    return STREAK_BONUSES.get(count, 0)


class StreakService:
    def __init__(
        self,
        db: AsyncSession,
        periods: PeriodService,
        grace_per_week: int = DEFAULT_GRACE_PER_WEEK,
    ) -> None:
        self.db = db
        self.periods = periods
        self.grace_per_week = grace_per_week

    async def _lock_row(self, user_id: int, streak_type: str) -> Streak:
        stmt = upsert_insert(self.db, Streak).values(
            user_id=user_id,
            streak_type=streak_type,
            current_count=0,
            longest_count=0,
            grace_used_this_week=0,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "streak_type"])
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(Streak)
            .where(Streak.user_id == user_id, Streak.streak_type == streak_type)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def record_activity(self, user_id: int, streak_type: str = "daily_login") -> StreakResult:
        """Register today's activity. Flushes; the caller commits."""
        today = self.periods.today()
        streak = await self._lock_row(user_id, streak_type)

        if streak.last_activity_date == today:
            return StreakResult(current_streak=streak.current_count)

        new_count, grace_used = next_streak_state(
            streak.current_count,
            streak.last_activity_date,
            today,
            streak.grace_used_this_week,
            self.grace_per_week,
        )
        if new_count == 1 and streak.current_count > 1:
            logger.info("Streak %s broken for user %d at %d days", streak_type, user_id, streak.current_count)

        streak.current_count = new_count
        streak.longest_count = max(streak.longest_count, new_count)
        streak.last_activity_date = today
        streak.grace_used_this_week = grace_used
        await self.db.flush()

        bonus = streak_bonus(new_count)
        return StreakResult(current_streak=new_count, is_new_milestone=bonus > 0, bonus_points=bonus)

    async def get_streak(self, user_id: int, streak_type: str = "daily_login") -> StreakInfo:
        result = await self.db.execute(
            select(Streak)
            .where(Streak.user_id == user_id, Streak.streak_type == streak_type)
            .execution_options(populate_existing=True)
        )
        streak = result.scalar_one_or_none()
        if streak is None:
            return StreakInfo(streak_type=streak_type, grace_remaining=self.grace_per_week)
        return StreakInfo(
            streak_type=streak_type,
            current_count=streak.current_count,
            longest_count=streak.longest_count,
            last_activity_date=streak.last_activity_date,
            grace_remaining=max(0, self.grace_per_week - streak.grace_used_this_week),
        )

    async def get_current_count(self, user_id: int, streak_type: str) -> int:
        result = await self.db.execute(
            select(Streak.current_count).where(Streak.user_id == user_id, Streak.streak_type == streak_type)
        )
        return int(result.scalar_one_or_none() or 0)

    async def reset_weekly_grace(self) -> int:
        """Zero grace_used_this_week for every row. Returns rows touched."""
        result = await self.db.execute(
            update(Streak).where(Streak.grace_used_this_week != 0).values(grace_used_this_week=0)
        )
        await self.db.commit()
        logger.info("Reset weekly grace on %d streaks", result.rowcount)
        return result.rowcount
