"""Period-close and housekeeping jobs.

Every job is safe to re-run for the same period: snapshots are upserts,
position rewards go through idempotent ingestion and league transitions
are skipped once a member has moved for that week.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import delete

from gamify.db.models import Event, Notification
from gamify.engine import Engine
from gamify.period_service import PeriodType
from gamify.schemas import IngestStatus

logger = logging.getLogger(__name__)

NOTIFICATION_RETENTION_DAYS = 30


class ScheduledJobs:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.db = engine.db

    # ------------------------------------------------------------------
    # Period close
    # ------------------------------------------------------------------

    async def _snapshot_users(self, period_type: str, start: date, end: date, *, place_in_levels: bool) -> int:
        """Snapshot every user's earned points in [start, end]. Returns users snapshotted."""
        saved = 0
        for user_id in await self.engine.directory.list_user_ids():
            try:
                if place_in_levels:
                    await self.engine.levels.ensure_user_level(user_id)
                score = await self.engine.ledger.get_total_by_period(user_id, start, end)
                if score > 0:
                    await self.engine.scores.save_user_score_snapshot(user_id, period_type, start, end, score)
                    saved += 1
                await self.db.commit()
            except Exception:
                logger.exception("Failed to snapshot %s score for user %d (%s)", period_type, user_id, start)
                await self.db.rollback()

        await self.engine.scores.calculate_rankings(period_type, start)
        await self.db.commit()
        return saved

    async def _snapshot_circles(self, period_type: str, start: date, end: date) -> int:
        saved = 0
        for circle_id in await self.engine.directory.list_circle_ids():
            try:
                score, member_count = await self.engine.scores.compute_circle_score(circle_id, start, end)
                await self.engine.scores.save_circle_score_snapshot(
                    circle_id, period_type, start, end, score, member_count
                )
                await self.db.commit()
                saved += 1
            except Exception:
                logger.exception("Failed to snapshot %s score for circle %d (%s)", period_type, circle_id, start)
                await self.db.rollback()

        await self.engine.scores.calculate_circle_rankings(period_type, start)
        await self.db.commit()
        return saved

    async def run_weekly_close(self) -> dict[str, int]:
        """Close the previous Monday-Sunday week: user scores, leagues, circle scores."""
        start, end = self.engine.periods.previous_week()
        logger.info("Weekly close for %s..%s", start, end)

        users = await self._snapshot_users(PeriodType.WEEKLY, start, end, place_in_levels=True)
        summary = await self.engine.levels.run_weekly(start, end)
        circles = await self._snapshot_circles(PeriodType.WEEKLY, start, end)

        summary.update(users=users, circles=circles)
        logger.info("Weekly close for %s done: %s", start, summary)
        return summary

    async def run_monthly_close(self) -> dict[str, int]:
        """Close the previous calendar month: user and circle scores only."""
        start, end = self.engine.periods.previous_month()
        logger.info("Monthly close for %s..%s", start, end)

        users = await self._snapshot_users(PeriodType.MONTHLY, start, end, place_in_levels=False)
        circles = await self._snapshot_circles(PeriodType.MONTHLY, start, end)

        logger.info("Monthly close for %s done: %d users, %d circles", start, users, circles)
        return {"users": users, "circles": circles}

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def reset_weekly_grace(self) -> int:
        return await self.engine.streaks.reset_weekly_grace()

    async def expire_tasks(self, task_type: str) -> int:
        """Expire unfinished quests of past periods. Weekly also expires circle quests."""
        expired = await self.engine.tasks.expire_old_tasks(task_type)
        if task_type == PeriodType.WEEKLY:
            expired += await self.engine.circle_tasks.expire_old_circle_tasks()
        return expired

    async def cleanup_old_events(self, retention_days: int | None = None) -> dict[str, int]:
        """Drop rejected events past retention and read-or-not notifications past 30 days.

        Valid events are kept: they back idempotency and badge progress.
        """
        retention_days = retention_days or self.engine.settings.event_retention_days
        now = self.engine.periods.now()

        events = await self.db.execute(
            delete(Event).where(
                Event.status != IngestStatus.VALID.value,
                Event.occurred_at < now - timedelta(days=retention_days),
            )
        )
        notifications = await self.db.execute(
            delete(Notification).where(
                Notification.created_at < now - timedelta(days=NOTIFICATION_RETENTION_DAYS)
            )
        )
        await self.db.commit()

        removed = {"events": events.rowcount, "notifications": notifications.rowcount}
        logger.info("Cleanup removed %s", removed)
        return removed
