"""Period close and housekeeping jobs."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from gamify.db.models import CircleScoreSnapshot, Event, LevelSnapshot, Notification, UserScoreSnapshot
from gamify.period_service import PeriodType
from gamify.scheduled_jobs import ScheduledJobs

LAST_WEEK = date(2026, 2, 23)


@pytest.fixture
def jobs(engine) -> ScheduledJobs:
    return ScheduledJobs(engine)


@pytest_asyncio.fixture
async def last_week_points(engine, make_user, make_circle, clock, db_session):
    """Three circle members who earned 150, 90 and 30 points last week, plus an idle user."""
    circle_id = await make_circle()
    earners = [await make_user(circle_id=circle_id) for _ in range(3)]
    idle = await make_user()

    saved = clock.current
    clock.set(datetime(2026, 2, 25, 9, 0, tzinfo=timezone.utc))
    for uid, points in zip(earners, (150, 90, 30)):
        await engine.ledger.add_points(uid, points, "adjustment")
    await db_session.commit()
    clock.set(saved)
    return circle_id, earners, idle


class TestWeeklyClose:
    @pytest.mark.asyncio
    async def test_snapshots_leagues_and_circles(self, engine, jobs, last_week_points, db_session):
        circle_id, (first, second, third), idle = last_week_points

        summary = await jobs.run_weekly_close()

        assert summary["users"] == 3
        assert summary["circles"] == 1
        assert summary["errors"] == 0
        # first alone in Adapt; second, third and idle share Begin
        assert summary["promoted"] == 4
        assert summary["rewards"] == 50 + 50 + 25

        rankings = await engine.scores.get_rankings(PeriodType.WEEKLY, LAST_WEEK)
        assert [(r.subject_id, r.score, r.rank_position) for r in rankings] == [
            (first, 150, 1),
            (second, 90, 2),
            (third, 30, 3),
        ]

        assert await engine.ledger.get_balance(first) == 200
        assert await engine.ledger.get_balance(second) == 140
        assert await engine.ledger.get_balance(third) == 55
        assert await engine.ledger.get_balance(idle) == 0

        circle_snapshot = (
            await db_session.execute(
                select(CircleScoreSnapshot).where(CircleScoreSnapshot.circle_id == circle_id)
            )
        ).scalar_one()
        assert circle_snapshot.score == 270
        assert circle_snapshot.member_count == 3
        assert circle_snapshot.rank_position == 1
        assert circle_snapshot.period_start == LAST_WEEK

    @pytest.mark.asyncio
    async def test_rerun_changes_nothing(self, engine, jobs, last_week_points, db_session):
        _, earners, idle = last_week_points
        await jobs.run_weekly_close()
        balances = [await engine.ledger.get_balance(uid) for uid in [*earners, idle]]

        again = await jobs.run_weekly_close()

        assert again["rewards"] == 0
        assert again["promoted"] == 0
        assert [await engine.ledger.get_balance(uid) for uid in [*earners, idle]] == balances
        user_rows = await db_session.execute(select(func.count(UserScoreSnapshot.id)))
        assert user_rows.scalar_one() == 3
        level_rows = await db_session.execute(select(func.count(LevelSnapshot.id)))
        assert level_rows.scalar_one() == 4

    @pytest.mark.asyncio
    async def test_nothing_earned_nothing_snapshotted(self, engine, jobs, make_user):
        await make_user()

        summary = await jobs.run_weekly_close()

        assert summary["users"] == 0
        assert summary["rewards"] == 0
        assert await engine.scores.get_rankings(PeriodType.WEEKLY, LAST_WEEK) == []


class TestMonthlyClose:
    @pytest.mark.asyncio
    async def test_previous_month_only(self, engine, jobs, make_user, clock, db_session):
        uid = await make_user()
        saved = clock.current
        clock.set(datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc))
        await engine.ledger.add_points(uid, 40, "adjustment")
        clock.set(saved)
        await engine.ledger.add_points(uid, 15, "adjustment")
        await db_session.commit()

        summary = await jobs.run_monthly_close()

        assert summary == {"users": 1, "circles": 0}
        snapshots = await engine.scores.get_user_snapshots(uid, PeriodType.MONTHLY)
        assert [(s.period_start, s.period_end, s.score) for s in snapshots] == [
            (date(2026, 2, 1), date(2026, 2, 28), 40)
        ]


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_cleanup_keeps_valid_events(self, engine, jobs, make_user, clock, db_session):
        uid = await make_user()
        for photo in range(6):
            await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": photo})

        db_session.add(Notification(
            user_id=uid,
            type="gamification",
            subtype="badge_earned",
            title="old",
            created_at=clock() - timedelta(days=40),
        ))
        await db_session.commit()

        assert await jobs.cleanup_old_events() == {"events": 0, "notifications": 1}

        clock.advance(days=120)
        removed = await jobs.cleanup_old_events()

        assert removed["events"] == 1
        remaining = await db_session.execute(select(Event.status).where(Event.user_id == uid))
        assert set(remaining.scalars().all()) == {"valid"}

    @pytest.mark.asyncio
    async def test_expire_weekly_includes_circle_quests(self, engine, jobs, make_user, make_circle, clock):
        circle_id = await make_circle()
        uid = await make_user(circle_id=circle_id)
        await engine.tasks.get_user_tasks(uid, "weekly")
        await engine.circle_tasks.get_circle_tasks(circle_id)
        clock.advance(days=7)

        assert await jobs.expire_tasks("weekly") == 3 + 3

    @pytest.mark.asyncio
    async def test_reset_weekly_grace(self, engine, jobs, make_user, clock):
        uid = await make_user()
        await engine.streaks.record_activity(uid)
        clock.advance(days=2)
        await engine.streaks.record_activity(uid)
        await engine.db.commit()

        assert await jobs.reset_weekly_grace() == 1
