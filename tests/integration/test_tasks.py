"""Personal quest progress, completion cascade and expiry."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from gamify.db.models import Notification, TaskDefinition, UserTask
from gamify.tasks.definitions import seed_task_definitions


def _by_slug(tasks):
    return {t.slug: t for t in tasks}


class TestProgress:
    @pytest.mark.asyncio
    async def test_exercise_completes_daily_quest(self, engine, make_user):
        uid = await make_user()
        result = await engine.ingest(uid, "exercise_completed", metadata={"exercise_id": 1})

        assert result.awarded_points == 10
        assert "Quest complete: daily_exercise (+10)" in result.messages
        assert result.current_balance == 20

        tasks = _by_slug(await engine.tasks.get_user_tasks(uid))
        assert tasks["daily_exercise"].status == "completed"
        assert tasks["weekly_4_exercise"].current_value == 1
        assert tasks["weekly_4_exercise"].status == "in_progress"
        # one completion counted by the monthly quest, via task_completed
        assert tasks["monthly_50_tasks"].current_value == 1
        assert tasks["daily_exercise"].period_key == "2026-03-04"
        assert tasks["weekly_4_exercise"].period_key == "2026-W10"
        assert tasks["monthly_50_tasks"].period_key == "2026-03"

    @pytest.mark.asyncio
    async def test_second_workout_same_day_counts_once_for_weekly(self, engine, make_user):
        uid = await make_user()
        await engine.ingest(uid, "exercise_completed", metadata={"exercise_id": 1})
        second = await engine.ingest(uid, "exercise_completed", metadata={"exercise_id": 2})

        assert second.current_balance == 30
        tasks = _by_slug(await engine.tasks.get_user_tasks(uid, "weekly"))
        assert tasks["weekly_4_exercise"].current_value == 1
        assert set(tasks) == {"weekly_4_exercise", "weekly_5_nutrition", "weekly_3_mindful"}

    @pytest.mark.asyncio
    async def test_weekly_quest_over_four_days(self, engine, make_user, clock, db_session):
        uid = await make_user()
        # Monday..Thursday of week 2026-W11
        clock.advance(days=5)
        results = []
        for day in range(4):
            results.append(await engine.ingest(uid, "exercise_completed", metadata={"day": day}))
            clock.advance(days=1)

        assert "Quest complete: weekly_4_exercise (+25)" in results[-1].messages
        # 4 x (10 points + 10 daily reward) + 25 weekly reward
        assert results[-1].current_balance == 4 * 20 + 25

        subtypes = (
            await db_session.execute(
                select(Notification.subtype).where(Notification.user_id == uid).order_by(Notification.id)
            )
        ).scalars().all()
        assert subtypes.count("daily_task_completed") == 4
        assert subtypes.count("weekly_task_completed") == 1

    @pytest.mark.asyncio
    async def test_first_week_badge_from_weekly_completion(self, engine, make_user, clock):
        uid = await make_user()
        clock.advance(days=5)
        for day in range(4):
            await engine.ingest(uid, "exercise_completed", metadata={"day": day})
            clock.advance(days=1)

        badge = next(b for b in await engine.badges.get_user_badges(uid) if b.slug == "first_week")
        assert badge.is_earned

    @pytest.mark.asyncio
    async def test_completion_events_do_not_advance_quests_directly(self, engine, make_user):
        uid = await make_user()
        await engine.ingest(uid, "task_completed", metadata={"task_slug": "manual"})

        tasks = _by_slug(await engine.tasks.get_user_tasks(uid, "monthly"))
        assert tasks["monthly_50_tasks"].current_value == 0


class TestDefinitions:
    @pytest.mark.asyncio
    async def test_reseed_keeps_operator_rows(self, engine, db_session):
        row = (
            await db_session.execute(select(TaskDefinition).where(TaskDefinition.slug == "daily_water"))
        ).scalar_one()
        row.source = "dynamic"
        row.reward_score = 12
        await db_session.commit()

        await seed_task_definitions(db_session)
        engine.tasks.invalidate()

        definition = await engine.tasks.get_definition_by_slug("daily_water")
        assert definition.reward_score == 12

    @pytest.mark.asyncio
    async def test_inactive_definition_is_skipped(self, engine, make_user, db_session):
        row = (
            await db_session.execute(select(TaskDefinition).where(TaskDefinition.slug == "daily_exercise"))
        ).scalar_one()
        row.is_active = False
        await db_session.commit()
        engine.tasks.invalidate()

        uid = await make_user()
        result = await engine.ingest(uid, "exercise_completed", metadata={"exercise_id": 1})
        assert result.current_balance == 10
        assert "daily_exercise" not in _by_slug(await engine.tasks.get_user_tasks(uid))


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expire_previous_day(self, engine, make_user, clock, db_session):
        uid = await make_user()
        await engine.tasks.get_user_tasks(uid, "daily")
        clock.advance(days=1)

        expired = await engine.tasks.expire_old_tasks("daily")

        assert expired == 3
        statuses = (
            await db_session.execute(
                select(UserTask.status).where(UserTask.user_id == uid, UserTask.period_key == "2026-03-04")
            )
        ).scalars().all()
        assert set(statuses) == {"expired"}

    @pytest.mark.asyncio
    async def test_completed_and_current_rows_untouched(self, engine, make_user, clock):
        uid = await make_user()
        await engine.ingest(uid, "exercise_completed", metadata={"exercise_id": 1})
        await engine.tasks.get_user_tasks(uid, "daily")
        clock.advance(days=1)
        await engine.tasks.get_user_tasks(uid, "daily")

        # daily_water and daily_content from yesterday; today's rows stay in progress
        assert await engine.tasks.expire_old_tasks("daily") == 2
        assert await engine.tasks.expire_old_tasks("daily") == 0
