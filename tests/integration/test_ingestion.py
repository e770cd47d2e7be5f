"""Event ingestion: idempotency, limits, ledger consistency and fan-out."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gamify.db.models import Circle, Event, LedgerEntry
from gamify.engine import build_engine
from gamify.errors import ValidationError
from gamify.schemas import IngestStatus


async def _event_count(db: AsyncSession, user_id: int, event_type: str) -> int:
    result = await db.execute(
        select(func.count(Event.id)).where(Event.user_id == user_id, Event.event_type == event_type)
    )
    return int(result.scalar_one())


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_login_twice_same_day(self, engine, make_user, db_session):
        await make_user(42)

        first = await engine.ingest(42, "login_success")
        assert first.status == IngestStatus.VALID
        assert first.awarded_points == 2
        assert any("2" in m for m in first.messages)
        assert first.daily_remaining == 0
        assert first.current_balance == 2

        second = await engine.ingest(42, "login_success")
        assert second.status == IngestStatus.DUPLICATE
        assert second.awarded_points == 0
        assert second.previous_points == 2
        assert second.event_id == first.event_id
        assert second.code == 409
        assert second.current_balance == 2
        assert await _event_count(db_session, 42, "login_success") == 1

    @pytest.mark.asyncio
    async def test_login_next_day_is_new(self, engine, make_user, clock):
        await make_user(42)
        await engine.ingest(42, "login_success")
        clock.advance(days=1)

        result = await engine.ingest(42, "login_success")
        assert result.status == IngestStatus.VALID
        assert result.current_balance == 4

    @pytest.mark.asyncio
    async def test_losing_concurrent_insert_is_duplicate(self, engine, make_user, db_session, periods, monkeypatch):
        uid = await make_user()
        find_by_key = engine.ingestion._find_by_key
        winner: dict[str, int] = {}

        async def concurrent_writer_wins(key):
            # First lookup misses, then another request commits the same key
            if not winner:
                event = Event(
                    user_id=uid,
                    event_type="rating_submitted",
                    occurred_at=periods.now(),
                    event_date=periods.today(),
                    idempotency_key=key,
                    source="web",
                    status=IngestStatus.VALID.value,
                    points_awarded=20,
                    event_metadata={"product_id": 9},
                )
                db_session.add(event)
                await db_session.commit()
                winner["id"] = event.id
                return None
            return await find_by_key(key)

        monkeypatch.setattr(engine.ingestion, "_find_by_key", concurrent_writer_wins)
        result = await engine.ingest(uid, "rating_submitted", metadata={"product_id": 9})

        assert result.status == IngestStatus.DUPLICATE
        assert result.code == 409
        assert result.event_id == winner["id"]
        assert result.previous_points == 20
        assert await _event_count(db_session, uid, "rating_submitted") == 1
        entries = await db_session.execute(select(func.count(LedgerEntry.id)).where(LedgerEntry.user_id == uid))
        assert entries.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_same_metadata_in_any_order_is_duplicate(self, engine, make_user):
        uid = await make_user()
        await engine.ingest(uid, "rating_submitted", metadata={"product_id": 5, "stars": 4})
        again = await engine.ingest(uid, "rating_submitted", metadata={"stars": 4, "product_id": 5})
        assert again.status == IngestStatus.DUPLICATE

    @pytest.mark.asyncio
    async def test_rejected_event_is_also_deduplicated(self, engine, make_user):
        uid = await make_user()
        for photo in range(5):
            await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": photo})
        rejected = await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": 5})
        again = await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": 5})

        assert rejected.status == IngestStatus.REJECTED
        assert again.status == IngestStatus.DUPLICATE
        assert again.previous_points == 0


class TestPoints:
    @pytest.mark.asyncio
    async def test_diet_override(self, engine, make_user):
        await make_user(7)
        result = await engine.ingest(7, "diet_completed", metadata={"diet_points": 12})
        assert result.status == IngestStatus.VALID
        assert result.awarded_points == 12
        assert result.daily_remaining is None
        assert result.current_balance == 12

    @pytest.mark.asyncio
    async def test_zero_point_event_is_recorded_without_ledger_entry(self, engine, make_user, db_session):
        uid = await make_user()
        result = await engine.ingest(uid, "water_goal_reached")

        assert result.status == IngestStatus.VALID
        assert result.awarded_points == 0
        entries = await db_session.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.related_event_id == result.event_id)
        )
        assert entries.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_professional_earns_nothing(self, engine, make_user):
        uid = await make_user(role="professional")
        result = await engine.ingest(uid, "rating_submitted", metadata={"product_id": 1})

        assert result.status == IngestStatus.VALID
        assert result.awarded_points == 0
        assert result.current_balance == 0

    @pytest.mark.asyncio
    async def test_professional_quest_completion_pays_nothing(self, engine, make_user, db_session):
        uid = await make_user(role="professional")
        result = await engine.ingest(uid, "exercise_completed", metadata={"exercise_id": 1})

        assert result.awarded_points == 0
        assert any("daily_exercise" in m for m in result.messages)
        assert result.current_balance == 0
        entries = await db_session.execute(select(func.count(LedgerEntry.id)).where(LedgerEntry.user_id == uid))
        assert entries.scalar_one() == 0


class TestDailyLimit:
    @pytest.mark.asyncio
    async def test_limit_then_next_day(self, engine, make_user, clock):
        uid = await make_user()
        remaining = []
        for photo in range(5):
            result = await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": photo})
            assert result.status == IngestStatus.VALID
            remaining.append(result.daily_remaining)
        assert remaining == [4, 3, 2, 1, 0]

        over = await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": 5})
        assert over.status == IngestStatus.REJECTED
        assert over.rejection_reason == "daily_limit_exceeded"
        assert over.awarded_points == 0
        assert over.daily_remaining == 0
        assert over.code == 200
        assert over.current_balance == 75

        clock.advance(days=1)
        fresh = await engine.ingest(uid, "meal_photo_uploaded", metadata={"photo_id": 6})
        assert fresh.status == IngestStatus.VALID
        assert fresh.daily_remaining == 4
        assert fresh.current_balance == 90


class TestLedgerConsistency:
    @pytest.mark.asyncio
    async def test_running_balance_matches_deltas(self, engine, make_user, periods):
        uid = await make_user()
        await engine.ingest(uid, "login_success")
        await engine.ingest(uid, "rating_submitted", metadata={"product_id": 1})
        await engine.ingest(uid, "diet_completed", metadata={"diet_points": 12})
        await engine.ingest(uid, "comment_created", entity_type="post", entity_id=9)
        await engine.ledger.add_points(uid, -5, "adjustment")
        await engine.db.commit()

        today = periods.today()
        entries = await engine.ledger.get_entries_by_period(uid, today, today)
        running = 0
        for entry in entries:
            running += entry.points_delta
            assert entry.balance_after == running

        balance = await engine.ledger.get_balance(uid)
        assert balance == running == 2 + 20 + 12 + 2 - 5
        assert await engine.ledger.get_cached_total(uid) == balance
        assert await engine.ledger.get_total_by_period(uid, today, today) == 36

        history = await engine.ledger.get_history(uid, limit=2)
        assert history[0].reason == "adjustment"
        assert history[0].balance_after == balance


class TestValidation:
    @pytest.mark.asyncio
    async def test_bad_input_raises_before_writing(self, engine, make_user, db_session):
        uid = await make_user()
        with pytest.raises(ValidationError):
            await engine.ingest(0, "login_success")
        with pytest.raises(ValidationError):
            await engine.ingest(uid, "Login Success")
        with pytest.raises(ValidationError):
            await engine.ingest(uid, "login_success", metadata=["not", "a", "map"])
        assert await _event_count(db_session, uid, "login_success") == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.ingest(999, "login_success")
        assert exc_info.value.field == "user_id"

    @pytest.mark.asyncio
    async def test_unavailable_without_schema(self, settings, periods):
        bare = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        factory = async_sessionmaker(bare, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            result = await build_engine(session, None, settings, periods).ingest(1, "login_success")
        await bare.dispose()

        assert result.status == IngestStatus.UNAVAILABLE
        assert result.code == 503
        assert result.awarded_points == 0


class TestDownstream:
    @pytest.mark.asyncio
    async def test_comment_like_milestone_once(self, engine, make_user):
        author = await make_user()
        likers = [await make_user() for _ in range(3)]

        def like(count: int) -> dict:
            return {"author_id": author, "comment_id": 99, "like_count": count}

        first = await engine.ingest(likers[0], "comment_liked", entity_type="comment", entity_id=99, metadata=like(3))
        assert first.status == IngestStatus.VALID
        assert first.awarded_points == 0
        assert await engine.ledger.get_balance(author) == 1

        await engine.ingest(likers[1], "comment_liked", entity_type="comment", entity_id=99, metadata=like(4))
        await engine.ingest(likers[2], "comment_liked", entity_type="comment", entity_id=99, metadata=like(3))
        assert await engine.ledger.get_balance(author) == 1
        assert await engine.milestones.get_recorded(author, "comment_likes", 99) == [3]

    @pytest.mark.asyncio
    async def test_like_burst_rewards_every_threshold(self, engine, make_user):
        author = await make_user()
        liker = await make_user()
        await engine.ingest(
            liker, "comment_liked", metadata={"author_id": author, "comment_id": 5, "like_count": 10}
        )
        # 3 -> 1, 7 -> 1, 10 -> 2
        assert await engine.ledger.get_balance(author) == 4

    @pytest.mark.asyncio
    async def test_seven_day_login_streak_bonus(self, engine, make_user, clock):
        uid = await make_user()
        results = []
        for day in range(7):
            if day:
                clock.advance(days=1)
            results.append(await engine.ingest(uid, "login_success"))

        assert all(r.awarded_points == 2 for r in results)
        assert any("7 days in a row" in m for m in results[-1].messages)
        assert results[-1].current_balance == 7 * 2 + 10
        assert (await engine.streaks.get_streak(uid)).current_count == 7

    @pytest.mark.asyncio
    async def test_circle_score_follows_member_points(self, engine, make_user, make_circle, db_session):
        circle_id = await make_circle()
        member = await make_user(circle_id=circle_id)
        coach = await make_user(role="professional", circle_id=circle_id)

        await engine.ingest(member, "rating_submitted", metadata={"product_id": 1})
        await engine.ingest(coach, "rating_submitted", metadata={"product_id": 1})

        circle = await db_session.get(Circle, circle_id, populate_existing=True)
        assert circle.total_score == 20

    @pytest.mark.asyncio
    async def test_failing_effect_does_not_fail_ingest(self, engine, make_user):
        uid = await make_user()

        async def explode(ctx):
            raise RuntimeError("boom")

        engine.ingestion.add_effect("explode", explode)
        result = await engine.ingest(uid, "rating_submitted", metadata={"product_id": 3})

        assert result.status == IngestStatus.VALID
        assert result.current_balance == 20
