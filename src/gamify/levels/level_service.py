"""League membership, weekly standings and promotion/demotion.

Weekly close runs in two phases so that members moving between tiers are
never ranked twice in the same week:

1. For every level, freeze standings into ``level_snapshots``. If the week
   already has snapshots for a level they are reused as-is.
2. Apply position rewards (through ingestion, idempotent by key) and tier
   transitions. A member whose current membership row already carries this
   week's id has been moved and is skipped.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.base import utcnow
from gamify.db.dialect import upsert_insert
from gamify.db.models import Level, LevelSnapshot, UserLevel
from gamify.events.sink import EventSink
from gamify.levels.definitions import (
    DEMOTE,
    INITIAL,
    PROMOTE,
    Tier,
    decide_transition,
    position_reward,
    rank_members,
)
from gamify.ledger_service import LedgerService
from gamify.notifier import Notifier
from gamify.period_service import get_week_iso
from gamify.schemas import IngestStatus, LevelStanding

logger = logging.getLogger(__name__)


class LevelService:
    def __init__(
        self,
        db: AsyncSession,
        ledger: LedgerService,
        notifier: Notifier | None = None,
        sink: EventSink | None = None,
        promote_count: int = 5,
        demote_count: int = 5,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.notifier = notifier
        self.sink = sink
        self.promote_count = promote_count
        self.demote_count = demote_count

    # ------------------------------------------------------------------
    # Tiers and membership
    # ------------------------------------------------------------------

    async def get_levels(self) -> list[Level]:
        result = await self.db.execute(select(Level).order_by(Level.rank_order))
        return list(result.scalars().all())

    async def get_level_for_score(self, score: int) -> Level | None:
        result = await self.db.execute(
            select(Level)
            .where(
                Level.min_score <= score,
                (Level.max_score.is_(None)) | (Level.max_score >= score),
            )
            .order_by(Level.rank_order)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_current_user_level(self, user_id: int) -> UserLevel | None:
        result = await self.db.execute(
            select(UserLevel)
            .where(UserLevel.user_id == user_id, UserLevel.is_current.is_(True))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_level_history(self, user_id: int) -> list[UserLevel]:
        result = await self.db.execute(
            select(UserLevel).where(UserLevel.user_id == user_id).order_by(UserLevel.id)
        )
        return list(result.scalars().all())

    async def get_level_members(self, level_id: int, settled_week: str | None = None) -> list[int]:
        """Current member ids. ``settled_week`` leaves out members who moved in when that week closed."""
        conditions = [UserLevel.level_id == level_id, UserLevel.is_current.is_(True)]
        if settled_week is not None:
            conditions.append(UserLevel.week_id.is_(None) | (UserLevel.week_id != settled_week))
        result = await self.db.execute(
            select(UserLevel.user_id)
            .where(*conditions)
            .order_by(UserLevel.user_id)
        )
        return list(result.scalars().all())

    async def assign_user_to_level(
        self, user_id: int, level_id: int, transition_type: str, week_id: str | None = None
    ) -> UserLevel:
        """Close the current membership row and open a new one. Flushes."""
        now = utcnow()
        await self.db.execute(
            update(UserLevel)
            .where(UserLevel.user_id == user_id, UserLevel.is_current.is_(True))
            .values(is_current=False, left_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.flush()

        membership = UserLevel(
            user_id=user_id,
            level_id=level_id,
            is_current=True,
            joined_at=now,
            transition_type=transition_type,
            week_id=week_id,
        )
        self.db.add(membership)
        await self.db.flush()
        return membership

    async def ensure_user_level(self, user_id: int) -> UserLevel | None:
        """Place a user with no league into the tier matching their lifetime total."""
        current = await self.get_current_user_level(user_id)
        if current is not None:
            return current
        level = await self.get_level_for_score(await self.ledger.get_balance(user_id))
        if level is None:
            return None
        logger.info("Initial league %s for user %d", level.slug, user_id)
        return await self.assign_user_to_level(user_id, level.id, INITIAL)

    # ------------------------------------------------------------------
    # Weekly standings
    # ------------------------------------------------------------------

    async def calculate_positions(
        self, level: Tier, levels: list[Tier], week_start: date, week_end: date
    ) -> list[LevelStanding]:
        """Rank current members by earned points in the week and decide movement."""
        members = await self.get_level_members(level.id, settled_week=get_week_iso(week_start))
        scores = await self.ledger.get_totals_by_period(members, week_start, week_end)
        has_higher = any(lv.rank_order < level.rank_order for lv in levels)
        has_lower = any(lv.rank_order > level.rank_order for lv in levels)

        ranked = rank_members(scores)
        total = len(ranked)
        return [
            LevelStanding(
                user_id=user_id,
                weekly_score=score,
                position=position,
                total_members=total,
                transition=decide_transition(
                    position, total, has_higher, has_lower, self.promote_count, self.demote_count
                ),
                reward=position_reward(position),
            )
            for user_id, score, position in ranked
        ]

    async def save_level_snapshot(
        self, level_id: int, week_start: date, week_end: date, standing: LevelStanding
    ) -> None:
        stmt = upsert_insert(self.db, LevelSnapshot).values(
            user_id=standing.user_id,
            level_id=level_id,
            week_start=week_start,
            week_end=week_end,
            weekly_score=standing.weekly_score,
            rank_position=standing.position,
            total_members=standing.total_members,
            position_reward=standing.reward,
            transition=standing.transition,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "level_id", "week_start"],
            set_={
                "week_end": stmt.excluded.week_end,
                "weekly_score": stmt.excluded.weekly_score,
                "rank_position": stmt.excluded.rank_position,
                "total_members": stmt.excluded.total_members,
                "position_reward": stmt.excluded.position_reward,
                "transition": stmt.excluded.transition,
            },
        )
        await self.db.execute(stmt)

    async def get_snapshots(self, level_id: int, week_start: date) -> list[LevelSnapshot]:
        result = await self.db.execute(
            select(LevelSnapshot)
            .where(LevelSnapshot.level_id == level_id, LevelSnapshot.week_start == week_start)
            .order_by(LevelSnapshot.rank_position)
        )
        return list(result.scalars().all())

    async def freeze_standings(
        self, level: Tier, levels: list[Tier], week_start: date, week_end: date
    ) -> list[LevelStanding]:
        existing = await self.get_snapshots(level.id, week_start)
        if existing:
            return [
                LevelStanding(
                    user_id=s.user_id,
                    weekly_score=s.weekly_score,
                    position=s.rank_position,
                    total_members=s.total_members,
                    transition=s.transition,
                    reward=s.position_reward,
                )
                for s in existing
            ]

        standings = await self.calculate_positions(level, levels, week_start, week_end)
        for standing in standings:
            await self.save_level_snapshot(level.id, week_start, week_end, standing)
        await self.db.commit()
        return standings

    # ------------------------------------------------------------------
    # Rewards and transitions
    # ------------------------------------------------------------------

    async def apply_position_reward(self, level: Tier, standing: LevelStanding, week_start: date) -> int:
        """Ingest the position bonus. Re-running the week is a duplicate, not a second award."""
        if standing.reward <= 0 or standing.weekly_score <= 0 or self.sink is None:
            return 0
        metadata = {
            "position": standing.position,
            "points": standing.reward,
            "week_start": week_start.isoformat(),
            "level_id": level.id,
        }
        result = await self.sink.ingest(
            standing.user_id, "level_position_rewarded", metadata=metadata, source="system"
        )
        if result.status == IngestStatus.VALID and self.notifier is not None:
            await self.notifier.notify(
                standing.user_id,
                "level_position_rewarded",
                {"title": f"#{standing.position} in {level.name}", **metadata},
            )
            await self.db.commit()
        return result.awarded_points

    def _target_level(self, level: Tier, levels: list[Tier], transition: str) -> Tier:
        if transition == PROMOTE:
            higher = [lv for lv in levels if lv.rank_order < level.rank_order]
            return max(higher, key=lambda lv: lv.rank_order) if higher else level
        if transition == DEMOTE:
            lower = [lv for lv in levels if lv.rank_order > level.rank_order]
            return min(lower, key=lambda lv: lv.rank_order) if lower else level
        return level

    async def apply_transition(
        self, level: Tier, levels: list[Tier], standing: LevelStanding, week_start: date
    ) -> str | None:
        """Move the member per the frozen standing. None when already applied."""
        week_id = get_week_iso(week_start)
        current = await self.get_current_user_level(standing.user_id)
        if current is None or current.level_id != level.id or current.week_id == week_id:
            return None

        target = self._target_level(level, levels, standing.transition)
        await self.assign_user_to_level(standing.user_id, target.id, standing.transition, week_id)

        payload = {
            "title": f"League {standing.transition}: {target.name}",
            "from_level": level.slug,
            "to_level": target.slug,
            "position": standing.position,
            "week_start": week_start.isoformat(),
        }
        if self.notifier is not None:
            await self.notifier.notify(standing.user_id, f"level_{standing.transition}", payload)
        await self.db.commit()

        if self.sink is not None:
            await self.sink.ingest(
                standing.user_id,
                f"level_{standing.transition}",
                metadata={k: v for k, v in payload.items() if k != "title"},
                source="system",
            )
        return standing.transition

    async def run_weekly(self, week_start: date, week_end: date) -> dict[str, int]:
        """Close one week for every league. One failing member or league does not stop the rest."""
        levels = [Tier.from_row(row) for row in await self.get_levels()]
        summary = {"levels": 0, "members": 0, "rewards": 0, "promoted": 0, "demoted": 0, "errors": 0}

        frozen: list[tuple[Tier, list[LevelStanding]]] = []
        for level in levels:
            try:
                frozen.append((level, await self.freeze_standings(level, levels, week_start, week_end)))
            except Exception:
                logger.exception("Failed to freeze standings for level %s week %s", level.slug, week_start)
                await self.db.rollback()
                summary["errors"] += 1

        for level, standings in frozen:
            summary["levels"] += 1
            for standing in standings:
                summary["members"] += 1
                try:
                    summary["rewards"] += await self.apply_position_reward(level, standing, week_start)
                    moved = await self.apply_transition(level, levels, standing, week_start)
                    if moved == PROMOTE:
                        summary["promoted"] += 1
                    elif moved == DEMOTE:
                        summary["demoted"] += 1
                except Exception:
                    logger.exception(
                        "Failed to close week %s for user %d in level %s", week_start, standing.user_id, level.slug
                    )
                    await self.db.rollback()
                    summary["errors"] += 1
        return summary
