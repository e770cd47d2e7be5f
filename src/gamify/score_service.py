"""Per-period score snapshots and rankings for users and circles.

Snapshots are upserted on (subject, period_type, period_start), so closing
the same period twice replaces rather than duplicates.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import CircleScoreSnapshot, UserScoreSnapshot
from gamify.ledger_service import LedgerService
from gamify.schemas import RankingRow
from gamify.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def assign_rank_positions(rows: list[tuple[int, int]]) -> dict[int, int]:
    """Map row id -> 1-based rank. Score DESC, lower id first on ties.

    Input: list of (row_id, score).
    """
    ordered = sorted(rows, key=lambda r: (-r[1], r[0]))
    return {row_id: idx + 1 for idx, (row_id, _) in enumerate(ordered)}


class ScoreService:
    def __init__(self, db: AsyncSession, ledger: LedgerService, directory: UserDirectory) -> None:
        self.db = db
        self.ledger = ledger
        self.directory = directory

    async def _upsert(self, model: Any, conflict: list[str], values: dict[str, Any], update_cols: list[str]) -> None:
        stmt = upsert_insert(self.db, model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict,
            set_={col: getattr(stmt.excluded, col) for col in update_cols},
        )
        await self.db.execute(stmt)

    async def save_user_score_snapshot(
        self, user_id: int, period_type: str, period_start: date, period_end: date, score: int
    ) -> None:
        await self._upsert(
            UserScoreSnapshot,
            ["user_id", "period_type", "period_start"],
            {
                "user_id": user_id,
                "period_type": period_type,
                "period_start": period_start,
                "period_end": period_end,
                "score": score,
            },
            ["period_end", "score"],
        )

    async def save_circle_score_snapshot(
        self,
        circle_id: int,
        period_type: str,
        period_start: date,
        period_end: date,
        score: int,
        member_count: int,
    ) -> None:
        await self._upsert(
            CircleScoreSnapshot,
            ["circle_id", "period_type", "period_start"],
            {
                "circle_id": circle_id,
                "period_type": period_type,
                "period_start": period_start,
                "period_end": period_end,
                "score": score,
                "member_count": member_count,
            },
            ["period_end", "score", "member_count"],
        )

    async def compute_circle_score(self, circle_id: int, start: date, end: date) -> tuple[int, int]:
        """(sum of members' earned points in range, member count)."""
        members = await self.directory.get_circle_members(circle_id)
        totals = await self.ledger.get_totals_by_period([m.id for m in members], start, end)
        return sum(totals.values()), len(members)

    async def calculate_rankings(self, period_type: str, period_start: date) -> int:
        """Assign rank_position to every user snapshot of the period. Returns rows ranked."""
        result = await self.db.execute(
            select(UserScoreSnapshot).where(
                UserScoreSnapshot.period_type == period_type,
                UserScoreSnapshot.period_start == period_start,
            ).execution_options(populate_existing=True)
        )
        snapshots = list(result.scalars().all())
        ranks = assign_rank_positions([(s.id, s.score) for s in snapshots])
        for snapshot in snapshots:
            snapshot.rank_position = ranks[snapshot.id]
        await self.db.flush()
        return len(snapshots)

    async def calculate_circle_rankings(self, period_type: str, period_start: date) -> int:
        result = await self.db.execute(
            select(CircleScoreSnapshot).where(
                CircleScoreSnapshot.period_type == period_type,
                CircleScoreSnapshot.period_start == period_start,
            ).execution_options(populate_existing=True)
        )
        snapshots = list(result.scalars().all())
        ranks = assign_rank_positions([(s.id, s.score) for s in snapshots])
        for snapshot in snapshots:
            snapshot.rank_position = ranks[snapshot.id]
        await self.db.flush()
        return len(snapshots)

    async def get_rankings(self, period_type: str, period_start: date, limit: int = 50) -> list[RankingRow]:
        result = await self.db.execute(
            select(UserScoreSnapshot)
            .where(
                UserScoreSnapshot.period_type == period_type,
                UserScoreSnapshot.period_start == period_start,
                UserScoreSnapshot.rank_position.is_not(None),
            )
            .order_by(UserScoreSnapshot.rank_position)
            .limit(limit)
        )
        return [
            RankingRow(subject_id=s.user_id, score=s.score, rank_position=s.rank_position)
            for s in result.scalars()
        ]

    async def get_circle_rankings(self, period_type: str, period_start: date, limit: int = 50) -> list[RankingRow]:
        result = await self.db.execute(
            select(CircleScoreSnapshot)
            .where(
                CircleScoreSnapshot.period_type == period_type,
                CircleScoreSnapshot.period_start == period_start,
                CircleScoreSnapshot.rank_position.is_not(None),
            )
            .order_by(CircleScoreSnapshot.rank_position)
            .limit(limit)
        )
        return [
            RankingRow(subject_id=s.circle_id, score=s.score, rank_position=s.rank_position)
            for s in result.scalars()
        ]

    async def get_user_snapshots(self, user_id: int, period_type: str, limit: int = 12) -> list[UserScoreSnapshot]:
        result = await self.db.execute(
            select(UserScoreSnapshot)
            .where(UserScoreSnapshot.user_id == user_id, UserScoreSnapshot.period_type == period_type)
            .order_by(UserScoreSnapshot.period_start.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
