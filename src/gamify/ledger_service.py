"""Append-only points ledger.

The running balance is taken from an atomic increment on
``user_score_totals`` (``total = total + delta ... RETURNING``) in the same
transaction as the entry insert, so concurrent appends for one user
serialize on that row instead of racing on a read-then-write.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.base import utcnow
from gamify.db.dialect import upsert_insert
from gamify.db.models import LedgerEntry, UserScoreTotal
from gamify.errors import PersistenceError
from gamify.period_service import PeriodService

logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(self, db: AsyncSession, periods: PeriodService) -> None:
        self.db = db
        self.periods = periods

    async def add_points(
        self,
        user_id: int,
        delta: int,
        reason: str,
        related_event_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Append one entry. Flushes; the caller commits.

        Raises PersistenceError if either write fails.
        """
        try:
            new_balance = await self._increment_total(user_id, delta)
            entry = LedgerEntry(
                user_id=user_id,
                points_delta=delta,
                reason=reason,
                related_event_id=related_event_id,
                balance_after=new_balance,
                entry_metadata=metadata,
                entry_date=self.periods.today(),
            )
            self.db.add(entry)
            await self.db.flush()
        except SQLAlchemyError as exc:
            logger.error("Ledger append failed for user %d (%s, %+d)", user_id, reason, delta)
            raise PersistenceError(f"ledger append failed for user {user_id}") from exc
        return entry

    async def _increment_total(self, user_id: int, delta: int) -> int:
        stmt = upsert_insert(self.db, UserScoreTotal).values(
            user_id=user_id,
            total_score=delta,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "total_score": UserScoreTotal.total_score + stmt.excluded.total_score,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UserScoreTotal.total_score)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def get_balance(self, user_id: int) -> int:
        """balance_after of the newest entry, or 0."""
        result = await self.db.execute(
            select(LedgerEntry.balance_after)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.id.desc())
            .limit(1)
        )
        return int(result.scalar_one_or_none() or 0)

    async def get_cached_total(self, user_id: int) -> int:
        result = await self.db.execute(
            select(UserScoreTotal.total_score).where(UserScoreTotal.user_id == user_id)
        )
        return int(result.scalar_one_or_none() or 0)

    async def get_total_by_period(self, user_id: int, start: date, end: date) -> int:
        """Sum of earned (positive) deltas between start and end inclusive."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.points_delta), 0)).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.points_delta > 0,
                LedgerEntry.entry_date >= start,
                LedgerEntry.entry_date <= end,
            )
        )
        return int(result.scalar_one())

    async def get_totals_by_period(self, user_ids: list[int], start: date, end: date) -> dict[int, int]:
        """get_total_by_period for many users in one query. Missing users map to 0."""
        if not user_ids:
            return {}
        result = await self.db.execute(
            select(LedgerEntry.user_id, func.sum(LedgerEntry.points_delta))
            .where(
                LedgerEntry.user_id.in_(user_ids),
                LedgerEntry.points_delta > 0,
                LedgerEntry.entry_date >= start,
                LedgerEntry.entry_date <= end,
            )
            .group_by(LedgerEntry.user_id)
        )
        totals = {uid: 0 for uid in user_ids}
        for uid, total in result.all():
            totals[uid] = int(total or 0)
        return totals

    async def get_history(self, user_id: int, limit: int = 50, offset: int = 0) -> list[LedgerEntry]:
        """Newest first."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_entries_by_period(self, user_id: int, start: date, end: date) -> list[LedgerEntry]:
        """Oldest first."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.entry_date >= start,
                LedgerEntry.entry_date <= end,
            )
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        )
        return list(result.scalars().all())
