"""Idempotent event intake.

Order of operations per call:

1. validate input (ValidationError, nothing written)
2. schema readiness check (``unavailable`` result, nothing written)
3. idempotency key lookup (``duplicate`` result, nothing written)
4. daily limit check, points from RuleEngine
5. Event insert (ON CONFLICT DO NOTHING on the key; losing a race is a duplicate)
6. ledger append when points > 0, then commit
7. downstream effects, each committed or rolled back on its own
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import Event
from gamify.errors import NotReadyError, PersistenceError, ValidationError
from gamify.ledger_service import LedgerService
from gamify.period_service import PeriodService
from gamify.schemas import IngestResult, IngestStatus
from gamify.scoring.idempotency import build_idempotency_key
from gamify.scoring.rule_engine import RuleEngine
from gamify.user_directory import PROFESSIONAL_ROLE, UserDirectory

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("users", "events", "points_ledger", "user_score_totals")
DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"

_EVENT_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


@dataclass
class IngestContext:
    """What downstream effects see of a freshly recorded valid event."""

    event_id: int
    user_id: int
    event_type: str
    entity_type: str | None
    entity_id: int | None
    metadata: dict[str, Any]
    points: int
    messages: list[str] = field(default_factory=list)
    earned_badges: list[str] = field(default_factory=list)


Effect = Callable[[IngestContext], Awaitable[None]]


class EventIngestionService:
    def __init__(
        self,
        db: AsyncSession,
        rules: RuleEngine,
        ledger: LedgerService,
        periods: PeriodService,
        directory: UserDirectory,
    ) -> None:
        self.db = db
        self.rules = rules
        self.ledger = ledger
        self.periods = periods
        self.directory = directory
        self._effects: list[tuple[str, Effect]] = []
        self._ready = False

    def add_effect(self, name: str, effect: Effect) -> None:
        self._effects.append((name, effect))

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(
        user_id: Any,
        event_type: Any,
        entity_id: Any,
        metadata: Any,
        source: Any,
    ) -> None:
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
            raise ValidationError("user_id", "must be a positive integer")
        if not isinstance(event_type, str) or not _EVENT_TYPE_RE.match(event_type):
            raise ValidationError("event_type", "must be a lowercase snake_case identifier")
        if entity_id is not None and (isinstance(entity_id, bool) or not isinstance(entity_id, int)):
            raise ValidationError("entity_id", "must be an integer")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata", "must be a mapping")
        if not isinstance(source, str) or not source or len(source) > 32:
            raise ValidationError("source", "must be a non-empty string of at most 32 characters")

    async def check_ready(self) -> None:
        """Raise NotReadyError when any required table is missing. Cached once ready."""
        if self._ready:
            return

        def _missing(session: Any) -> list[str]:
            inspector = inspect(session.connection())
            return [name for name in REQUIRED_TABLES if not inspector.has_table(name)]

        missing = await self.db.run_sync(_missing)
        if missing:
            raise NotReadyError(missing)
        self._ready = True

    async def _find_by_key(self, key: str) -> Event | None:
        result = await self.db.execute(select(Event).where(Event.idempotency_key == key))
        return result.scalar_one_or_none()

    async def count_today(self, user_id: int, event_type: str) -> int:
        result = await self.db.execute(
            select(func.count(Event.id)).where(
                Event.user_id == user_id,
                Event.event_type == event_type,
                Event.event_date == self.periods.today(),
                Event.status == IngestStatus.VALID.value,
            )
        )
        return int(result.scalar_one())

    async def _duplicate(self, event: Event) -> IngestResult:
        return IngestResult(
            status=IngestStatus.DUPLICATE,
            event_id=event.id,
            awarded_points=0,
            previous_points=event.points_awarded,
            messages=["This action was already recorded."],
            current_balance=await self.ledger.get_balance(event.user_id),
            code=409,
        )

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def ingest(
        self,
        user_id: int,
        event_type: str,
        entity_type: str | None = None,
        entity_id: int | None = None,
        metadata: dict[str, Any] | None = None,
        source: str = "web",
    ) -> IngestResult:
        self._validate(user_id, event_type, entity_id, metadata, source)
        metadata = dict(metadata or {})

        try:
            await self.check_ready()
        except NotReadyError as exc:
            logger.error("Ingestion unavailable: %s", exc)
            return IngestResult(status=IngestStatus.UNAVAILABLE, messages=[str(exc)], code=503)

        user = await self.directory.get_user(user_id)
        if user is None:
            raise ValidationError("user_id", f"unknown user {user_id}")

        today = self.periods.today()
        key = build_idempotency_key(event_type, user_id, metadata, entity_type, entity_id, today)

        existing = await self._find_by_key(key)
        if existing is not None:
            return await self._duplicate(existing)

        limit = self.rules.daily_limit(event_type)
        used = await self.count_today(user_id, event_type) if limit is not None else 0

        if limit is None or used < limit:
            status = IngestStatus.VALID
            rejection_reason = None
            points = self.rules.calculate_points(event_type, metadata)
            if user.role == PROFESSIONAL_ROLE:
                points = 0
        else:
            status = IngestStatus.REJECTED
            rejection_reason = DAILY_LIMIT_EXCEEDED
            points = 0

        try:
            stmt = upsert_insert(self.db, Event).values(
                user_id=user_id,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                occurred_at=self.periods.now(),
                event_date=today,
                idempotency_key=key,
                source=source,
                status=status.value,
                rejection_reason=rejection_reason,
                points_awarded=points,
                event_metadata=metadata,
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"]).returning(Event.id)
            event_id = (await self.db.execute(stmt)).scalar_one_or_none()

            if event_id is None:
                # Concurrent submission of the same action won the insert
                await self.db.rollback()
                existing = await self._find_by_key(key)
                if existing is None:
                    raise PersistenceError(f"event {key} vanished after conflict")
                return await self._duplicate(existing)

            if status is IngestStatus.VALID and points > 0:
                await self.ledger.add_points(user_id, points, event_type, event_id, metadata or None)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Failed to record %s for user %d", event_type, user_id, exc_info=True)
            raise PersistenceError(f"failed to record {event_type} for user {user_id}") from exc
        except PersistenceError:
            await self.db.rollback()
            raise

        result = IngestResult(
            status=status,
            event_id=event_id,
            awarded_points=points,
            rejection_reason=rejection_reason,
            code=200,
        )
        if limit is not None:
            result.daily_remaining = max(0, limit - used - 1) if status is IngestStatus.VALID else 0

        if status is IngestStatus.VALID:
            message = self.rules.get_message(event_type, points, metadata)
            context = IngestContext(
                event_id=event_id,
                user_id=user_id,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                points=points,
                messages=[message] if message else [],
            )
            await self._run_effects(context)
            result.messages = context.messages
            result.earned_badges = context.earned_badges
        else:
            result.messages = [f"Daily limit reached for {event_type}."]

        result.current_balance = await self.ledger.get_balance(user_id)
        return result

    async def _run_effects(self, context: IngestContext) -> None:
        """Best-effort fan-out. A failing effect is logged and rolled back; the rest still run."""
        for name, effect in self._effects:
            try:
                await effect(context)
                await self.db.commit()
            except Exception:
                logger.exception(
                    "Downstream effect %s failed for event %d (%s, user %d)",
                    name, context.event_id, context.event_type, context.user_id,
                )
                await self.db.rollback()
