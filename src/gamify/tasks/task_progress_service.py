"""Advances user quests from ingested events.

Completion emits ``{type}_task_completed`` and ``task_completed``. Both are
terminal event types, so they never advance quests through ingestion; quests
that count completions (``task_completed``) are advanced here exactly once
per completion with cascading disabled.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.base import utcnow
from gamify.db.models import Event
from gamify.events.sink import EventSink
from gamify.ledger_service import LedgerService
from gamify.notifier import Notifier
from gamify.period_service import PeriodService
from gamify.schemas import IngestStatus, TaskCompletion
from gamify.scoring.rules import TERMINAL_EVENT_TYPES
from gamify.tasks.definitions import TaskDef
from gamify.tasks.task_service import COMPLETED, IN_PROGRESS, TaskService
from gamify.user_directory import UserDirectory

logger = logging.getLogger(__name__)

# Counted at most once per day on weekly/monthly quests
ONCE_PER_DAY_EVENT_TYPES = frozenset({"exercise_completed", "diet_completed"})
COMPLETION_EVENT = "task_completed"


class TaskProgressService:
    def __init__(
        self,
        db: AsyncSession,
        tasks: TaskService,
        ledger: LedgerService,
        periods: PeriodService,
        directory: UserDirectory,
        notifier: Notifier | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self.db = db
        self.tasks = tasks
        self.ledger = ledger
        self.periods = periods
        self.directory = directory
        self.notifier = notifier
        self.sink = sink

    async def process_event(self, user_id: int, event_type: str) -> list[TaskCompletion]:
        """Advance matching quests by one. Returns quests completed by this event."""
        if event_type in TERMINAL_EVENT_TYPES:
            return []
        return await self._advance(user_id, event_type, allow_cascade=True)

    async def _advance(self, user_id: int, event_type: str, *, allow_cascade: bool) -> list[TaskCompletion]:
        completed: list[TaskCompletion] = []

        for definition in await self.tasks.get_definitions():
            if definition.task_type == "circle" or event_type not in definition.scoring_event_types:
                continue
            if (
                definition.task_type in ("weekly", "monthly")
                and event_type in ONCE_PER_DAY_EVENT_TYPES
                and await self._count_today(user_id, event_type) != 1
            ):
                continue

            period_key = self.tasks.current_period_key(definition.task_type)
            task = await self.tasks.get_or_create_user_task(user_id, definition, period_key)
            if task.status != IN_PROGRESS:
                continue

            task.current_value += 1
            if task.current_value >= task.target_value:
                task.status = COMPLETED
                task.completed_at = utcnow()
                await self.db.flush()
                completed.append(await self._complete(user_id, definition, period_key))
            else:
                await self.db.flush()

        if allow_cascade:
            cascaded: list[TaskCompletion] = []
            for _ in range(len(completed)):
                cascaded += await self._advance(user_id, COMPLETION_EVENT, allow_cascade=False)
            completed += cascaded
        return completed

    async def _count_today(self, user_id: int, event_type: str) -> int:
        result = await self.db.execute(
            select(func.count(Event.id)).where(
                Event.user_id == user_id,
                Event.event_type == event_type,
                Event.event_date == self.periods.today(),
                Event.status == IngestStatus.VALID.value,
            )
        )
        return int(result.scalar_one())

    async def _complete(self, user_id: int, definition: TaskDef, period_key: str) -> TaskCompletion:
        logger.info("User %d completed %s task %s (%s)", user_id, definition.task_type, definition.slug, period_key)
        # Professionals complete quests but are never paid
        reward = 0 if await self.directory.is_professional(user_id) else definition.reward_score
        metadata = {
            "task_slug": definition.slug,
            "task_type": definition.task_type,
            "period_key": period_key,
            "reward_score": reward,
        }

        if reward > 0:
            await self.ledger.add_points(user_id, reward, "task_reward", metadata=metadata)

        typed_event = f"{definition.task_type}_task_completed"
        if self.notifier is not None:
            title = f"Quest complete: {definition.title}"
            await self.notifier.notify(user_id, typed_event, {"title": title, **metadata})
        if self.sink is not None:
            await self.sink.ingest(user_id, typed_event, metadata=metadata, source="system")
            await self.sink.ingest(user_id, COMPLETION_EVENT, metadata=metadata, source="system")

        return TaskCompletion(
            user_id=user_id,
            slug=definition.slug,
            task_type=definition.task_type,
            period_key=period_key,
            reward_score=reward,
        )
