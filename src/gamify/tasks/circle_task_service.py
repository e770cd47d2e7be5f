"""Circle (group) quests: per-member daily contribution journal and shared rewards."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.base import utcnow
from gamify.db.dialect import upsert_insert
from gamify.db.models import CircleTask, CircleTaskContribution, TaskDefinition, User
from gamify.events.sink import EventSink
from gamify.ledger_service import LedgerService
from gamify.notifier import Notifier
from gamify.period_service import PeriodService
from gamify.schemas import Contributor
from gamify.scoring.rules import TERMINAL_EVENT_TYPES
from gamify.tasks.definitions import TaskDef
from gamify.tasks.task_service import COMPLETED, EXPIRED, IN_PROGRESS, TaskService
from gamify.user_directory import PROFESSIONAL_ROLE, UserDirectory

logger = logging.getLogger(__name__)

# metadata key carrying the amount an event contributes (default 1)
CONTRIBUTION_KEYS: dict[str, str] = {
    "steps_logged": "steps",
}


def contribution_value(event_type: str, metadata: dict[str, Any] | None) -> int:
    metadata = metadata or {}
    key = CONTRIBUTION_KEYS.get(event_type, "contribution_value")
    try:
        value = int(metadata.get(key, 1))
    except (TypeError, ValueError):
        return 1
    return max(value, 0)


class CircleTaskService:
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

    async def get_or_create_circle_task(self, circle_id: int, definition: TaskDef, period_key: str) -> CircleTask:
        stmt = upsert_insert(self.db, CircleTask).values(
            circle_id=circle_id,
            task_definition_id=definition.id,
            period_key=period_key,
            current_value=0,
            target_value=definition.target_value,
            status=IN_PROGRESS,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["circle_id", "task_definition_id", "period_key"])
        await self.db.execute(stmt)
        result = await self.db.execute(
            select(CircleTask).where(
                CircleTask.circle_id == circle_id,
                CircleTask.task_definition_id == definition.id,
                CircleTask.period_key == period_key,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def process_event(self, user_id: int, event_type: str, metadata: dict[str, Any] | None = None) -> list[int]:
        """Journal the user's contribution to every matching circle quest.

        Returns ids of circle tasks completed by this contribution.
        """
        if event_type in TERMINAL_EVENT_TYPES:
            return []
        circle_id = await self.directory.get_circle_id(user_id)
        if circle_id is None:
            return []

        value = contribution_value(event_type, metadata)
        if value <= 0:
            return []

        completed: list[int] = []
        for definition in await self.tasks.get_definitions("circle"):
            if event_type not in definition.scoring_event_types:
                continue
            period_key = self.tasks.current_period_key("circle")
            circle_task = await self.get_or_create_circle_task(circle_id, definition, period_key)
            if circle_task.status != IN_PROGRESS:
                continue
            if await self.add_contribution(circle_task, user_id, value):
                completed.append(circle_task.id)
        return completed

    async def add_contribution(self, circle_task: CircleTask, user_id: int, value: int) -> bool:
        """Journal and aggregate one contribution. True if it completed the task."""
        today = self.periods.today()
        stmt = upsert_insert(self.db, CircleTaskContribution).values(
            circle_task_id=circle_task.id,
            user_id=user_id,
            contribution_date=today,
            contribution_value=value,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["circle_task_id", "user_id", "contribution_date"],
            set_={
                "contribution_value": CircleTaskContribution.contribution_value + stmt.excluded.contribution_value,
            },
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            update(CircleTask)
            .where(CircleTask.id == circle_task.id)
            .values(current_value=CircleTask.current_value + value)
            .returning(CircleTask.current_value, CircleTask.target_value)
            .execution_options(synchronize_session=False)
        )
        new_total, target = result.one()
        if new_total < target:
            return False
        return await self.check_and_complete(circle_task.id)

    async def check_and_complete(self, circle_task_id: int) -> bool:
        """Complete once and fan out rewards. Another writer winning the race is a no-op."""
        now = utcnow()
        result = await self.db.execute(
            update(CircleTask)
            .where(
                CircleTask.id == circle_task_id,
                CircleTask.status == IN_PROGRESS,
                CircleTask.current_value >= CircleTask.target_value,
            )
            .values(status=COMPLETED, completed_at=now, completed_date=self.periods.today())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        circle_task = await self.db.get(CircleTask, circle_task_id, populate_existing=True)
        definition_row = await self.db.get(TaskDefinition, circle_task.task_definition_id)
        await self._award_members(circle_task, TaskDef.from_row(definition_row))
        return True

    async def _award_members(self, circle_task: CircleTask, definition: TaskDef) -> None:
        members = await self.directory.get_circle_members(circle_task.circle_id)
        rewarded = [m.id for m in members if m.role != PROFESSIONAL_ROLE]
        logger.info(
            "Circle %d completed %s (%s); rewarding %d of %d members",
            circle_task.circle_id, definition.slug, circle_task.period_key, len(rewarded), len(members),
        )

        metadata = {
            "circle_id": circle_task.circle_id,
            "circle_task_id": circle_task.id,
            "task_slug": definition.slug,
            "period_key": circle_task.period_key,
            "reward_score": definition.reward_score,
            "member_count": len(members),
        }
        for member_id in rewarded:
            if definition.reward_score > 0:
                await self.ledger.add_points(member_id, definition.reward_score, "circle_task_reward", metadata=metadata)
            if self.notifier is not None:
                await self.notifier.notify(
                    member_id, "circle_task_completed", {"title": f"Circle quest complete: {definition.title}", **metadata}
                )
        await self.db.flush()

        if self.sink is not None:
            for member_id in rewarded:
                await self.sink.ingest(member_id, "circle_task_completed", metadata=metadata, source="system")

    async def get_circle_tasks(self, circle_id: int) -> list[tuple[CircleTask, TaskDef]]:
        """Current-period circle quests, created lazily."""
        period_key = self.tasks.current_period_key("circle")
        rows = []
        for definition in await self.tasks.get_definitions("circle"):
            rows.append((await self.get_or_create_circle_task(circle_id, definition, period_key), definition))
        await self.db.commit()
        return rows

    async def get_top_contributors(self, circle_task_id: int, limit: int = 3) -> list[Contributor]:
        total = func.sum(CircleTaskContribution.contribution_value).label("total_contribution")
        result = await self.db.execute(
            select(CircleTaskContribution.user_id, User.display_name, total)
            .join(User, User.id == CircleTaskContribution.user_id)
            .where(CircleTaskContribution.circle_task_id == circle_task_id)
            .group_by(CircleTaskContribution.user_id, User.display_name)
            .order_by(total.desc(), CircleTaskContribution.user_id)
            .limit(limit)
        )
        return [
            Contributor(user_id=uid, display_name=name, total_contribution=int(value or 0))
            for uid, name, value in result.all()
        ]

    async def expire_old_circle_tasks(self) -> int:
        current_key = self.tasks.current_period_key("circle")
        result = await self.db.execute(
            update(CircleTask)
            .where(CircleTask.status == IN_PROGRESS, CircleTask.period_key != current_key)
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Expired %d circle tasks (current period %s)", result.rowcount, current_key)
        return result.rowcount
