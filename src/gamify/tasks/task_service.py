"""Quest definitions and per-user, per-period quest rows."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import TaskDefinition, UserTask
from gamify.period_service import PeriodService
from gamify.schemas import TaskProgress
from gamify.tasks.definitions import TASK_PERIOD, TaskDef

logger = logging.getLogger(__name__)

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
EXPIRED = "expired"


class TaskService:
    def __init__(self, db: AsyncSession, periods: PeriodService) -> None:
        self.db = db
        self.periods = periods
        self._definitions: list[TaskDef] | None = None

    async def get_definitions(self, task_type: str | None = None) -> list[TaskDef]:
        """Active definitions, optionally of one type."""
        if self._definitions is None:
            result = await self.db.execute(
                select(TaskDefinition).where(TaskDefinition.is_active.is_(True)).order_by(TaskDefinition.id)
            )
            self._definitions = [TaskDef.from_row(row) for row in result.scalars()]
        if task_type is None:
            return self._definitions
        return [d for d in self._definitions if d.task_type == task_type]

    async def get_definition_by_slug(self, slug: str) -> TaskDef | None:
        for definition in await self.get_definitions():
            if definition.slug == slug:
                return definition
        return None

    def invalidate(self) -> None:
        self._definitions = None

    def current_period_key(self, task_type: str) -> str:
        return self.periods.current_period_key(TASK_PERIOD[task_type])

    async def get_or_create_user_task(self, user_id: int, definition: TaskDef, period_key: str) -> UserTask:
        """Lazily create the row and return it locked for update."""
        stmt = upsert_insert(self.db, UserTask).values(
            user_id=user_id,
            task_definition_id=definition.id,
            period_key=period_key,
            current_value=0,
            target_value=definition.target_value,
            status=IN_PROGRESS,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "task_definition_id", "period_key"])
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(UserTask)
            .where(
                UserTask.user_id == user_id,
                UserTask.task_definition_id == definition.id,
                UserTask.period_key == period_key,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get_user_tasks(self, user_id: int, task_type: str | None = None) -> list[TaskProgress]:
        """Current-period quests for a user (circle quests excluded)."""
        rows: list[TaskProgress] = []
        for definition in await self.get_definitions(task_type):
            if definition.task_type == "circle":
                continue
            period_key = self.current_period_key(definition.task_type)
            task = await self.get_or_create_user_task(user_id, definition, period_key)
            rows.append(
                TaskProgress(
                    slug=definition.slug,
                    title=definition.title,
                    task_type=definition.task_type,
                    period_key=period_key,
                    current_value=task.current_value,
                    target_value=task.target_value,
                    status=task.status,
                    reward_score=definition.reward_score,
                )
            )
        await self.db.commit()
        return rows

    async def expire_old_tasks(self, task_type: str) -> int:
        """Mark in-progress rows of a past period as expired."""
        definition_ids = [d.id for d in await self.get_definitions(task_type)]
        if not definition_ids or task_type == "circle":
            return 0
        current_key = self.current_period_key(task_type)
        result = await self.db.execute(
            update(UserTask)
            .where(
                UserTask.task_definition_id.in_(definition_ids),
                UserTask.status == IN_PROGRESS,
                UserTask.period_key != current_key,
            )
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Expired %d %s tasks (current period %s)", result.rowcount, task_type, current_key)
        return result.rowcount
