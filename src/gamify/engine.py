"""Wires the engine services around one database session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.badges.badge_service import BadgeService
from gamify.badges.rule_engine import BadgeRuleEngine
from gamify.config import Settings, get_settings
from gamify.events.effects import DownstreamEffects
from gamify.events.ingestion import EventIngestionService
from gamify.ledger_service import LedgerService
from gamify.levels.level_service import LevelService
from gamify.milestone_service import MilestoneService
from gamify.notifier import Notifier
from gamify.period_service import PeriodService
from gamify.schemas import IngestResult
from gamify.score_service import ScoreService
from gamify.scoring.rule_engine import RuleEngine
from gamify.streak_service import StreakService
from gamify.tasks.circle_task_service import CircleTaskService
from gamify.tasks.task_progress_service import TaskProgressService
from gamify.tasks.task_service import TaskService
from gamify.user_directory import UserDirectory


@dataclass
class Engine:
    db: AsyncSession
    settings: Settings
    periods: PeriodService
    rules: RuleEngine
    directory: UserDirectory
    notifier: Notifier
    ledger: LedgerService
    ingestion: EventIngestionService
    streaks: StreakService
    milestones: MilestoneService
    badges: BadgeService
    tasks: TaskService
    task_progress: TaskProgressService
    circle_tasks: CircleTaskService
    scores: ScoreService
    levels: LevelService

    async def ingest(self, user_id: int, event_type: str, **kwargs: Any) -> IngestResult:
        return await self.ingestion.ingest(user_id, event_type, **kwargs)


def build_engine(
    db: AsyncSession,
    redis: Any | None = None,
    settings: Settings | None = None,
    periods: PeriodService | None = None,
) -> Engine:
    """Build every service on ``db``. Ingestion is the sink for system events."""
    settings = settings or get_settings()
    periods = periods or PeriodService(settings.timezone)

    rules = RuleEngine.from_settings(settings)
    directory = UserDirectory(db)
    notifier = Notifier(db, redis)
    ledger = LedgerService(db, periods)
    ingestion = EventIngestionService(db, rules, ledger, periods, directory)

    streaks = StreakService(db, periods, settings.grace_days_per_week)
    milestones = MilestoneService(db)
    badges = BadgeService(db, BadgeRuleEngine(db, periods, streaks), notifier, ingestion)
    tasks = TaskService(db, periods)
    task_progress = TaskProgressService(db, tasks, ledger, periods, directory, notifier, ingestion)
    circle_tasks = CircleTaskService(db, tasks, ledger, periods, directory, notifier, ingestion)
    scores = ScoreService(db, ledger, directory)
    levels = LevelService(
        db,
        ledger,
        notifier,
        ingestion,
        promote_count=settings.level_promote_count,
        demote_count=settings.level_demote_count,
    )

    DownstreamEffects(db, ingestion, directory, streaks, milestones, task_progress, circle_tasks, badges).register()

    return Engine(
        db=db,
        settings=settings,
        periods=periods,
        rules=rules,
        directory=directory,
        notifier=notifier,
        ledger=ledger,
        ingestion=ingestion,
        streaks=streaks,
        milestones=milestones,
        badges=badges,
        tasks=tasks,
        task_progress=task_progress,
        circle_tasks=circle_tasks,
        scores=scores,
        levels=levels,
    )
