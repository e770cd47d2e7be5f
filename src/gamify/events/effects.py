"""Downstream effects of a valid event, registered on the ingestion service."""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.badges.badge_service import BadgeService
from gamify.db.models import Circle
from gamify.events.ingestion import EventIngestionService, IngestContext
from gamify.milestone_service import MilestoneService
from gamify.streak_service import StreakService
from gamify.tasks.circle_task_service import CircleTaskService
from gamify.tasks.task_progress_service import TaskProgressService
from gamify.user_directory import PROFESSIONAL_ROLE, UserDirectory

logger = logging.getLogger(__name__)

# event_type -> streak_type it advances
STREAK_EVENTS: dict[str, str] = {
    "login_success": "daily_login",
}


class DownstreamEffects:
    """Circle score, streaks, like milestones, quests, circle quests, badges. In that order."""

    def __init__(
        self,
        db: AsyncSession,
        ingestion: EventIngestionService,
        directory: UserDirectory,
        streaks: StreakService,
        milestones: MilestoneService,
        task_progress: TaskProgressService,
        circle_tasks: CircleTaskService,
        badges: BadgeService,
    ) -> None:
        self.db = db
        self.ingestion = ingestion
        self.directory = directory
        self.streaks = streaks
        self.milestones = milestones
        self.task_progress = task_progress
        self.circle_tasks = circle_tasks
        self.badges = badges

    def register(self) -> None:
        self.ingestion.add_effect("circle_score", self.update_circle_score)
        self.ingestion.add_effect("streak", self.update_streak)
        self.ingestion.add_effect("comment_milestones", self.check_comment_milestones)
        self.ingestion.add_effect("task_progress", self.advance_tasks)
        self.ingestion.add_effect("circle_tasks", self.advance_circle_tasks)
        self.ingestion.add_effect("badges", self.update_badges)

    async def update_circle_score(self, ctx: IngestContext) -> None:
        if ctx.points <= 0:
            return
        user = await self.directory.get_user(ctx.user_id)
        if user is None or user.circle_id is None or user.role == PROFESSIONAL_ROLE:
            return
        await self.db.execute(
            update(Circle)
            .where(Circle.id == user.circle_id)
            .values(total_score=Circle.total_score + ctx.points)
            .execution_options(synchronize_session=False)
        )

    async def update_streak(self, ctx: IngestContext) -> None:
        streak_type = STREAK_EVENTS.get(ctx.event_type)
        if streak_type is None:
            return
        streak = await self.streaks.record_activity(ctx.user_id, streak_type)
        await self.db.commit()
        if streak.bonus_points <= 0:
            return

        bonus = await self.ingestion.ingest(
            ctx.user_id,
            "streak_milestone_rewarded",
            metadata={
                "points": streak.bonus_points,
                "streak": streak.current_streak,
                "streak_type": streak_type,
                "achieved_on": self.streaks.periods.today().isoformat(),
            },
            source="system",
        )
        ctx.messages.extend(bonus.messages)

    async def check_comment_milestones(self, ctx: IngestContext) -> None:
        if ctx.event_type != "comment_liked":
            return
        author_id = ctx.metadata.get("author_id")
        comment_id = ctx.metadata.get("comment_id", ctx.entity_id)
        like_count = ctx.metadata.get("like_count")
        if author_id is None or comment_id is None or like_count is None:
            logger.debug("comment_liked event %d lacks author/comment/like_count", ctx.event_id)
            return

        crossed = await self.milestones.check_comment_likes(int(author_id), int(comment_id), int(like_count))
        await self.db.commit()
        for threshold, points in crossed:
            await self.ingestion.ingest(
                int(author_id),
                "comment_like_milestone_rewarded",
                entity_type="comment",
                entity_id=int(comment_id),
                metadata={"milestone": threshold, "points": points},
                source="system",
            )

    async def advance_tasks(self, ctx: IngestContext) -> None:
        for completion in await self.task_progress.process_event(ctx.user_id, ctx.event_type):
            ctx.messages.append(f"Quest complete: {completion.slug} (+{completion.reward_score})")

    async def advance_circle_tasks(self, ctx: IngestContext) -> None:
        await self.circle_tasks.process_event(ctx.user_id, ctx.event_type, ctx.metadata)

    async def update_badges(self, ctx: IngestContext) -> None:
        for badge in await self.badges.process_event(ctx.user_id, ctx.event_type):
            ctx.earned_badges.append(badge.slug)
            ctx.messages.append(f"Badge earned: {badge.title}")
