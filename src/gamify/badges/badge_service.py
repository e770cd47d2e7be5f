"""Badge progress tracking and awarding."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.badges.definitions import BadgeDef, static_badges
from gamify.badges.rule_engine import BadgeRuleEngine
from gamify.db.base import utcnow
from gamify.db.dialect import upsert_insert
from gamify.db.models import BadgeDefinition, UserBadge
from gamify.definition_source import merge_definitions
from gamify.events.sink import EventSink
from gamify.notifier import Notifier
from gamify.schemas import BadgeProgress, EarnedBadge

logger = logging.getLogger(__name__)


class BadgeService:
    """Evaluates badges touched by an event and awards the ones that complete."""

    def __init__(
        self,
        db: AsyncSession,
        rules: BadgeRuleEngine,
        notifier: Notifier | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self.db = db
        self.rules = rules
        self.notifier = notifier
        self.sink = sink
        self._definitions: list[BadgeDef] | None = None

    async def get_definitions(self) -> list[BadgeDef]:
        """Static catalogue merged with database rows (database wins by slug)."""
        if self._definitions is None:
            result = await self.db.execute(select(BadgeDefinition))
            dynamic = [BadgeDef.from_row(row) for row in result.scalars()]
            merged = merge_definitions(static_badges(), dynamic)
            self._definitions = [d for d in merged if d.is_active]
        return self._definitions

    def invalidate(self) -> None:
        self._definitions = None

    async def get_definition(self, slug: str) -> BadgeDef | None:
        for definition in await self.get_definitions():
            if definition.slug == slug:
                return definition
        return None

    async def _get_or_create_user_badge(self, user_id: int, slug: str) -> UserBadge:
        stmt = upsert_insert(self.db, UserBadge).values(
            user_id=user_id,
            badge_slug=slug,
            current_progress=0,
            is_earned=False,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "badge_slug"])
        await self.db.execute(stmt)
        result = await self.db.execute(
            select(UserBadge)
            .where(UserBadge.user_id == user_id, UserBadge.badge_slug == slug)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def process_event(self, user_id: int, event_type: str) -> list[EarnedBadge]:
        """Update progress on every badge this event type can move.

        Returns all badges newly earned by this event, in catalogue order.
        """
        earned: list[EarnedBadge] = []

        for badge in await self.get_definitions():
            if not self.rules.event_matches_rules(event_type, badge.condition):
                continue

            user_badge = await self._get_or_create_user_badge(user_id, badge.slug)
            if user_badge.is_earned:
                continue

            progress = await self.rules.calculate_progress(user_id, badge.condition)
            if progress > user_badge.current_progress:
                user_badge.current_progress = progress
                user_badge.updated_at = utcnow()
                await self.db.flush()

            if user_badge.current_progress >= badge.max_progress and await self._mark_earned(user_badge):
                earned.append(EarnedBadge(slug=badge.slug, title=badge.title, tier=badge.tier, category=badge.category))

        for badge in earned:
            await self._emit_badge_earned(user_id, badge)
        return earned

    async def _mark_earned(self, user_badge: UserBadge) -> bool:
        """Flip is_earned once. False if another writer already did."""
        result = await self.db.execute(
            update(UserBadge)
            .where(UserBadge.id == user_badge.id, UserBadge.is_earned.is_(False))
            .values(is_earned=True, earned_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def _emit_badge_earned(self, user_id: int, badge: EarnedBadge) -> None:
        logger.info("User %d earned badge %s", user_id, badge.slug)
        payload = {
            "badge_slug": badge.slug,
            "badge_title": badge.title,
            "badge_tier": badge.tier,
            "badge_category": badge.category,
        }
        if self.notifier is not None:
            await self.notifier.notify(
                user_id,
                "badge_earned",
                {"title": f'Badge earned: "{badge.title}"', **payload},
            )
        if self.sink is not None:
            await self.sink.ingest(user_id, "badge_earned", metadata=payload, source="system")

    async def get_user_badges(self, user_id: int) -> list[BadgeProgress]:
        result = await self.db.execute(select(UserBadge).where(UserBadge.user_id == user_id))
        progress = {ub.badge_slug: ub for ub in result.scalars()}

        rows = []
        for badge in await self.get_definitions():
            ub = progress.get(badge.slug)
            current = ub.current_progress if ub else 0
            rows.append(
                BadgeProgress(
                    slug=badge.slug,
                    title=badge.title,
                    description=badge.description,
                    icon=badge.icon,
                    category=badge.category,
                    tier=badge.tier,
                    max_progress=badge.max_progress,
                    current_progress=current,
                    is_earned=bool(ub and ub.is_earned),
                    earned_at=ub.earned_at if ub else None,
                    percent=round(current / badge.max_progress * 100, 1) if badge.max_progress > 0 else 0.0,
                )
            )
        return rows

    async def get_recently_earned(self, user_id: int, limit: int = 5) -> list[UserBadge]:
        result = await self.db.execute(
            select(UserBadge)
            .where(UserBadge.user_id == user_id, UserBadge.is_earned.is_(True))
            .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
