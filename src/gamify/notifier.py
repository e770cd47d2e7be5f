"""Fire-and-forget notification dispatch: DB row + Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES: frozenset[str] = frozenset({
    "badge_earned",
    "daily_task_completed",
    "weekly_task_completed",
    "monthly_task_completed",
    "circle_task_completed",
    "level_promote",
    "level_demote",
    "level_retain",
    "level_position_rewarded",
})


class Notifier:
    """Persists a notification row and publishes it on ``pubsub:{type}``.

    The row is flushed with the caller's transaction. Publishing is
    best-effort and never raises.
    """

    def __init__(self, db: AsyncSession, redis: object | None = None) -> None:
        self.db = db
        self.redis = redis

    async def notify(self, user_id: int, notification_type: str, payload: dict[str, Any]) -> None:
        if notification_type not in NOTIFICATION_TYPES:
            logger.warning("Unknown notification type %s for user %d", notification_type, user_id)

        notification = Notification(
            user_id=user_id,
            type="gamification",
            subtype=notification_type,
            title=str(payload.get("title") or notification_type.replace("_", " ").title()),
            description=payload.get("description"),
            notification_metadata=payload,
        )
        self.db.add(notification)
        await self.db.flush()

        if self.redis is not None:
            try:
                await self.redis.publish(  # type: ignore[union-attr]
                    f"pubsub:{notification_type}",
                    json.dumps({"user_id": user_id, **payload}, default=str),
                )
            except Exception:
                logger.warning("Failed to publish %s notification", notification_type, exc_info=True)
