"""Pure event -> points lookup. No I/O."""

from __future__ import annotations

from typing import Any

from gamify.config import Settings
from gamify.scoring.rules import (
    BLOG_MESSAGE,
    BLOG_NORMAL_POINTS,
    BLOG_STICKY_POINTS,
    DAILY_LIMITS,
    DEFAULT_MESSAGE,
    DYNAMIC_DEFAULT_POINTS,
    FIXED_POINTS,
    MESSAGES,
    METADATA_POINT_KEYS,
    REWARD_EVENT_TYPES,
)

_TRUTHY = {"1", "true", "yes", "on"}


def as_bool(value: Any) -> bool:
    """Lenient boolean parse for metadata flags ("1", "true", 1, True...)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class RuleEngine:
    """Single source of truth for what an event type is worth."""

    def __init__(
        self,
        *,
        steps_daily_limit: int = 20,
        circle_create_points_enabled: bool = False,
        circle_create_points: int = 0,
    ) -> None:
        self.steps_daily_limit = steps_daily_limit
        self.circle_create_points_enabled = circle_create_points_enabled
        self.circle_create_points = circle_create_points

    @classmethod
    def from_settings(cls, settings: Settings) -> RuleEngine:
        return cls(
            steps_daily_limit=settings.steps_daily_limit,
            circle_create_points_enabled=settings.circle_create_points_enabled,
            circle_create_points=settings.circle_create_points,
        )

    def calculate_points(self, event_type: str, metadata: dict[str, Any] | None = None) -> int:
        metadata = metadata or {}

        if event_type == "blog_points_claimed":
            return BLOG_STICKY_POINTS if as_bool(metadata.get("is_sticky")) else BLOG_NORMAL_POINTS

        if event_type in METADATA_POINT_KEYS:
            for key in METADATA_POINT_KEYS[event_type]:
                override = _as_int(metadata.get(key))
                if override is not None:
                    return override
            return DYNAMIC_DEFAULT_POINTS

        if event_type in REWARD_EVENT_TYPES:
            return _as_int(metadata.get("points")) or 0

        if event_type == "circle_created":
            return self.circle_create_points if self.circle_create_points_enabled else 0

        return FIXED_POINTS.get(event_type, 0)

    def daily_limit(self, event_type: str) -> int | None:
        """Max valid events per local day, or None for unlimited."""
        if event_type == "steps_logged":
            return self.steps_daily_limit
        return DAILY_LIMITS.get(event_type)

    def get_message(self, event_type: str, points: int, metadata: dict[str, Any] | None = None) -> str:
        if points == 0:
            return ""
        metadata = metadata or {}

        if event_type == "blog_points_claimed":
            kind = "featured post" if as_bool(metadata.get("is_sticky")) else "blog post"
            return BLOG_MESSAGE.format(points=points, kind=kind)

        template = MESSAGES.get(event_type, DEFAULT_MESSAGE)
        return template.format(
            points=points,
            milestone=metadata.get("milestone", 0),
            position=metadata.get("position", 0),
            streak=metadata.get("streak", 0),
        )
