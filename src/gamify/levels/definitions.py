"""League tiers and weekly movement rules."""

from __future__ import annotations

import logging

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.dialect import upsert_insert
from gamify.db.models import Level

logger = logging.getLogger(__name__)

# rank_order 1 is the top tier
LEVEL_SEED_DATA: list[dict] = [
    {"slug": "mastery", "name": "Mastery", "rank_order": 1, "min_score": 5000, "max_score": None,
     "icon": "👑", "color": "#8b5cf6"},
    {"slug": "strength", "name": "Strength", "rank_order": 2, "min_score": 2500, "max_score": 4999,
     "icon": "💪", "color": "#ef4444"},
    {"slug": "balance", "name": "Balance", "rank_order": 3, "min_score": 1000, "max_score": 2499,
     "icon": "⚖️", "color": "#f59e0b"},
    {"slug": "rhythm", "name": "Rhythm", "rank_order": 4, "min_score": 400, "max_score": 999,
     "icon": "🎵", "color": "#10b981"},
    {"slug": "adapt", "name": "Adapt", "rank_order": 5, "min_score": 100, "max_score": 399,
     "icon": "🌱", "color": "#3b82f6"},
    {"slug": "begin", "name": "Begin", "rank_order": 6, "min_score": 0, "max_score": 99,
     "icon": "🚶", "color": "#6b7280"},
]

# weekly position -> bonus points
POSITION_REWARDS: dict[int, int] = {
    1: 50,
    2: 25,
    3: 15,
}

PROMOTE = "promote"
DEMOTE = "demote"
RETAIN = "retain"
INITIAL = "initial"


def position_reward(position: int) -> int:
    return POSITION_REWARDS.get(position, 0)


def decide_transition(
    position: int,
    total: int,
    has_higher: bool,
    has_lower: bool,
    promote_count: int = 5,
    demote_count: int = 5,
) -> str:
    """Top band moves up, bottom band moves down, when such a tier exists.

    Promotion is checked first, so in small leagues where the bands overlap
    the top places still move up.
    """
    if position <= promote_count and has_higher:
        return PROMOTE
    if position > total - demote_count and has_lower:
        return DEMOTE
    return RETAIN


def rank_members(scores: dict[int, int]) -> list[tuple[int, int, int]]:
    """[(user_id, score, position)] by score DESC, lower user id first on ties."""
    ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return [(user_id, score, idx + 1) for idx, (user_id, score) in enumerate(ordered)]


async def seed_levels(db: AsyncSession) -> int:
    """Upsert the default league tiers. Returns number seeded."""
    for level_data in LEVEL_SEED_DATA:
        stmt = upsert_insert(db, Level).values(**level_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "min_score": stmt.excluded.min_score,
                "max_score": stmt.excluded.max_score,
                "icon": stmt.excluded.icon,
                "color": stmt.excluded.color,
            },
        )
        await db.execute(stmt)
    await db.commit()
    logger.info("Seeded %d levels", len(LEVEL_SEED_DATA))
    return len(LEVEL_SEED_DATA)


class Tier(BaseModel):
    """Detached copy of a Level row, safe to hold across commits and rollbacks."""

    id: int
    slug: str
    name: str
    rank_order: int

    @classmethod
    def from_row(cls, row: Level) -> Tier:
        return cls(id=row.id, slug=row.slug, name=row.name, rank_order=row.rank_order)
