"""Read-only user and circle lookups."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Circle, User

PROFESSIONAL_ROLE = "professional"


class UserDirectory:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_user(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def is_professional(self, user_id: int) -> bool:
        result = await self.db.execute(select(User.role).where(User.id == user_id))
        return result.scalar_one_or_none() == PROFESSIONAL_ROLE

    async def get_circle_id(self, user_id: int) -> int | None:
        result = await self.db.execute(select(User.circle_id).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_circle_members(self, circle_id: int) -> list[User]:
        result = await self.db.execute(select(User).where(User.circle_id == circle_id).order_by(User.id))
        return list(result.scalars().all())

    async def list_user_ids(self) -> list[int]:
        result = await self.db.execute(select(User.id).order_by(User.id))
        return list(result.scalars().all())

    async def list_circle_ids(self) -> list[int]:
        result = await self.db.execute(select(Circle.id).order_by(Circle.id))
        return list(result.scalars().all())
