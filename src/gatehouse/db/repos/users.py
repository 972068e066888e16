from __future__ import annotations

import uuid

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.models import User
from gatehouse.db.repos.base import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, User)

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        normalized = email.strip().lower()
        if not normalized:
            return None
        return await self.first_where(func.lower(User.email) == normalized)

    async def get_by_username(self, username: str) -> User | None:
        return await self.first_where(User.username == username)

    async def username_taken(self, username: str) -> bool:
        return await self.get_by_username(username) is not None
