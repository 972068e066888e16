from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from gatehouse.db.models import Base

ModelT = TypeVar("ModelT", bound=Base)
ValueT = TypeVar("ValueT")


class BaseRepository(Generic[ModelT]):  # noqa: UP046
    """Query helpers shared by the repositories.

    Repositories flush but never commit; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self.session = session
        self.model = model

    async def add(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        # Flush so the primary key is assigned and unique constraints fire here.
        await self.session.flush()
        return obj

    async def get(self, id_: Any) -> ModelT | None:
        return await self.session.get(self.model, id_)

    async def first_where(self, *predicates: ColumnElement[bool]) -> ModelT | None:
        result = await self.session.execute(select(self.model).where(*predicates).limit(1))
        return result.scalars().first()

    async def value_where(
        self,
        column: ColumnElement[ValueT],
        *predicates: ColumnElement[bool],
    ) -> ValueT | None:
        result = await self.session.execute(select(column).where(*predicates).limit(1))
        return result.scalar_one_or_none()
