"""Shared repository helpers used by concrete persistence classes."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Small abstraction around async SQLAlchemy session interactions."""

    def __init__(self, model: type[T]):
        self._model = model

    @property
    def model(self) -> type[T]:
        """Return the SQLAlchemy model handled by the repository."""

        return self._model

    async def add(self, session: AsyncSession, instance: T) -> T:
        """Persist a new instance and refresh it with database defaults."""

        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        return instance

    async def get(self, session: AsyncSession, identifier: str) -> T | None:
        """Fetch a single instance by primary key."""

        return await session.get(self._model, identifier)

    async def update_where(
        self, session: AsyncSession, *criteria: Any, values: dict[str, Any]
    ) -> int:
        """Apply a bulk update and return the number of matched rows."""

        statement = update(self._model).where(*criteria).values(**values)
        result = await session.execute(statement)
        return result.rowcount or 0
