"""Generic base DAO — primary-key CRUD (ORM) + filtered reads (Core)."""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseDAO(Generic[ModelT]):
    """Base data-access object. Subclasses set ``model`` class attribute."""

    model: type[ModelT]

    # ── ORM methods ──────────────────────────────────────────────────────

    @staticmethod
    def _require_pk(pk: Any) -> None:
        """Raise ValueError if *pk* is None."""
        if pk is None:
            raise ValueError("pk must not be None")

    async def get_by_id(self, session: AsyncSession, pk: Any) -> ModelT | None:
        self._require_pk(pk)
        return await session.get(self.model, pk)

    async def create(self, session: AsyncSession, **values: Any) -> ModelT:
        obj = self.model(**values)
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
        return obj

    async def delete(self, session: AsyncSession, pk: Any) -> bool:
        self._require_pk(pk)
        obj = await session.get(self.model, pk)
        if obj is None:
            return False
        await session.delete(obj)
        await session.flush()
        return True

    async def get_by_field(self, session: AsyncSession, **filters: Any) -> ModelT | None:
        """Return the first row matching all *filters*, or None.

        Usage::

            state = await dao.get_by_field(session, owner="facebook", repo="react")

        Raises ``ValueError`` if called without any filters.
        """
        if not filters:
            raise ValueError("get_by_field() requires at least one filter")
        result = await session.execute(self._filtered(select(self.model), filters))
        return result.scalars().first()

    # ── Core methods ─────────────────────────────────────────────────────

    def _filtered(self, query: Select, filters: dict[str, Any]) -> Select:
        for key, val in filters.items():
            column = getattr(self.model, key, None)
            if column is None:
                raise AttributeError(f"{self.model.__name__} has no column '{key}'")
            query = query.where(column == val)
        return query

    async def count(self, session: AsyncSession, **filters: Any) -> int:
        """Return the number of rows matching *filters* (all rows if none)."""
        query = self._filtered(select(func.count()).select_from(self.model), filters)
        result = await session.execute(query)
        return result.scalar_one()
