"""CollectionLockDAO — named lease rows with TTL."""

from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.collection_lock import CollectionLock


class CollectionLockDAO(BaseDAO[CollectionLock]):
    model = CollectionLock

    async def try_acquire(
        self,
        session: AsyncSession,
        *,
        name: str,
        ingestion_id: str,
        started_by: str | None,
        now: datetime,
        expires_at: datetime,
    ) -> CollectionLock | None:
        """Insert the lease, or take over a row whose lease has expired.

        One statement: a live lease makes the conflict branch's WHERE false,
        so nothing is returned and the caller sees None.
        """
        values = {
            "ingestion_id": ingestion_id,
            "started_by": started_by,
            "started_at": now,
            "expires_at": expires_at,
        }
        stmt = insert(CollectionLock).values(name=name, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_=values,
            where=CollectionLock.expires_at < now,
        ).returning(CollectionLock)
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    async def release(self, session: AsyncSession, *, name: str, ingestion_id: str) -> bool:
        """Delete the lease only if *ingestion_id* still holds it."""
        stmt = (
            delete(CollectionLock)
            .where(CollectionLock.name == name, CollectionLock.ingestion_id == ingestion_id)
            .returning(CollectionLock.name)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def extend(
        self, session: AsyncSession, *, name: str, ingestion_id: str, expires_at: datetime
    ) -> bool:
        stmt = (
            update(CollectionLock)
            .where(CollectionLock.name == name, CollectionLock.ingestion_id == ingestion_id)
            .values(expires_at=expires_at)
            .returning(CollectionLock.name)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def clear(self, session: AsyncSession, *, name: str) -> CollectionLock | None:
        """Unconditionally delete the lease, returning what was removed."""
        stmt = delete(CollectionLock).where(CollectionLock.name == name).returning(CollectionLock)
        result = await session.execute(stmt)
        return result.scalars().first()
