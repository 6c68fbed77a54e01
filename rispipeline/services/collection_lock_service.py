"""CollectionLockService — single-flight guard for bulk collection runs."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.core.config import collection_lock_ttl
from rispipeline.core.database import utcnow
from rispipeline.core.logging import audit_logger
from rispipeline.dao.collection_lock_dao import CollectionLockDAO
from rispipeline.models.collection_lock import GLOBAL_COLLECTION_LOCK, CollectionLock
from rispipeline.services import CollectionInProgressError

log = structlog.get_logger("rispipeline.lock")


def _age_ms(lock: CollectionLock, now: datetime) -> int:
    return int((now - lock.started_at).total_seconds() * 1000)


def new_ingestion_id(prefix: str = "ingest") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class CollectionLockService:
    """Non-blocking TTL lease over the global collection lock row.

    All methods take the caller's session; :meth:`hold` manages its own
    short transactions so the lease is visible to other workers while the
    guarded work runs.
    """

    def __init__(self, lock_dao: CollectionLockDAO, *, name: str = GLOBAL_COLLECTION_LOCK) -> None:
        self._dao = lock_dao
        self._name = name

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=collection_lock_ttl())

    async def acquire(
        self,
        session: AsyncSession,
        ingestion_id: str,
        started_by: str | None = None,
    ) -> bool:
        """Take the lease, reclaiming an expired one. Returns False when held."""
        now = utcnow()
        previous = await self._dao.get_by_id(session, self._name)
        # the upsert refreshes the same identity-mapped row, so copy the holder first
        holder = None
        if previous is not None:
            holder = (previous.ingestion_id, previous.started_by, _age_ms(previous, now))
        acquired = await self._dao.try_acquire(
            session,
            name=self._name,
            ingestion_id=ingestion_id,
            started_by=started_by,
            now=now,
            expires_at=now + self.ttl,
        )
        if acquired is None:
            log.info(
                "lock.busy",
                ingestion_id=ingestion_id,
                holder=holder[0] if holder else None,
            )
            return False
        if holder is not None and holder[0] != ingestion_id:
            log.warning(
                "lock.reclaimed_expired",
                ingestion_id=ingestion_id,
                previous_holder=holder[0],
                previous_started_by=holder[1],
                previous_age_ms=holder[2],
            )
        log.info("lock.acquired", ingestion_id=ingestion_id, started_by=started_by)
        return True

    async def release(self, session: AsyncSession, ingestion_id: str) -> bool:
        released = await self._dao.release(session, name=self._name, ingestion_id=ingestion_id)
        if released:
            log.info("lock.released", ingestion_id=ingestion_id)
        else:
            log.warning("lock.release_not_holder", ingestion_id=ingestion_id)
        return released

    async def extend(self, session: AsyncSession, ingestion_id: str) -> bool:
        """Heartbeat: push the holder's expiry one TTL into the future."""
        return await self._dao.extend(
            session,
            name=self._name,
            ingestion_id=ingestion_id,
            expires_at=utcnow() + self.ttl,
        )

    async def status(self, session: AsyncSession) -> dict:
        """Holder and age of the lease.

        ``stale`` compares the age since ``started_at`` with the TTL. Heartbeats
        keep a long bulk run alive past that point, so ``expired`` (the lease
        itself has lapsed and :meth:`acquire` would take it over) and
        ``heartbeatAgeMs`` tell a crashed holder apart from a slow one.
        """
        lock = await self._dao.get_by_id(session, self._name)
        if lock is None:
            return {
                "locked": False,
                "lock": None,
                "ageMs": None,
                "stale": False,
                "expired": False,
                "heartbeatAgeMs": None,
            }
        now = utcnow()
        age = _age_ms(lock, now)
        last_heartbeat = lock.expires_at - self.ttl
        return {
            "locked": True,
            "lock": {
                "ingestionId": lock.ingestion_id,
                "startedBy": lock.started_by,
                "startedAt": lock.started_at.isoformat(),
                "expiresAt": lock.expires_at.isoformat(),
            },
            "ageMs": age,
            "stale": age > self.ttl.total_seconds() * 1000,
            "expired": lock.expires_at < now,
            "heartbeatAgeMs": max(0, int((now - last_heartbeat).total_seconds() * 1000)),
        }

    async def force_clear(self, session: AsyncSession, actor: str | None = None) -> dict | None:
        """Delete the lease whoever holds it. Returns what was cleared."""
        cleared = await self._dao.clear(session, name=self._name)
        if cleared is None:
            return None
        now = utcnow()
        age = _age_ms(cleared, now)
        audit_logger().warning(
            "lock.force_cleared",
            actor=actor,
            previous_holder=cleared.ingestion_id,
            previous_started_by=cleared.started_by,
            age_ms=age,
            lease_expired=cleared.expires_at < now,
        )
        return {
            "ingestionId": cleared.ingestion_id,
            "startedBy": cleared.started_by,
            "startedAt": cleared.started_at.isoformat(),
            "ageMs": age,
        }

    @asynccontextmanager
    async def hold(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        started_by: str | None = None,
        ingestion_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Run the block under the lease, yielding the ingestion id.

        Raises :class:`CollectionInProgressError` if another run holds it.
        """
        ingestion_id = ingestion_id or new_ingestion_id()
        async with session_factory() as session:
            async with session.begin():
                acquired = await self.acquire(session, ingestion_id, started_by)
        if not acquired:
            raise CollectionInProgressError("collection already running")
        try:
            yield ingestion_id
        finally:
            async with session_factory() as session:
                async with session.begin():
                    await self.release(session, ingestion_id)

    async def heartbeat(
        self, session_factory: async_sessionmaker[AsyncSession], ingestion_id: str
    ) -> bool:
        async with session_factory() as session:
            async with session.begin():
                return await self.extend(session, ingestion_id)
