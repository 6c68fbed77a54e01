"""CollectionScheduler — retries, stale refreshes and full refreshes across libraries."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.engines.collector.baseline import BaselineCollector
from rispipeline.engines.collector.models import CollectResult, RetryStats
from rispipeline.services import ValidationError
from rispipeline.services.collection_lock_service import CollectionLockService
from rispipeline.services.collection_state_service import CollectionStateService
from rispipeline.services.installation_service import InstallationService
from rispipeline.services.library_approval_service import LibraryApprovalService

log = structlog.get_logger("rispipeline.collector")


class CollectionScheduler:
    """Drives the BaselineCollector over many libraries.

    Bulk passes run under the global collection lock and raise
    :class:`~rispipeline.services.CollectionInProgressError` when another
    run holds it. Single-library operator retries bypass the lock and rely
    on the per-library claim instead. Only approved libraries are ever
    collected.
    """

    def __init__(
        self,
        collector: BaselineCollector,
        state_service: CollectionStateService,
        lock_service: CollectionLockService,
        installation_service: InstallationService,
        approval_service: LibraryApprovalService,
    ) -> None:
        self._collector = collector
        self._state = state_service
        self._lock = lock_service
        self._installations = installation_service
        self._approvals = approval_service

    async def _run_locked(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        libraries: list[tuple[str, str, str | None]],
        *,
        resume: bool,
        started_by: str,
    ) -> RetryStats:
        stats = RetryStats()
        async with self._lock.hold(session_factory, started_by=started_by) as ingestion_id:

            async def _heartbeat() -> bool:
                return await self._lock.heartbeat(session_factory, ingestion_id)

            results = await self._collector.collect_many(
                session_factory, libraries, resume=resume, heartbeat=_heartbeat
            )
        for result in results:
            stats.add(result)
        return stats

    async def process_retries(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = 10,
        *,
        started_by: str = "scheduler:retries",
    ) -> RetryStats:
        """Resume up to *max_retries* failed/partial libraries whose backoff has elapsed."""
        async with session_factory() as session:
            due = await self._state.list_due_retries(session, max_retries)
        if not due:
            return RetryStats()

        stats = await self._run_locked(
            session_factory,
            [(s.owner, s.repo, s.library_name) for s in due],
            resume=True,
            started_by=started_by,
        )
        log.info(
            "collector.retries_processed",
            attempted=stats.attempted,
            succeeded=stats.succeeded,
            partial=stats.partial,
            failed=stats.failed,
            skipped=stats.skipped,
        )
        return stats

    async def refresh_stale(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_libraries: int = 10,
        *,
        started_by: str = "scheduler:stale",
    ) -> RetryStats:
        """Fully re-collect libraries invalidated by webhook activity."""
        async with session_factory() as session:
            stale = await self._state.list_stale(session, max_libraries)
        if not stale:
            return RetryStats()
        stats = await self._run_locked(
            session_factory,
            [(s.owner, s.repo, s.library_name) for s in stale],
            resume=False,
            started_by=started_by,
        )
        log.info("collector.stale_refreshed", attempted=stats.attempted, failed=stats.failed)
        return stats

    async def refresh_all(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        started_by: str = "scheduler:refresh_all",
    ) -> RetryStats:
        """Re-collect every approved library."""
        async with session_factory() as session:
            approved = await self._approvals.approved_keys(session)
            names = {(s.owner, s.repo): s.library_name for s in await self._state.list_all(session)}
        if not approved:
            return RetryStats()
        libraries = [(owner, repo, names.get((owner, repo))) for owner, repo in sorted(approved)]
        return await self._run_locked(
            session_factory, libraries, resume=False, started_by=started_by
        )

    async def reset_collection_state(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        owner: str,
        repo: str,
        *,
        actor: str | None = None,
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                await self._state.reset(session, owner, repo, actor=actor)

    async def retry_library(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        owner: str,
        repo: str,
        *,
        actor: str | None = None,
    ) -> CollectResult:
        """Reset and resume one approved library immediately, without the global lock."""
        async with session_factory() as session:
            if not await self._approvals.is_approved(session, owner, repo):
                raise ValidationError(f"{owner}/{repo} is not an approved library")
        await self.reset_collection_state(session_factory, owner, repo, actor=actor)
        return await self._collector.collect(session_factory, owner, repo, resume=True)

    async def list_failed(
        self, session_factory: async_sessionmaker[AsyncSession], limit: int = 50
    ) -> list:
        async with session_factory() as session:
            return await self._state.list_failed(session, limit)

    async def get_scheduler_stats(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> dict[str, int]:
        async with session_factory() as session:
            stats = await self._state.stats(session)
            stats["installations"] = await self._installations.count(session)
            for status, count in (await self._approvals.counts(session)).items():
                stats[f"approval_{status}"] = count
        return stats
