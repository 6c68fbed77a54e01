"""Collection router — retries, pipeline status, the global lock, installations."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.api.deps import (
    get_admin_email,
    get_collection_scheduler,
    get_installation_service,
    get_lock_service,
    get_queue_service,
    get_session,
    get_session_factory,
    get_state_service,
)
from rispipeline.api.schemas.collection import (
    CollectionStateOut,
    CollectionStats,
    InstallationOut,
    LockReleaseResult,
    LockStatus,
    RetryRequest,
    RetryStatsOut,
    StatusOverview,
)
from rispipeline.engines.collector.collection_scheduler import CollectionScheduler
from rispipeline.engines.collector.models import RetryStats
from rispipeline.services import NotFoundError, ValidationError
from rispipeline.services.collection_lock_service import CollectionLockService
from rispipeline.services.collection_state_service import CollectionStateService
from rispipeline.services.installation_service import InstallationService
from rispipeline.services.webhook_queue_service import WebhookQueueService

router = APIRouter()


@router.post("/retry", response_model=RetryStatsOut)
async def retry(
    body: RetryRequest,
    admin: str = Depends(get_admin_email),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    scheduler: CollectionScheduler = Depends(get_collection_scheduler),
) -> RetryStatsOut:
    """Retry one library (``owner`` + ``repo``) or run a pass over due retries."""
    if bool(body.owner) != bool(body.repo):
        raise ValidationError("owner and repo must be given together")

    if body.owner and body.repo:
        result = await scheduler.retry_library(
            session_factory, body.owner, body.repo, actor=admin
        )
        stats = RetryStats()
        stats.add(result)
    else:
        stats = await scheduler.process_retries(
            session_factory, body.max_retries, started_by=f"admin:{admin}"
        )
    return RetryStatsOut.model_validate(stats.to_dict())


@router.get("/status")
async def status(
    type: Literal["overview", "failed", "library"] = Query("overview"),
    owner: str | None = Query(None),
    repo: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    scheduler: CollectionScheduler = Depends(get_collection_scheduler),
    state_service: CollectionStateService = Depends(get_state_service),
    lock_service: CollectionLockService = Depends(get_lock_service),
    queue_service: WebhookQueueService = Depends(get_queue_service),
):
    if type == "failed":
        failed = await state_service.list_failed(session, limit)
        return [
            CollectionStateOut.model_validate(s).model_dump(by_alias=True, mode="json")
            for s in failed
        ]

    if type == "library":
        if not owner or not repo:
            raise ValidationError("owner and repo are required for type=library")
        state = await state_service.get(session, owner, repo)
        if state is None:
            raise NotFoundError(f"no collection state for {owner}/{repo}")
        return CollectionStateOut.model_validate(state).model_dump(by_alias=True, mode="json")

    stats = await scheduler.get_scheduler_stats(session_factory)
    overview = StatusOverview(
        collection=CollectionStats.model_validate(stats),
        lock=LockStatus.model_validate(await lock_service.status(session)),
        queue_length=await queue_service.queue_length(session),
    )
    return overview.model_dump(by_alias=True, mode="json")


@router.get("/lock", response_model=LockStatus)
async def lock_status(
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    lock_service: CollectionLockService = Depends(get_lock_service),
) -> LockStatus:
    return LockStatus.model_validate(await lock_service.status(session))


@router.post("/lock/release", response_model=LockReleaseResult)
async def release_lock(
    admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    lock_service: CollectionLockService = Depends(get_lock_service),
) -> LockReleaseResult:
    """Force-clear the global collection lock, whoever holds it."""
    previous = await lock_service.force_clear(session, actor=admin)
    return LockReleaseResult(cleared=previous is not None, previous=previous)


@router.get("/installations", response_model=list[InstallationOut])
async def list_installations(
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    installation_service: InstallationService = Depends(get_installation_service),
) -> list[InstallationOut]:
    rows = await installation_service.list_all(session)
    return [InstallationOut.model_validate(row) for row in rows]
