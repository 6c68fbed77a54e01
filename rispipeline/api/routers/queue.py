"""Queue router — cron-driven webhook queue draining and failed-event recovery."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.api.deps import (
    get_queue_service,
    get_session,
    get_session_factory,
    get_webhook_processor,
    require_cron_secret,
)
from rispipeline.api.schemas.webhook import (
    FailedWebhookOut,
    ProcessWebhooksResult,
    QueueLength,
    RequeueResult,
)
from rispipeline.engines.webhook.processor import WebhookQueueProcessor
from rispipeline.services.webhook_queue_service import WebhookQueueService

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/process-webhooks", response_model=ProcessWebhooksResult)
async def process_webhooks(
    max_events: int = Query(100, alias="maxEvents", ge=1, le=1000),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    processor: WebhookQueueProcessor = Depends(get_webhook_processor),
) -> ProcessWebhooksResult:
    summary = await processor.process(session_factory, max_events=max_events)
    return ProcessWebhooksResult.model_validate(summary)


@router.get("/process-webhooks", response_model=QueueLength)
async def queue_length(
    session: AsyncSession = Depends(get_session),
    queue_service: WebhookQueueService = Depends(get_queue_service),
) -> QueueLength:
    return QueueLength(queue_length=await queue_service.queue_length(session))


@router.get("/webhooks/failed", response_model=list[FailedWebhookOut])
async def list_failed_webhooks(
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
    queue_service: WebhookQueueService = Depends(get_queue_service),
) -> list[FailedWebhookOut]:
    events = await queue_service.list_failed(session, limit)
    return [FailedWebhookOut.model_validate(e) for e in events]


@router.post("/webhooks/requeue", response_model=RequeueResult)
async def requeue_failed_webhooks(
    session: AsyncSession = Depends(get_session),
    queue_service: WebhookQueueService = Depends(get_queue_service),
) -> RequeueResult:
    return RequeueResult(requeued=await queue_service.requeue_failed(session))
