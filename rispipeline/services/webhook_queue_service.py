"""WebhookQueueService — durable at-least-once queue of webhook deliveries."""

from __future__ import annotations

import uuid
from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.database import utcnow
from rispipeline.dao.processed_delivery_dao import ProcessedDeliveryDAO
from rispipeline.dao.webhook_event_dao import WebhookEventDAO
from rispipeline.models.webhook_event import WebhookEvent

log = structlog.get_logger("rispipeline.webhook")

VISIBILITY_TIMEOUT = timedelta(minutes=5)
PROCESSED_RETENTION = timedelta(days=7)


class WebhookQueueService:
    def __init__(
        self, event_dao: WebhookEventDAO, processed_dao: ProcessedDeliveryDAO
    ) -> None:
        self._events = event_dao
        self._processed = processed_dao

    async def enqueue(
        self,
        session: AsyncSession,
        *,
        delivery_id: str,
        event_type: str,
        owner: str,
        repo: str,
        payload: dict,
    ) -> bool:
        """Queue a delivery. False for redeliveries already queued or applied."""
        if await self._processed.is_processed(session, delivery_id):
            log.info("webhook.duplicate_processed", delivery_id=delivery_id)
            return False
        queued = await self._events.enqueue(
            session,
            delivery_id=delivery_id,
            event_type=event_type,
            owner=owner,
            repo=repo,
            payload=payload,
        )
        if not queued:
            log.info("webhook.duplicate_queued", delivery_id=delivery_id)
        return queued

    async def claim(self, session: AsyncSession, limit: int) -> list[WebhookEvent]:
        return await self._events.claim_batch(
            session, limit=limit, now=utcnow(), visibility_timeout=VISIBILITY_TIMEOUT
        )

    async def record_processed(self, session: AsyncSession, event: WebhookEvent) -> bool:
        """Enter *event* in the applied ledger. False if it was already there."""
        return await self._processed.record(
            session,
            delivery_id=event.delivery_id,
            event_type=event.event_type,
            owner=event.owner,
            repo=event.repo,
        )

    async def complete(self, session: AsyncSession, event_id: uuid.UUID) -> None:
        await self._events.remove(session, event_id)

    async def fail(self, session: AsyncSession, event_id: uuid.UUID, error: str) -> None:
        await self._events.mark_failed(session, event_id, error=error[:2000], now=utcnow())

    async def queue_length(self, session: AsyncSession) -> int:
        return await self._events.queue_length(session)

    async def list_failed(self, session: AsyncSession, limit: int = 100) -> list[WebhookEvent]:
        return await self._events.list_failed(session, limit)

    async def requeue_failed(self, session: AsyncSession) -> int:
        count = await self._events.requeue_failed(session, now=utcnow())
        if count:
            log.info("webhook.requeued_failed", count=count)
        return count

    async def prune_processed(
        self, session: AsyncSession, retention: timedelta = PROCESSED_RETENTION
    ) -> int:
        return await self._processed.prune(session, older_than=utcnow() - retention)
