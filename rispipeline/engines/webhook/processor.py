"""WebhookQueueProcessor — apply queued deliveries to the activity cache."""

from __future__ import annotations

import time

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.engines.webhook.events import apply_event
from rispipeline.models.webhook_event import WebhookEvent
from rispipeline.services.collection_state_service import CollectionStateService
from rispipeline.services.library_metrics_service import LibraryMetricsService
from rispipeline.services.webhook_queue_service import WebhookQueueService

log = structlog.get_logger("rispipeline.webhook")


class WebhookQueueProcessor:
    """Drains the webhook queue, one transaction per event.

    Inside an event's transaction the delivery is first entered in the
    processed ledger; only the transaction that inserts the ledger row
    applies the effect, so a redelivered or re-claimed event is a no-op.
    """

    def __init__(
        self,
        queue_service: WebhookQueueService,
        state_service: CollectionStateService,
        metrics_service: LibraryMetricsService,
    ) -> None:
        self._queue = queue_service
        self._state = state_service
        self._metrics = metrics_service

    async def process(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_events: int = 100,
    ) -> dict[str, int]:
        started = time.monotonic()
        async with session_factory() as session:
            async with session.begin():
                events = await self._queue.claim(session, max_events)

        processed = failed = 0
        for event in events:
            try:
                async with session_factory() as session:
                    async with session.begin():
                        await self._process_one(session, event)
                processed += 1
            except Exception as exc:
                failed += 1
                log.exception(
                    "webhook.event_failed",
                    delivery_id=event.delivery_id,
                    event=event.event_type,
                    library=f"{event.owner}/{event.repo}",
                )
                async with session_factory() as session:
                    async with session.begin():
                        await self._queue.fail(session, event.id, str(exc) or type(exc).__name__)

        async with session_factory() as session:
            remaining = await self._queue.queue_length(session)

        summary = {
            "processed": processed,
            "failed": failed,
            "remainingQueueLength": remaining,
            "durationMs": int((time.monotonic() - started) * 1000),
        }
        if events:
            log.info("webhook.batch_processed", **summary)
        return summary

    async def _process_one(self, session: AsyncSession, event: WebhookEvent) -> None:
        first_time = await self._queue.record_processed(session, event)
        if first_time:
            await self.apply(session, event)
        else:
            log.info("webhook.already_processed", delivery_id=event.delivery_id)
        await self._queue.complete(session, event.id)

    async def apply(self, session: AsyncSession, event: WebhookEvent) -> int:
        """Mark the library stale and merge the event into its cached activity.

        A library with no baseline yet only gets the stale mark; its first
        collection picks the activity up.
        """
        await self._state.mark_stale(session, event.owner, event.repo)
        activity = await self._metrics.load_activity(
            session, event.owner, event.repo, for_update=True
        )
        if activity is None:
            return 0
        added = apply_event(activity, event.event_type, event.payload or {})
        await self._metrics.save_activity(session, activity)
        return added

    async def prune(self, session_factory: async_sessionmaker[AsyncSession]) -> int:
        async with session_factory() as session:
            async with session.begin():
                return await self._queue.prune_processed(session)
