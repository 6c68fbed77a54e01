"""WebhookEventDAO — durable webhook queue operations."""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.webhook_event import WebhookEvent

_PENDING_STATUSES = ("queued", "processing")


class WebhookEventDAO(BaseDAO[WebhookEvent]):
    model = WebhookEvent

    # ── write ─────────────────────────────────────────────────────────────

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
        """Insert an event keyed by delivery id.

        Returns False when the delivery id is already queued (redelivery).
        """
        stmt = (
            insert(WebhookEvent)
            .values(
                delivery_id=delivery_id,
                event_type=event_type,
                owner=owner,
                repo=repo,
                payload=payload,
            )
            .on_conflict_do_nothing(index_elements=["delivery_id"])
            .returning(WebhookEvent.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def claim_batch(
        self,
        session: AsyncSession,
        *,
        limit: int,
        now: datetime,
        visibility_timeout: timedelta,
    ) -> list[WebhookEvent]:
        """Atomically move up to *limit* events to ``processing`` and return them.

        Candidates are ``queued`` rows plus ``processing`` rows whose claim is
        older than *visibility_timeout* (their worker died). ``FOR UPDATE SKIP
        LOCKED`` keeps concurrent claimers from selecting the same rows.
        """
        if limit <= 0:
            return []
        reclaim_before = now - visibility_timeout
        candidates = (
            select(WebhookEvent.id)
            .where(
                or_(
                    WebhookEvent.status == "queued",
                    and_(
                        WebhookEvent.status == "processing",
                        WebhookEvent.claimed_at < reclaim_before,
                    ),
                )
            )
            .order_by(WebhookEvent.received_at, WebhookEvent.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.id.in_(candidates.scalar_subquery()))
            .values(
                status="processing",
                claimed_at=now,
                attempts=WebhookEvent.attempts + 1,
                updated_at=now,
            )
            .returning(WebhookEvent)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        claimed = list(result.scalars().all())
        claimed.sort(key=lambda ev: (ev.received_at, str(ev.id)))
        return claimed

    async def mark_failed(
        self, session: AsyncSession, pk: uuid.UUID, *, error: str, now: datetime
    ) -> None:
        self._require_pk(pk)
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.id == pk)
            .values(status="failed", error=error, updated_at=now)
        )
        await session.execute(stmt)

    async def remove(self, session: AsyncSession, pk: uuid.UUID) -> None:
        """Delete a finished event without loading it."""
        self._require_pk(pk)
        table = WebhookEvent.__table__
        await session.execute(table.delete().where(table.c.id == pk))

    async def requeue_failed(self, session: AsyncSession, *, now: datetime) -> int:
        """Return every ``failed`` event to the queue. Returns the row count."""
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.status == "failed")
            .values(status="queued", claimed_at=None, error=None, updated_at=now)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    # ── read ──────────────────────────────────────────────────────────────

    async def queue_length(self, session: AsyncSession) -> int:
        """Events still waiting to be applied (queued or in flight)."""
        stmt = (
            select(func.count())
            .select_from(WebhookEvent)
            .where(WebhookEvent.status.in_(_PENDING_STATUSES))
        )
        result = await session.execute(stmt)
        return result.scalar_one()

    async def list_failed(self, session: AsyncSession, limit: int = 100) -> list[WebhookEvent]:
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.status == "failed")
            .order_by(WebhookEvent.updated_at.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
