"""Tests for WebhookEventDAO and ProcessedDeliveryDAO against PostgreSQL."""

from datetime import datetime, timedelta, timezone

import pytest

from rispipeline.dao.processed_delivery_dao import ProcessedDeliveryDAO
from rispipeline.dao.webhook_event_dao import WebhookEventDAO

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
VISIBILITY = timedelta(minutes=5)


@pytest.fixture
def dao():
    return WebhookEventDAO()


@pytest.fixture
def ledger():
    return ProcessedDeliveryDAO()


async def _enqueue(dao, session, delivery_id: str) -> bool:
    return await dao.enqueue(
        session,
        delivery_id=delivery_id,
        event_type="push",
        owner="vercel",
        repo="swr",
        payload={"commits": []},
    )


class TestQueue:
    async def test_duplicate_delivery_is_dropped(self, dao, session):
        assert await _enqueue(dao, session, "d-1") is True
        assert await _enqueue(dao, session, "d-1") is False
        assert await dao.queue_length(session) == 1

    async def test_claim_is_not_repeated_within_visibility(self, dao, session):
        for i in range(3):
            await _enqueue(dao, session, f"d-{i}")

        first = await dao.claim_batch(session, limit=2, now=NOW, visibility_timeout=VISIBILITY)
        second = await dao.claim_batch(session, limit=10, now=NOW, visibility_timeout=VISIBILITY)

        assert len(first) == 2
        assert len(second) == 1
        assert {e.delivery_id for e in first}.isdisjoint({e.delivery_id for e in second})
        assert all(e.status == "processing" for e in first + second)
        assert await dao.queue_length(session) == 3

    async def test_abandoned_claims_are_reclaimed(self, dao, session):
        await _enqueue(dao, session, "d-1")
        await dao.claim_batch(session, limit=10, now=NOW, visibility_timeout=VISIBILITY)

        reclaimed = await dao.claim_batch(
            session, limit=10, now=NOW + VISIBILITY * 2, visibility_timeout=VISIBILITY
        )
        assert [e.delivery_id for e in reclaimed] == ["d-1"]

    async def test_failed_events_leave_the_queue(self, dao, session):
        await _enqueue(dao, session, "d-1")
        [event] = await dao.claim_batch(session, limit=1, now=NOW, visibility_timeout=VISIBILITY)

        await dao.mark_failed(session, event.id, error="boom", now=NOW)

        assert await dao.queue_length(session) == 0
        assert await dao.requeue_failed(session, now=NOW) == 1
        assert await dao.queue_length(session) == 1

    async def test_remove(self, dao, session):
        await _enqueue(dao, session, "d-1")
        [event] = await dao.claim_batch(session, limit=1, now=NOW, visibility_timeout=VISIBILITY)
        await dao.remove(session, event.id)
        assert await dao.queue_length(session) == 0


class TestLedger:
    async def test_record_once(self, ledger, session):
        kwargs = dict(delivery_id="d-1", event_type="push", owner="vercel", repo="swr")
        assert await ledger.record(session, **kwargs) is True
        assert await ledger.record(session, **kwargs) is False
        assert await ledger.is_processed(session, "d-1") is True
        assert await ledger.is_processed(session, "d-2") is False
