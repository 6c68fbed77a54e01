"""Tests for EngineLoop and Scheduler."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from rispipeline.engines.collector.models import RetryStats
from rispipeline.scheduler import EngineLoop, Scheduler, create_scheduler
from rispipeline.services import CollectionInProgressError


class TestEngineLoop:
    async def test_run_once_returns_count(self):
        fn = AsyncMock(return_value=3)
        loop = EngineLoop("test", fn, interval=60)
        assert await loop.run_once() == 3
        fn.assert_awaited_once()

    async def test_run_once_triggers_downstream(self):
        downstream = asyncio.Event()
        loop = EngineLoop("test", AsyncMock(return_value=2), interval=60, downstream=downstream)
        await loop.run_once()
        assert downstream.is_set()

    async def test_idle_cycle_does_not_trigger_downstream(self):
        downstream = asyncio.Event()
        loop = EngineLoop("test", AsyncMock(return_value=0), interval=60, downstream=downstream)
        await loop.run_once()
        assert not downstream.is_set()

    async def test_errors_count_as_zero(self):
        downstream = asyncio.Event()
        loop = EngineLoop(
            "test", AsyncMock(side_effect=RuntimeError("boom")), interval=60, downstream=downstream
        )
        assert await loop.run_once() == 0
        assert not downstream.is_set()

    async def test_trigger_wakes_loop(self):
        fn = AsyncMock(return_value=0)
        loop = EngineLoop("test", fn, interval=3600)
        task = asyncio.create_task(loop.loop())
        loop.trigger.set()
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert fn.await_count == 1


class TestScheduler:
    async def test_start_and_stop(self):
        first = EngineLoop("first", AsyncMock(return_value=0), interval=3600)
        second = EngineLoop("second", AsyncMock(return_value=0), interval=3600)
        scheduler = Scheduler([first, second])

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        # only the first loop is kicked on startup
        first.run_fn.assert_awaited_once()
        second.run_fn.assert_not_awaited()

    async def test_stop_without_start(self):
        await Scheduler([]).stop()


class TestCreateScheduler:
    def _build(self, session_factory):
        processor = MagicMock()
        processor.process = AsyncMock(
            return_value={"processed": 2, "failed": 0, "remainingQueueLength": 0, "durationMs": 1}
        )
        processor.prune = AsyncMock(return_value=4)
        collection = MagicMock()
        collection.refresh_stale = AsyncMock(side_effect=CollectionInProgressError("busy"))
        collection.process_retries = AsyncMock(return_value=RetryStats(attempted=3))
        scheduler = create_scheduler(
            session_factory, processor=processor, collection_scheduler=collection
        )
        return {loop.name: loop for loop in scheduler.loops}

    async def test_loops_and_wiring(self, session_factory):
        loops = self._build(session_factory)
        assert list(loops) == ["webhook_queue", "stale_refresh", "retries", "prune"]
        assert loops["webhook_queue"].downstream is loops["stale_refresh"].trigger

    async def test_webhook_drain_wakes_stale_refresh(self, session_factory):
        loops = self._build(session_factory)
        assert await loops["webhook_queue"].run_once() == 2
        assert loops["stale_refresh"].trigger.is_set()

    async def test_busy_lock_is_idle_cycle(self, session_factory):
        loops = self._build(session_factory)
        assert await loops["stale_refresh"].run_once() == 0
        assert await loops["retries"].run_once() == 3
        assert await loops["prune"].run_once() == 4
