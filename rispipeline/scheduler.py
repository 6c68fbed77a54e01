"""Scheduler — periodic webhook draining, stale refresh, retries and pruning."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.core.config import env_float
from rispipeline.engines.collector.collection_scheduler import CollectionScheduler
from rispipeline.engines.webhook.processor import WebhookQueueProcessor
from rispipeline.services import CollectionInProgressError

logger = structlog.get_logger(__name__)


class EngineLoop:
    """Single engine scheduling loop with trigger/timeout wake mechanism."""

    def __init__(
        self,
        name: str,
        run_fn: Callable[[], Awaitable[int]],
        interval: float,
        downstream: asyncio.Event | None = None,
    ) -> None:
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.trigger = asyncio.Event()
        self.downstream = downstream

    async def run_once(self) -> int:
        """One cycle; errors are logged and count as zero work."""
        try:
            processed = await self.run_fn()
        except Exception:
            logger.exception("engine.error", engine=self.name)
            return 0
        logger.info("engine.cycle", engine=self.name, processed=processed)
        if processed > 0 and self.downstream is not None:
            self.downstream.set()
        return processed

    async def loop(self) -> None:
        """Run the engine in an infinite loop, waking on trigger or timeout."""
        while True:
            try:
                await asyncio.wait_for(self.trigger.wait(), timeout=self.interval)
                self.trigger.clear()
            except asyncio.TimeoutError:
                pass
            await self.run_once()


class Scheduler:
    """Manages lifecycle of all EngineLoop tasks."""

    def __init__(self, loops: list[EngineLoop]) -> None:
        self._loops = loops
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def loops(self) -> list[EngineLoop]:
        return list(self._loops)

    async def start(self) -> None:
        self._tasks = [
            asyncio.create_task(loop.loop(), name=f"engine-{loop.name}") for loop in self._loops
        ]
        # drain whatever queued up while we were down
        if self._loops:
            self._loops[0].trigger.set()
        logger.info("scheduler.started", engines=[loop.name for loop in self._loops])

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("scheduler.stopped")


def create_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    processor: WebhookQueueProcessor,
    collection_scheduler: CollectionScheduler,
) -> Scheduler:
    """Build the pipeline loops.

    Draining the webhook queue marks libraries stale, so a productive
    webhook cycle wakes the stale-refresh loop straight away.
    """
    webhook_interval = env_float("RIS_WEBHOOK_INTERVAL", 60)
    stale_interval = env_float("RIS_STALE_INTERVAL", 900)
    retry_interval = env_float("RIS_RETRY_INTERVAL", 300)
    prune_interval = env_float("RIS_PRUNE_INTERVAL", 3600)
    batch_size = int(env_float("RIS_WEBHOOK_BATCH_SIZE", 100))
    max_retries = int(env_float("RIS_MAX_RETRIES_PER_RUN", 10))
    max_stale = int(env_float("RIS_MAX_STALE_PER_RUN", 10))

    trigger_stale = asyncio.Event()

    async def _drain_webhooks() -> int:
        summary = await processor.process(session_factory, max_events=batch_size)
        return summary["processed"]

    async def _refresh_stale() -> int:
        try:
            stats = await collection_scheduler.refresh_stale(session_factory, max_stale)
        except CollectionInProgressError:
            logger.info("engine.lock_busy", engine="stale_refresh")
            return 0
        return stats.attempted

    async def _process_retries() -> int:
        try:
            stats = await collection_scheduler.process_retries(session_factory, max_retries)
        except CollectionInProgressError:
            logger.info("engine.lock_busy", engine="retries")
            return 0
        return stats.attempted

    async def _prune() -> int:
        return await processor.prune(session_factory)

    stale_loop = EngineLoop("stale_refresh", _refresh_stale, stale_interval)
    stale_loop.trigger = trigger_stale

    webhook_loop = EngineLoop(
        "webhook_queue", _drain_webhooks, webhook_interval, downstream=trigger_stale
    )
    retry_loop = EngineLoop("retries", _process_retries, retry_interval)
    prune_loop = EngineLoop("prune", _prune, prune_interval)

    return Scheduler([webhook_loop, stale_loop, retry_loop, prune_loop])
