"""BaselineCollector — resumable multi-source collection for one library."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.core.config import ENV_GITHUB_TOKEN, source_timeout
from rispipeline.core.database import utcnow
from rispipeline.engines.collector.activity import LibraryActivity
from rispipeline.engines.collector.ecosystem_client import EcosystemClient
from rispipeline.engines.collector.github_client import GitHubClient
from rispipeline.engines.collector.models import CollectResult
from rispipeline.engines.collector.sources import SourceContext, SourceFetcher, fetch_sources
from rispipeline.models.collection_state import CollectionState
from rispipeline.services.collection_state_service import (
    CollectionOutcome,
    CollectionStateService,
    classify_outcome,
    sources_to_collect,
)

if TYPE_CHECKING:
    from rispipeline.services.library_metrics_service import LibraryMetricsService

log = structlog.get_logger("rispipeline.collector")

_MAX_CONCURRENCY = 3


class BaselineCollector:
    """Orchestration layer: claim → fetch sources → merge cache → record outcome.

    Each step runs in its own short transaction so a slow upstream never
    holds database locks.
    """

    def __init__(
        self,
        state_service: CollectionStateService,
        metrics_service: LibraryMetricsService,
        *,
        github_factory: Callable[[str], GitHubClient] = GitHubClient,
        ecosystem_factory: Callable[[], EcosystemClient] = EcosystemClient,
        fetchers: dict[str, SourceFetcher] | None = None,
    ) -> None:
        self._state = state_service
        self._metrics = metrics_service
        self._github_factory = github_factory
        self._ecosystem_factory = ecosystem_factory
        self._fetchers = fetchers

    async def collect(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        owner: str,
        repo: str,
        *,
        library_name: str | None = None,
        resume: bool = True,
        force: bool = False,
    ) -> CollectResult:
        """Collect ``owner/repo``.

        *resume* fetches only sources that have not completed yet; *force*
        (or ``resume=False``) refetches everything. A library another worker
        is already collecting is reported as ``skipped``.
        """
        resume = resume and not force
        result = CollectResult(owner=owner, repo=repo)
        library = f"{owner}/{repo}"

        async with session_factory() as session:
            async with session.begin():
                claimed = await self._state.claim(
                    session, owner, repo, library_name=library_name
                )
        if claimed is None:
            log.info("collector.skipped_running", library=library)
            result.status = "skipped"
            result.error = "collection already running for this library"
            return result

        sources = sources_to_collect(claimed, resume=resume)
        result.attempted = sources
        name = library_name or claimed.library_name or repo

        try:
            outcome = await self._run_sources(session_factory, claimed, name, sources, result)
        except Exception as exc:
            log.exception("collector.crashed", library=library)
            outcome = classify_outcome(
                previous_completed=claimed.completed_sources or [],
                attempted=sources,
                errors={},
                fatal_error=str(exc) or type(exc).__name__,
            )

        async with session_factory() as session:
            async with session.begin():
                await self._state.record_outcome(session, claimed, outcome)

        result.status = outcome.status
        result.failed_sources = outcome.failed_sources
        result.error = outcome.error
        log_method = log.info if outcome.status == "succeeded" else log.warning
        log_method(
            "collector.finished",
            library=library,
            status=outcome.status,
            attempted=len(sources),
            failed=sorted(outcome.failed_sources),
        )
        return result

    async def _run_sources(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claimed: CollectionState,
        library_name: str,
        sources: list[str],
        result: CollectResult,
    ) -> CollectionOutcome:
        previous_completed = claimed.completed_sources or []
        if not sources:
            return classify_outcome(previous_completed=previous_completed, attempted=[], errors={})

        token = os.environ.get(ENV_GITHUB_TOKEN, "")
        if not token:
            log.error("collector.github_token_missing", library=f"{claimed.owner}/{claimed.repo}")
            return classify_outcome(
                previous_completed=previous_completed,
                attempted=sources,
                errors={},
                fatal_error=f"{ENV_GITHUB_TOKEN} is not configured",
            )

        async with self._github_factory(token) as github, self._ecosystem_factory() as ecosystem:
            ctx = SourceContext(
                owner=claimed.owner,
                repo=claimed.repo,
                github=github,
                ecosystem=ecosystem,
                now=utcnow(),
            )
            payloads, errors = await fetch_sources(
                ctx, sources, timeout=source_timeout(), fetchers=self._fetchers
            )

        if payloads:
            async with session_factory() as session:
                async with session.begin():
                    activity = await self._metrics.load_activity(
                        session, claimed.owner, claimed.repo, for_update=True
                    )
                    if activity is None:
                        activity = LibraryActivity.empty(
                            claimed.owner, claimed.repo, library_name, ctx.now
                        )
                    activity.library_name = library_name
                    for source, payload in payloads.items():
                        activity.apply_source(source, payload)
                    await self._metrics.save_activity(session, activity)
            result.metrics_calculated = True

        return classify_outcome(
            previous_completed=previous_completed, attempted=sources, errors=errors
        )

    async def collect_many(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        libraries: list[tuple[str, str, str | None]],
        *,
        resume: bool = True,
        heartbeat: Callable[[], Awaitable[object]] | None = None,
        concurrency: int = _MAX_CONCURRENCY,
    ) -> list[CollectResult]:
        """Collect many ``(owner, repo, library_name)`` with bounded concurrency.

        Callers hold the global collection lock; *heartbeat* is awaited after
        each library so the lease does not lapse during long runs.
        """
        sem = asyncio.Semaphore(concurrency)

        async def _one(owner: str, repo: str, name: str | None) -> CollectResult:
            async with sem:
                result = await self.collect(
                    session_factory, owner, repo, library_name=name, resume=resume
                )
                if heartbeat is not None:
                    await heartbeat()
                return result

        return list(await asyncio.gather(*(_one(*lib) for lib in libraries)))
