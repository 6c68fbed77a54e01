"""CollectionStateService — per-library collection progress and retry bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.config import (
    library_lease_ttl,
    max_collection_attempts,
    retry_base_minutes,
    retry_cap_minutes,
)
from rispipeline.core.database import utcnow
from rispipeline.core.logging import audit_logger
from rispipeline.dao.collection_state_dao import CollectionStateDAO
from rispipeline.models.collection_state import COLLECTION_SOURCES, CollectionState
from rispipeline.services import NotFoundError

log = structlog.get_logger("rispipeline.collector")


def compute_backoff(attempts: int) -> timedelta:
    """``min(base * 2^(attempts-1), cap)`` minutes; attempts below 1 count as 1."""
    exponent = max(attempts, 1) - 1
    minutes = min(retry_base_minutes() * (2**exponent), retry_cap_minutes())
    return timedelta(minutes=minutes)


def sources_to_collect(state: CollectionState | None, *, resume: bool) -> list[str]:
    """Sources a run must fetch.

    Resume skips sources that completed in an earlier attempt; a library that
    was never collected, or a non-resume run, fetches everything.
    """
    if not resume or state is None or state.status == "never":
        return list(COLLECTION_SOURCES)
    completed = set(state.completed_sources or [])
    return [s for s in COLLECTION_SOURCES if s not in completed]


@dataclass
class CollectionOutcome:
    status: str
    completed_sources: list[str]
    failed_sources: dict[str, str] = field(default_factory=dict)
    error: str | None = None


def classify_outcome(
    *,
    previous_completed: list[str],
    attempted: list[str],
    errors: dict[str, str],
    fatal_error: str | None = None,
) -> CollectionOutcome:
    """Fold one run's per-source results into the library's overall status.

    ``succeeded`` when nothing failed, ``partial`` when some attempted
    sources succeeded and some failed, ``failed`` when every attempted
    source failed or the run aborted before fetching.
    """
    if fatal_error is not None:
        return CollectionOutcome(
            status="failed",
            completed_sources=[s for s in COLLECTION_SOURCES if s in set(previous_completed)],
            failed_sources={s: fatal_error for s in attempted},
            error=fatal_error,
        )

    succeeded = [s for s in attempted if s not in errors]
    completed = (set(previous_completed) - set(errors)) | set(succeeded)
    if not errors:
        status = "succeeded"
    elif succeeded:
        status = "partial"
    else:
        status = "failed"
    error = None
    if errors:
        error = "; ".join(f"{source}: {message}" for source, message in sorted(errors.items()))
    return CollectionOutcome(
        status=status,
        completed_sources=[s for s in COLLECTION_SOURCES if s in completed],
        failed_sources=dict(errors),
        error=error,
    )


class CollectionStateService:
    """The only writer of ``collection_states`` apart from the stale marker."""

    def __init__(self, state_dao: CollectionStateDAO) -> None:
        self._dao = state_dao

    # ── reads ─────────────────────────────────────────────────────────────

    async def get(self, session: AsyncSession, owner: str, repo: str) -> CollectionState | None:
        return await self._dao.get(session, owner, repo)

    async def list_all(self, session: AsyncSession) -> list[CollectionState]:
        return await self._dao.list_all(session)

    async def list_due_retries(
        self, session: AsyncSession, limit: int, now: datetime | None = None
    ) -> list[CollectionState]:
        """Due retries, restricted to approved libraries."""
        return await self._dao.list_due_retries(
            session,
            now=now or utcnow(),
            limit=limit,
            max_attempts=max_collection_attempts(),
            approved_only=True,
        )

    async def list_stale(self, session: AsyncSession, limit: int) -> list[CollectionState]:
        cutoff = utcnow() - timedelta(seconds=library_lease_ttl())
        return await self._dao.list_stale(
            session, limit=limit, lease_cutoff=cutoff, approved_only=True
        )

    async def list_failed(self, session: AsyncSession, limit: int = 50) -> list[CollectionState]:
        return await self._dao.list_failed(session, limit)

    async def stats(self, session: AsyncSession) -> dict[str, int]:
        """Counts per status plus retry/terminal/stale summaries."""
        counts = {status: 0 for status in ("never", "running", "succeeded", "partial", "failed")}
        counts.update(await self._dao.count_by_status(session))
        summary = await self._dao.retry_summary(
            session, now=utcnow(), max_attempts=max_collection_attempts()
        )
        counts["total"] = sum(counts[s] for s in ("never", "running", "succeeded", "partial", "failed"))
        counts["pending_retries"] = summary["due"] + summary["waiting"]
        counts["due_retries"] = summary["due"]
        counts["terminal_failures"] = summary["terminal"]
        counts["stale"] = summary["stale"]
        return counts

    # ── transitions ───────────────────────────────────────────────────────

    async def claim(
        self,
        session: AsyncSession,
        owner: str,
        repo: str,
        *,
        library_name: str | None = None,
    ) -> CollectionState | None:
        """Move the library to ``running``; None if another run holds a live claim."""
        await self._dao.ensure(session, owner=owner, repo=repo, library_name=library_name)
        now = utcnow()
        return await self._dao.claim(
            session,
            owner=owner,
            repo=repo,
            now=now,
            lease_cutoff=now - timedelta(seconds=library_lease_ttl()),
        )

    async def record_outcome(
        self,
        session: AsyncSession,
        claimed: CollectionState,
        outcome: CollectionOutcome,
    ) -> CollectionState | None:
        """Persist the result of the run that produced *claimed*.

        Success resets the attempt counter. Failure and partial success bump
        it and schedule the next retry with exponential backoff; once the
        counter reaches the configured maximum the library becomes terminal
        ``failed`` with no retry time until it is reset.
        """
        now = utcnow()
        values: dict = {
            "status": outcome.status,
            "completed_sources": outcome.completed_sources,
            "failed_sources": outcome.failed_sources,
            "last_error": outcome.error,
            "running_since": None,
        }
        if outcome.status == "succeeded":
            values["attempts"] = 0
            values["next_retry_at"] = None
            values["last_success_at"] = now
            if claimed.stale_since is None or (
                claimed.running_since is not None and claimed.stale_since <= claimed.running_since
            ):
                values["stale_since"] = None
        else:
            attempts = (claimed.attempts or 0) + 1
            values["attempts"] = attempts
            if attempts >= max_collection_attempts():
                values["status"] = "failed"
                values["next_retry_at"] = None
                log.error(
                    "collector.retries_exhausted",
                    library=f"{claimed.owner}/{claimed.repo}",
                    attempts=attempts,
                    error=outcome.error,
                )
            else:
                values["next_retry_at"] = now + compute_backoff(attempts)
        return await self._dao.save(session, owner=claimed.owner, repo=claimed.repo, **values)

    async def reset(
        self, session: AsyncSession, owner: str, repo: str, *, actor: str | None = None
    ) -> CollectionState:
        """Clear attempts and make the library due for retry immediately."""
        state = await self._dao.get(session, owner, repo)
        if state is None:
            raise NotFoundError(f"no collection state for {owner}/{repo}")
        updated = await self._dao.save(
            session, owner=owner, repo=repo, attempts=0, next_retry_at=utcnow()
        )
        audit_logger().info(
            "collection.reset",
            library=f"{owner}/{repo}",
            actor=actor,
            previous_attempts=state.attempts,
            previous_status=state.status,
        )
        return updated

    async def mark_stale(self, session: AsyncSession, owner: str, repo: str) -> None:
        await self._dao.mark_stale(session, owner=owner, repo=repo, now=utcnow())
