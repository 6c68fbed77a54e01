"""CollectionStateDAO — collection_states table operations."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.dao.library_approval_dao import approved_clause
from rispipeline.models.collection_state import CollectionState

_RETRYABLE = ("failed", "partial")


class CollectionStateDAO(BaseDAO[CollectionState]):
    model = CollectionState

    # ── read ──────────────────────────────────────────────────────────────

    async def get(self, session: AsyncSession, owner: str, repo: str) -> CollectionState | None:
        return await self.get_by_field(session, owner=owner, repo=repo)

    async def list_all(self, session: AsyncSession) -> list[CollectionState]:
        stmt = select(CollectionState).order_by(CollectionState.owner, CollectionState.repo)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_due_retries(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        limit: int,
        max_attempts: int,
        approved_only: bool = False,
    ) -> list[CollectionState]:
        """Failed/partial libraries whose backoff has elapsed, oldest first."""
        stmt = select(CollectionState).where(
            CollectionState.status.in_(_RETRYABLE),
            CollectionState.next_retry_at.is_not(None),
            CollectionState.next_retry_at <= now,
            CollectionState.attempts < max_attempts,
        )
        if approved_only:
            stmt = stmt.where(approved_clause(CollectionState.owner, CollectionState.repo))
        stmt = stmt.order_by(
            CollectionState.next_retry_at, CollectionState.owner, CollectionState.repo
        ).limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_stale(
        self,
        session: AsyncSession,
        *,
        limit: int,
        lease_cutoff: datetime,
        approved_only: bool = False,
    ) -> list[CollectionState]:
        """Libraries invalidated by webhook activity and not currently running."""
        stmt = select(CollectionState).where(
            CollectionState.stale_since.is_not(None),
            or_(
                CollectionState.status != "running",
                CollectionState.running_since < lease_cutoff,
            ),
        )
        if approved_only:
            stmt = stmt.where(approved_clause(CollectionState.owner, CollectionState.repo))
        stmt = stmt.order_by(CollectionState.stale_since).limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_failed(self, session: AsyncSession, limit: int = 50) -> list[CollectionState]:
        stmt = (
            select(CollectionState)
            .where(CollectionState.status.in_(_RETRYABLE))
            .order_by(CollectionState.last_attempt_at.desc().nullslast())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        stmt = select(CollectionState.status, func.count().label("cnt")).group_by(
            CollectionState.status
        )
        result = await session.execute(stmt)
        return {row.status: row.cnt for row in result}

    async def retry_summary(
        self, session: AsyncSession, *, now: datetime, max_attempts: int
    ) -> dict[str, int]:
        """Counts of due retries, waiting retries, terminal failures, and stale rows."""
        retryable = CollectionState.status.in_(_RETRYABLE)
        below_cap = CollectionState.attempts < max_attempts
        stmt = select(
            func.count()
            .filter(retryable, below_cap, CollectionState.next_retry_at <= now)
            .label("due"),
            func.count()
            .filter(retryable, below_cap, CollectionState.next_retry_at > now)
            .label("waiting"),
            func.count()
            .filter(CollectionState.status == "failed", CollectionState.attempts >= max_attempts)
            .label("terminal"),
            func.count().filter(CollectionState.stale_since.is_not(None)).label("stale"),
        ).select_from(CollectionState)
        row = (await session.execute(stmt)).one()
        return {
            "due": row.due,
            "waiting": row.waiting,
            "terminal": row.terminal,
            "stale": row.stale,
        }

    # ── write ─────────────────────────────────────────────────────────────

    async def ensure(
        self, session: AsyncSession, *, owner: str, repo: str, library_name: str | None = None
    ) -> None:
        """Create a ``never`` row for ``owner/repo`` if none exists."""
        stmt = (
            insert(CollectionState)
            .values(owner=owner, repo=repo, library_name=library_name)
            .on_conflict_do_nothing(constraint="uq_collection_states_owner_repo")
        )
        await session.execute(stmt)

    async def claim(
        self,
        session: AsyncSession,
        *,
        owner: str,
        repo: str,
        now: datetime,
        lease_cutoff: datetime,
    ) -> CollectionState | None:
        """Compare-and-set the row into ``running``.

        Succeeds when the row is not running, or its running lease started
        before *lease_cutoff*. Returns the claimed row, or None when another
        worker holds a live claim.
        """
        stmt = (
            update(CollectionState)
            .where(
                CollectionState.owner == owner,
                CollectionState.repo == repo,
                or_(
                    CollectionState.status != "running",
                    CollectionState.running_since.is_(None),
                    CollectionState.running_since < lease_cutoff,
                ),
            )
            .values(
                status="running",
                running_since=now,
                last_attempt_at=now,
                updated_at=now,
            )
            .returning(CollectionState)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def save(
        self, session: AsyncSession, *, owner: str, repo: str, **values: Any
    ) -> CollectionState | None:
        """Overwrite the given columns and return the updated row."""
        column_keys = set(CollectionState.__mapper__.column_attrs.keys())
        for key in values:
            if key in {"id", "owner", "repo", "created_at"}:
                raise AttributeError(f"'{key}' is immutable and cannot be updated")
            if key not in column_keys:
                raise AttributeError(f"CollectionState has no column '{key}'")
        values.setdefault("updated_at", func.now())
        stmt = (
            update(CollectionState)
            .where(CollectionState.owner == owner, CollectionState.repo == repo)
            .values(**values)
            .returning(CollectionState)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def mark_stale(
        self, session: AsyncSession, *, owner: str, repo: str, now: datetime
    ) -> None:
        """Flag ``owner/repo`` for re-collection, keeping the earliest stale time."""
        stmt = (
            insert(CollectionState)
            .values(owner=owner, repo=repo, stale_since=now)
            .on_conflict_do_update(
                constraint="uq_collection_states_owner_repo",
                set_={
                    "stale_since": func.coalesce(CollectionState.stale_since, now),
                    "updated_at": now,
                },
            )
        )
        await session.execute(stmt)
