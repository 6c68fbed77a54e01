"""LibraryMetricsDAO — activity/metrics cache and eligibility columns."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.library_metrics import LibraryMetrics

_ELIGIBILITY_COLUMNS = {
    "eligibility_status",
    "sponsorship_level",
    "sponsorship_adjustment",
    "eligibility_notes",
    "eligibility_last_reviewed",
}


class LibraryMetricsDAO(BaseDAO[LibraryMetrics]):
    model = LibraryMetrics

    # ── read ──────────────────────────────────────────────────────────────

    async def get(self, session: AsyncSession, owner: str, repo: str) -> LibraryMetrics | None:
        return await self.get_by_field(session, owner=owner, repo=repo)

    async def get_for_update(
        self, session: AsyncSession, owner: str, repo: str
    ) -> LibraryMetrics | None:
        """Row-locked read for read-modify-write of the activity cache."""
        stmt = (
            select(LibraryMetrics)
            .where(LibraryMetrics.owner == owner, LibraryMetrics.repo == repo)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_scored(self, session: AsyncSession) -> list[LibraryMetrics]:
        """Rows that have computed metrics, ordered by library name."""
        stmt = (
            select(LibraryMetrics)
            .where(LibraryMetrics.metrics.is_not(None))
            .order_by(LibraryMetrics.library_name)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    # ── write ─────────────────────────────────────────────────────────────

    async def upsert_cache(
        self,
        session: AsyncSession,
        *,
        owner: str,
        repo: str,
        library_name: str,
        activity: dict,
        metrics: dict,
        collected_at: datetime,
    ) -> None:
        """Write activity + metrics. Eligibility columns are never touched here."""
        stmt = (
            insert(LibraryMetrics)
            .values(
                owner=owner,
                repo=repo,
                library_name=library_name,
                activity=activity,
                metrics=metrics,
                collected_at=collected_at,
            )
            .on_conflict_do_update(
                constraint="uq_library_metrics_owner_repo",
                set_={
                    "library_name": library_name,
                    "activity": activity,
                    "metrics": metrics,
                    "collected_at": collected_at,
                    "updated_at": func.now(),
                },
            )
        )
        await session.execute(stmt)

    async def update_eligibility(
        self, session: AsyncSession, *, owner: str, repo: str, **values: Any
    ) -> LibraryMetrics | None:
        unknown = set(values) - _ELIGIBILITY_COLUMNS
        if unknown:
            raise AttributeError(f"not an eligibility column: {sorted(unknown)}")
        stmt = (
            update(LibraryMetrics)
            .where(LibraryMetrics.owner == owner, LibraryMetrics.repo == repo)
            .values(updated_at=func.now(), **values)
            .returning(LibraryMetrics)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalars().first()
