"""LibraryMetricsService — cached activity and raw metrics per library."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.database import utcnow
from rispipeline.dao.library_metrics_dao import LibraryMetricsDAO
from rispipeline.engines.collector.activity import LibraryActivity, calculate_metrics
from rispipeline.engines.scoring.models import LibraryRawMetrics
from rispipeline.models.library_metrics import LibraryMetrics


def to_raw_metrics(row: LibraryMetrics) -> LibraryRawMetrics:
    """Cached metrics row -> scoring input, with the stored eligibility overlaid."""
    return LibraryRawMetrics.from_cache(
        owner=row.owner,
        repo=row.repo,
        library_name=row.library_name,
        metrics=row.metrics,
        collected_at=row.collected_at,
        eligibility_status=row.eligibility_status,
        sponsorship_level=row.sponsorship_level,
        sponsorship_adjustment=row.sponsorship_adjustment,
        eligibility_notes=row.eligibility_notes,
        eligibility_last_reviewed=row.eligibility_last_reviewed,
    )


class LibraryMetricsService:
    """Reads and writes the activity/metrics cache. Never touches eligibility."""

    def __init__(self, metrics_dao: LibraryMetricsDAO) -> None:
        self._dao = metrics_dao

    async def get(self, session: AsyncSession, owner: str, repo: str) -> LibraryMetrics | None:
        return await self._dao.get(session, owner, repo)

    async def load_activity(
        self,
        session: AsyncSession,
        owner: str,
        repo: str,
        *,
        for_update: bool = False,
    ) -> LibraryActivity | None:
        """Cached activity, or None for a library without a baseline.

        With *for_update* the row stays locked until the transaction ends.
        """
        if for_update:
            row = await self._dao.get_for_update(session, owner, repo)
        else:
            row = await self._dao.get(session, owner, repo)
        if row is None or not row.activity:
            return None
        return LibraryActivity.from_dict(row.activity)

    async def save_activity(self, session: AsyncSession, activity: LibraryActivity) -> LibraryRawMetrics:
        """Recompute raw metrics from *activity* and write both to the cache."""
        now = utcnow()
        activity.last_updated_at = now.isoformat()
        activity.prune(now)
        metrics = calculate_metrics(activity, now=now)
        await self._dao.upsert_cache(
            session,
            owner=activity.owner,
            repo=activity.repo,
            library_name=activity.library_name,
            activity=activity.to_dict(),
            metrics=metrics.metric_values(),
            collected_at=now,
        )
        return metrics

    async def list_raw_metrics(self, session: AsyncSession) -> list[LibraryRawMetrics]:
        rows = await self._dao.list_scored(session)
        return [to_raw_metrics(row) for row in rows]
