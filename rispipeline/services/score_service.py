"""ScoreService — RIS scores over the cached raw metrics."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.allocation_dao import AllocationDAO
from rispipeline.engines.scoring.models import LibraryScore
from rispipeline.engines.scoring.scorer import ELIGIBILITY_THRESHOLD, calculate_scores, score_summary
from rispipeline.services.library_approval_service import LibraryApprovalService
from rispipeline.services.library_metrics_service import LibraryMetricsService


class ScoreService:
    def __init__(
        self,
        metrics_service: LibraryMetricsService,
        allocation_dao: AllocationDAO,
        approval_service: LibraryApprovalService,
    ) -> None:
        self._metrics = metrics_service
        self._allocation_dao = allocation_dao
        self._approvals = approval_service

    async def previous_scores(self, session: AsyncSession, period: str) -> dict[str, float]:
        """Library name -> pre-adjustment composite from the cached allocation of *period*.

        Entries without a ``ris_base`` are skipped.
        """
        row = await self._allocation_dao.get_by_id(session, period)
        if row is None:
            return {}
        return {
            lib["library_name"]: lib["ris_base"]
            for lib in row.payload.get("libraries", [])
            if lib.get("ris_base") is not None
        }

    async def calculate(
        self, session: AsyncSession, *, smooth_with: str | None = None
    ) -> list[LibraryScore]:
        """Score every approved library with cached metrics, highest RIS first.

        With *smooth_with* (a ``YYYY-Qn`` period) scores are EMA-smoothed
        against that period's cached allocation.
        """
        approved = await self._approvals.approved_keys(session)
        metrics = [
            m for m in await self._metrics.list_raw_metrics(session) if (m.owner, m.repo) in approved
        ]
        previous = await self.previous_scores(session, smooth_with) if smooth_with else None
        scores = calculate_scores(metrics, previous)
        scores.sort(key=lambda s: (-s.ris, s.library_name))
        return scores

    async def report(self, session: AsyncSession, threshold: float = ELIGIBILITY_THRESHOLD) -> dict:
        scores = await self.calculate(session)
        return {"scores": scores, "summary": score_summary(scores, threshold)}
