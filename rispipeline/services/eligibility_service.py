"""EligibilityService — admin-maintained sponsorship and eligibility."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.database import utcnow
from rispipeline.core.logging import audit_logger
from rispipeline.dao.library_metrics_dao import LibraryMetricsDAO
from rispipeline.engines.scoring.eligibility import EligibilityPolicyError, resolve_eligibility
from rispipeline.models.library_metrics import LibraryMetrics
from rispipeline.services import NotFoundError, ValidationError


class EligibilityService:
    def __init__(self, metrics_dao: LibraryMetricsDAO) -> None:
        self._dao = metrics_dao

    async def update(
        self,
        session: AsyncSession,
        owner: str,
        repo: str,
        *,
        sponsorship_level: str,
        eligibility_status: str | None = None,
        sponsorship_adjustment: float | None = None,
        notes: str | None = None,
        actor: str | None = None,
    ) -> LibraryMetrics:
        """Persist eligibility for ``owner/repo``.

        ``ineligible`` always stores an adjustment of 0.0, whatever level or
        adjustment was supplied.

        Raises :class:`ValidationError` for unknown levels/statuses or an
        adjustment outside [0, 1], :class:`NotFoundError` if the library has
        never been collected.
        """
        try:
            status, adjustment = resolve_eligibility(
                sponsorship_level=sponsorship_level,
                eligibility_status=eligibility_status,
                sponsorship_adjustment=sponsorship_adjustment,
            )
        except EligibilityPolicyError as exc:
            raise ValidationError(str(exc)) from exc

        row = await self._dao.update_eligibility(
            session,
            owner=owner,
            repo=repo,
            eligibility_status=status,
            sponsorship_level=sponsorship_level,
            sponsorship_adjustment=adjustment,
            eligibility_notes=notes,
            eligibility_last_reviewed=utcnow(),
        )
        if row is None:
            raise NotFoundError(f"library {owner}/{repo} not found")

        audit_logger().info(
            "eligibility.updated",
            library=f"{owner}/{repo}",
            actor=actor,
            eligibility_status=status,
            sponsorship_level=sponsorship_level,
            sponsorship_adjustment=adjustment,
        )
        return row
