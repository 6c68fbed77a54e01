"""Scores router — RIS scores, quarterly allocations, library eligibility."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.api.deps import (
    get_admin_email,
    get_allocation_service,
    get_eligibility_service,
    get_score_service,
    get_session,
)
from rispipeline.api.schemas.scoring import (
    AllocationRequest,
    EligibilityOut,
    EligibilityUpdate,
    ScoreOut,
    ScoresResponse,
    ScoreSummary,
)
from rispipeline.core.database import utcnow
from rispipeline.engines.allocation.calculator import current_quarter
from rispipeline.engines.scoring.scorer import ELIGIBILITY_THRESHOLD
from rispipeline.services.allocation_service import AllocationService
from rispipeline.services.eligibility_service import EligibilityService
from rispipeline.services.score_service import ScoreService

router = APIRouter()


@router.get("/scores", response_model=ScoresResponse)
async def get_scores(
    threshold: float = Query(ELIGIBILITY_THRESHOLD, ge=0, le=1),
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    score_service: ScoreService = Depends(get_score_service),
) -> ScoresResponse:
    report = await score_service.report(session, threshold)
    return ScoresResponse(
        scores=[ScoreOut.model_validate(s) for s in report["scores"]],
        summary=ScoreSummary.model_validate(report["summary"]),
    )


@router.get("/allocation")
async def get_allocation(
    period: str | None = Query(None, description="YYYY-Qn, defaults to the current quarter"),
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    allocation_service: AllocationService = Depends(get_allocation_service),
) -> dict:
    return await allocation_service.get(session, period or current_quarter(utcnow()))


@router.get("/allocation/periods")
async def list_allocation_periods(
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    allocation_service: AllocationService = Depends(get_allocation_service),
) -> list[str]:
    return await allocation_service.list_periods(session)


@router.post("/allocation")
async def compute_allocation(
    body: AllocationRequest,
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    allocation_service: AllocationService = Depends(get_allocation_service),
) -> dict:
    """Recompute and overwrite the cached allocation for a quarter."""
    period = body.period or current_quarter(utcnow())
    return await allocation_service.compute(
        session, period, body.total_revenue, smooth=body.smooth
    )


@router.patch("/libraries/{owner}/{repo}/eligibility", response_model=EligibilityOut)
async def update_eligibility(
    owner: str,
    repo: str,
    body: EligibilityUpdate,
    admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    eligibility_service: EligibilityService = Depends(get_eligibility_service),
) -> EligibilityOut:
    row = await eligibility_service.update(
        session,
        owner,
        repo,
        sponsorship_level=body.sponsorship_level,
        eligibility_status=body.eligibility_status,
        sponsorship_adjustment=body.sponsorship_adjustment,
        notes=body.notes,
        actor=admin,
    )
    return EligibilityOut.model_validate(row)
