"""Score, eligibility and allocation schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from rispipeline.api.schemas.common import CamelModel


class ScoreOut(CamelModel):
    library_name: str
    owner: str
    repo: str
    ris: float
    ef: float
    cq: float
    mh: float
    cb: float
    ma: float
    ris_base: float | None = None
    ris_previous: float | None = None
    raw: dict = {}


class ScoreSummary(CamelModel):
    total: int
    eligible: int
    ineligible: int
    eligibility_threshold: float
    average_score: float
    median_score: float


class ScoresResponse(CamelModel):
    scores: list[ScoreOut]
    summary: ScoreSummary


class AllocationRequest(CamelModel):
    period: str | None = None
    total_revenue: float = Field(..., ge=0)
    smooth: bool = False


class EligibilityUpdate(CamelModel):
    sponsorship_level: str
    eligibility_status: str | None = None
    sponsorship_adjustment: float | None = None
    notes: str | None = None


class EligibilityOut(CamelModel):
    owner: str
    repo: str
    library_name: str
    eligibility_status: str
    sponsorship_level: str
    sponsorship_adjustment: float
    eligibility_notes: str | None = None
    eligibility_last_reviewed: datetime | None = None
