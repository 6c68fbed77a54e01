"""Library approval schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from rispipeline.api.schemas.common import CamelModel


class LibraryApprovalOut(CamelModel):
    owner: str
    repo: str
    status: str
    installation_id: int | None = None
    html_url: str | None = None
    description: str | None = None
    language: str | None = None
    stars: int | None = None
    submitted_at: datetime
    decided_at: datetime | None = None
    decided_by: str | None = None
    reason: str | None = None


class RejectRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=2000)
