"""Collection state, retry and lock schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from rispipeline.api.schemas.common import CamelModel


class RetryRequest(CamelModel):
    owner: str | None = None
    repo: str | None = None
    max_retries: int = Field(10, ge=1, le=100)


class CollectResultOut(CamelModel):
    owner: str
    repo: str
    status: str
    success: bool
    is_partial: bool
    skipped: bool
    attempted: list[str] = []
    failed_sources: dict[str, str] = {}
    error: str | None = None
    metrics_calculated: bool = False


class RetryStatsOut(CamelModel):
    attempted: int
    succeeded: int
    partial: int
    failed: int
    skipped: int
    results: list[CollectResultOut]


class CollectionStateOut(CamelModel):
    owner: str
    repo: str
    library_name: str | None = None
    status: str
    attempts: int
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    failed_sources: dict[str, str] | None = None
    completed_sources: list[str] | None = None
    next_retry_at: datetime | None = None
    stale_since: datetime | None = None
    running_since: datetime | None = None


class LockInfo(CamelModel):
    ingestion_id: str
    started_by: str | None = None
    started_at: datetime
    expires_at: datetime | None = None


class LockStatus(CamelModel):
    locked: bool
    lock: LockInfo | None = None
    age_ms: int | None = None
    stale: bool = False
    expired: bool = False
    heartbeat_age_ms: int | None = None


class LockReleaseResult(CamelModel):
    cleared: bool
    previous: dict | None = None


class InstallationOut(CamelModel):
    owner: str
    repo: str
    installation_id: int
    created_at: datetime


class CollectionStats(CamelModel):
    never: int = 0
    running: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    total: int = 0
    pending_retries: int = 0
    due_retries: int = 0
    terminal_failures: int = 0
    stale: int = 0
    installations: int = 0
    approval_pending: int = 0
    approval_approved: int = 0
    approval_rejected: int = 0


class StatusOverview(CamelModel):
    collection: CollectionStats
    lock: LockStatus
    queue_length: int
