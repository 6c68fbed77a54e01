"""Data models for the collector engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

CollectStatus = Literal["succeeded", "partial", "failed", "skipped"]


@dataclass
class CollectResult:
    """Summary of one baseline collection run for a library."""

    owner: str
    repo: str
    status: CollectStatus = "failed"
    attempted: list[str] = field(default_factory=list)
    failed_sources: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    metrics_calculated: bool = False

    @property
    def success(self) -> bool:
        return self.status in ("succeeded", "partial")

    @property
    def is_partial(self) -> bool:
        return self.status == "partial"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.update(success=self.success, is_partial=self.is_partial, skipped=self.skipped)
        return data


@dataclass
class RetryStats:
    """Aggregate of a scheduler pass over many libraries."""

    attempted: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[CollectResult] = field(default_factory=list)

    def add(self, result: CollectResult) -> None:
        self.results.append(result)
        if result.skipped:
            self.skipped += 1
            return
        self.attempted += 1
        if result.status == "succeeded":
            self.succeeded += 1
        elif result.status == "partial":
            self.partial += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "partial": self.partial,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }
