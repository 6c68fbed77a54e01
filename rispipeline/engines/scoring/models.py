"""Data models for the scoring engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Literal

EligibilityStatus = Literal["fully_eligible", "partially_sponsored", "ineligible"]
SponsorshipLevel = Literal["none", "minimal", "moderate", "substantial", "exclusive"]


@dataclass
class LibraryRawMetrics:
    """Per-library raw signals for one collection snapshot.

    Numeric fields are optional: ``None`` (or a negative value) means the
    source did not produce the signal and it contributes nothing.
    """

    owner: str
    repo: str
    library_name: str
    collected_at: datetime | None = None

    # ecosystem footprint
    npm_downloads: float | None = None
    gh_dependents: float | None = None
    import_mentions: float | None = None
    cdn_hits: float | None = None

    # contribution quality
    pr_points: float | None = None
    issue_resolution_rate: float | None = None
    unique_contribs: float | None = None
    response_score: float | None = None

    # maintainer health
    active_maintainers: float | None = None
    release_count: float | None = None
    author_diversity: float | None = None
    triage_score: float | None = None
    maintainer_survey: float | None = None

    # community benefit
    docs_completeness: float | None = None
    tutorials_refs: float | None = None
    helpful_events: float | None = None
    user_satisfaction: float | None = None

    # mission alignment
    a11y_advances: float | None = None
    perf_concurrency_support: float | None = None
    typescript_strictness: float | None = None
    rsc_compat_progress: float | None = None
    security_practices: float | None = None

    # informational, not scored directly
    median_first_response_hours: float | None = None
    release_cadence_days: float | None = None
    top_author_share: float | None = None

    # eligibility
    eligibility_status: EligibilityStatus = "fully_eligible"
    sponsorship_level: SponsorshipLevel = "none"
    sponsorship_adjustment: float = 1.0
    eligibility_notes: str | None = None
    eligibility_last_reviewed: datetime | None = None

    def metric_values(self) -> dict[str, float | None]:
        """Numeric signal fields only (what gets persisted as ``metrics``)."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name in METRIC_FIELDS}

    @classmethod
    def from_cache(
        cls,
        *,
        owner: str,
        repo: str,
        library_name: str,
        metrics: dict[str, Any] | None,
        collected_at: datetime | None = None,
        **eligibility: Any,
    ) -> LibraryRawMetrics:
        """Rebuild from a cached ``metrics`` dict plus eligibility columns.

        Unknown keys in *metrics* are ignored so older cache rows still load.
        """
        values = {k: v for k, v in (metrics or {}).items() if k in METRIC_FIELDS}
        return cls(
            owner=owner,
            repo=repo,
            library_name=library_name,
            collected_at=collected_at,
            **values,
            **eligibility,
        )


_NON_METRIC = {
    "owner",
    "repo",
    "library_name",
    "collected_at",
    "eligibility_status",
    "sponsorship_level",
    "sponsorship_adjustment",
    "eligibility_notes",
    "eligibility_last_reviewed",
}
METRIC_FIELDS = frozenset(f.name for f in fields(LibraryRawMetrics) if f.name not in _NON_METRIC)


@dataclass
class LibraryScore:
    """Score for one library. All component values are in [0, 1]."""

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
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def sponsorship_adjustment(self) -> float:
        return float(self.raw.get("sponsorship_adjustment", 1.0))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
