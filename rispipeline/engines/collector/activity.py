"""Cached per-library activity and the 12-month metrics calculation.

Activity items are stored as plain JSON dicts (ISO-8601 timestamps) so the
whole structure round-trips through the ``library_metrics.activity`` JSONB
column unchanged.
"""

from __future__ import annotations

import math
import statistics
from collections import Counter
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any

from rispipeline.engines.scoring.models import LibraryRawMetrics

WINDOW_DAYS = 365
ACTIVE_MAINTAINER_MIN_COMMITS = 12

# Item identity used when merging lists (webhooks and incremental fetches).
ITEM_KEYS = {
    "prs": "number",
    "issues": "number",
    "commits": "sha",
    "releases": "id",
}


def parse_ts(value: str | None) -> datetime | None:
    """Parse a GitHub ISO timestamp (``...Z`` accepted). None passes through."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _item_time(item: dict[str, Any]) -> datetime | None:
    return parse_ts(item.get("created_at") or item.get("date") or item.get("published_at"))


@dataclass
class LibraryActivity:
    """Raw activity for one library, updated source by source."""

    owner: str
    repo: str
    library_name: str
    first_collected_at: str | None = None
    last_updated_at: str | None = None

    prs: list[dict[str, Any]] = field(default_factory=list)
    issues: list[dict[str, Any]] = field(default_factory=list)
    commits: list[dict[str, Any]] = field(default_factory=list)
    releases: list[dict[str, Any]] = field(default_factory=list)

    stars: int = 0
    forks: int = 0
    is_archived: bool = False
    last_commit_date: str | None = None

    npm_downloads_12mo: int = 0
    npm_dependents: int = 0
    typescript_support: bool = False
    cdn_hits_12mo: int = 0
    ossf_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LibraryActivity:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def empty(cls, owner: str, repo: str, library_name: str, now: datetime) -> LibraryActivity:
        stamp = now.isoformat()
        return cls(
            owner=owner,
            repo=repo,
            library_name=library_name,
            first_collected_at=stamp,
            last_updated_at=stamp,
        )

    # ── updates ───────────────────────────────────────────────────────────

    def apply_source(self, source: str, payload: Any) -> None:
        """Overwrite the fields owned by *source* with a freshly fetched payload."""
        if source == "github_basic":
            self.stars = int(payload.get("stars", 0))
            self.forks = int(payload.get("forks", 0))
            self.is_archived = bool(payload.get("is_archived", False))
            self.last_commit_date = payload.get("last_commit_date")
        elif source == "github_prs":
            self.prs = list(payload)
        elif source == "github_issues":
            self.issues = list(payload)
        elif source == "github_commits":
            self.commits = list(payload)
        elif source == "github_releases":
            self.releases = list(payload)
        elif source == "npm_metrics":
            self.npm_downloads_12mo = int(payload.get("downloads_12mo", 0))
            self.npm_dependents = int(payload.get("dependents", 0))
            self.typescript_support = bool(payload.get("typescript_support", False))
        elif source == "cdn_metrics":
            self.cdn_hits_12mo = int(payload.get("hits_12mo", 0))
        elif source == "ossf_metrics":
            self.ossf_score = float(payload.get("score", 0.0))
        else:
            raise ValueError(f"unknown collection source: {source}")

    def merge_items(self, kind: str, items: list[dict[str, Any]]) -> int:
        """Upsert *items* into the *kind* list by identity; returns how many were new.

        Later items replace earlier ones with the same key, keeping a known
        ``first_response_at`` the replacement lacks. The list stays ordered
        newest first.
        """
        key = ITEM_KEYS[kind]
        current: list[dict[str, Any]] = getattr(self, kind)
        by_key = {item.get(key): item for item in current}
        added = 0
        for item in items:
            previous = by_key.get(item.get(key))
            if previous is None:
                added += 1
            elif previous.get("first_response_at") and not item.get("first_response_at"):
                item = {**item, "first_response_at": previous["first_response_at"]}
            by_key[item.get(key)] = item
        merged = sorted(
            by_key.values(),
            key=lambda it: _item_time(it) or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        setattr(self, kind, merged)
        return added

    def prune(self, now: datetime, keep_days: int = 3 * 365) -> None:
        """Drop items older than *keep_days*; the rolling window never reads them."""
        cutoff = now - timedelta(days=keep_days)
        for kind in ITEM_KEYS:
            items = getattr(self, kind)
            setattr(
                self,
                kind,
                [it for it in items if (_item_time(it) or now) >= cutoff],
            )


# ── metrics ──────────────────────────────────────────────────────────────


def _in_window(items: list[dict[str, Any]], start: datetime, end: datetime) -> list[dict[str, Any]]:
    out = []
    for item in items:
        ts = _item_time(item)
        if ts is not None and start <= ts <= end:
            out.append(item)
    return out


def _median(values: list[float]) -> float | None:
    return statistics.median(values) if values else None


def _response_hours(items: list[dict[str, Any]]) -> list[float]:
    hours = []
    for item in items:
        created = parse_ts(item.get("created_at"))
        responded = parse_ts(item.get("first_response_at"))
        if created and responded and responded >= created:
            hours.append((responded - created).total_seconds() / 3600)
    return hours


def _latency_score(hours: float | None) -> float | None:
    """Map a latency in hours onto (0, 1]; one day scores 0.5."""
    if hours is None:
        return None
    return 1.0 / (1.0 + hours / 24.0)


def _days_since(value: str | None, now: datetime) -> float | None:
    ts = parse_ts(value)
    if ts is None:
        return None
    return (now - ts).total_seconds() / 86400


def _release_cadence_days(releases: list[dict[str, Any]]) -> float | None:
    stamps = sorted(ts for r in releases if (ts := parse_ts(r.get("published_at"))))
    if len(stamps) < 2:
        return None
    intervals = [(b - a).total_seconds() / 86400 for a, b in zip(stamps, stamps[1:])]
    return statistics.median(intervals)


def _docs_completeness(activity: LibraryActivity, now: datetime) -> float:
    score = 0.0
    if activity.stars > 10_000:
        score += 0.3
    elif activity.stars > 1_000:
        score += 0.2
    elif activity.stars > 100:
        score += 0.1
    if not activity.is_archived:
        score += 0.2
    age = _days_since(activity.last_commit_date, now)
    if age is not None and age < 30:
        score += 0.3
    elif age is not None and age < 90:
        score += 0.15
    if activity.releases:
        score += 0.2
    return min(1.0, score)


def _user_satisfaction(resolution_rate: float, response_hours: float | None) -> float:
    score = 0.5 + min(resolution_rate, 1.0) * 0.3
    if response_hours is not None and 0 < response_hours < 24:
        score += 0.2
    elif response_hours is not None and 0 < response_hours < 72:
        score += 0.1
    return max(0.0, min(1.0, score))


def _maintainer_survey(
    activity: LibraryActivity, now: datetime, active_maintainers: int, release_count: int
) -> float:
    score = 0.0 if activity.is_archived else 0.3
    age = _days_since(activity.last_commit_date, now)
    if age is not None and age < 30:
        score += 0.3
    elif age is not None and age < 90:
        score += 0.15
    if active_maintainers >= 3:
        score += 0.2
    elif active_maintainers >= 1:
        score += 0.1
    if release_count >= 4:
        score += 0.2
    elif release_count >= 1:
        score += 0.1
    return min(1.0, score)


def calculate_metrics(
    activity: LibraryActivity,
    *,
    now: datetime | None = None,
    window_days: int = WINDOW_DAYS,
) -> LibraryRawMetrics:
    """Derive raw scoring signals from *activity* over a rolling window ending at *now*.

    Signals with no underlying data (no responses observed, fewer than two
    releases ...) are left as ``None`` rather than reported as zero.
    Eligibility fields keep their defaults; callers overlay the stored ones.
    """
    now = now or datetime.now(timezone.utc)
    start = now - timedelta(days=window_days)

    prs = _in_window(activity.prs, start, now)
    issues = _in_window(activity.issues, start, now)
    commits = _in_window(activity.commits, start, now)
    releases = _in_window(activity.releases, start, now)

    # contribution quality
    pr_points = math.fsum(
        math.log10(1 + (pr.get("additions") or 0) + (pr.get("deletions") or 0))
        for pr in prs
        if pr.get("merged")
    )
    issues_opened = len(issues)
    issues_closed = sum(
        1 for i in issues if (closed := parse_ts(i.get("closed_at"))) and closed >= start
    )
    issue_resolution_rate = issues_closed / issues_opened if issues_opened else None

    response_hours = _median(_response_hours(prs) + _response_hours(issues))
    triage_hours = _median(_response_hours(issues))

    contributors = {
        item.get("author")
        for item in (*prs, *issues, *commits)
        if item.get("author")
    }

    # maintainer health
    commit_counts = Counter(c.get("author") for c in commits if c.get("author"))
    active_maintainers = sum(1 for n in commit_counts.values() if n >= ACTIVE_MAINTAINER_MIN_COMMITS)
    top_author_share = (
        commit_counts.most_common(1)[0][1] / len(commits) if commits and commit_counts else None
    )
    stable_releases = [r for r in releases if not r.get("prerelease") and not r.get("draft")]

    return LibraryRawMetrics(
        owner=activity.owner,
        repo=activity.repo,
        library_name=activity.library_name,
        collected_at=parse_ts(activity.last_updated_at),
        npm_downloads=activity.npm_downloads_12mo,
        gh_dependents=activity.npm_dependents,
        import_mentions=activity.stars // 100,
        cdn_hits=activity.cdn_hits_12mo,
        pr_points=pr_points,
        issue_resolution_rate=issue_resolution_rate,
        unique_contribs=len(contributors),
        response_score=_latency_score(response_hours),
        active_maintainers=active_maintainers,
        release_count=len(stable_releases),
        author_diversity=None if top_author_share is None else 1.0 - top_author_share,
        triage_score=_latency_score(triage_hours),
        maintainer_survey=_maintainer_survey(
            activity, now, active_maintainers, len(stable_releases)
        ),
        docs_completeness=_docs_completeness(activity, now),
        tutorials_refs=activity.stars // 10,
        helpful_events=issues_closed,
        user_satisfaction=_user_satisfaction(issue_resolution_rate or 0.0, response_hours),
        # mission alignment needs manual curation apart from these two
        a11y_advances=0.0,
        perf_concurrency_support=0.0,
        typescript_strictness=1.0 if activity.typescript_support else 0.0,
        rsc_compat_progress=0.0,
        security_practices=activity.ossf_score,
        median_first_response_hours=response_hours,
        release_cadence_days=_release_cadence_days(stable_releases),
        top_author_share=top_author_share,
    )
