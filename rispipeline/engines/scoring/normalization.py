"""Per-signal normalization into [0, 1].

Two shapes are used, both monotonically non-decreasing and bounded:

* count signals: ``log10(1 + x) / log10(1 + ceiling)`` clamped to [0, 1],
  so a library at the ecosystem ceiling scores 1.0 and everything above it
  saturates;
* ratio signals: the value itself clamped to [0, 1].

Missing, non-finite, or negative inputs normalise to 0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

Scale = Literal["log", "ratio"]


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _usable(value: float | None) -> float:
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def log_scale(value: float | None, ceiling: float) -> float:
    if ceiling <= 0:
        raise ValueError("ceiling must be positive")
    return clamp01(math.log10(1 + _usable(value)) / math.log10(1 + ceiling))


def ratio(value: float | None) -> float:
    return clamp01(_usable(value))


def ema_smoothing(current: float, previous: float | None, alpha: float = 0.7) -> float:
    """Quarter-to-quarter smoothing; *alpha* weights the current value."""
    if previous is None:
        return current
    return alpha * current + (1 - alpha) * previous


@dataclass(frozen=True)
class Signal:
    """One input of a component: field name, weight inside the component, scale."""

    field: str
    weight: float
    scale: Scale = "ratio"
    ceiling: float = 1.0

    def normalize(self, value: float | None) -> float:
        if self.scale == "log":
            return log_scale(value, self.ceiling)
        return ratio(value)


# Ceilings approximate the top of the React ecosystem over a 12-month window.
EF_SIGNALS: tuple[Signal, ...] = (
    Signal("npm_downloads", 0.50, "log", 2_000_000_000),
    Signal("gh_dependents", 0.30, "log", 500_000),
    Signal("import_mentions", 0.15, "log", 5_000),
    Signal("cdn_hits", 0.05, "log", 10_000_000_000),
)

CQ_SIGNALS: tuple[Signal, ...] = (
    Signal("pr_points", 0.60, "log", 5_000),
    Signal("issue_resolution_rate", 0.20),
    Signal("response_score", 0.10),
    Signal("unique_contribs", 0.10, "log", 2_000),
)

MH_SIGNALS: tuple[Signal, ...] = (
    Signal("active_maintainers", 0.30, "log", 50),
    Signal("release_count", 0.25, "log", 52),
    Signal("author_diversity", 0.25),
    Signal("triage_score", 0.15),
    Signal("maintainer_survey", 0.05),
)

CB_SIGNALS: tuple[Signal, ...] = (
    Signal("docs_completeness", 0.40),
    Signal("tutorials_refs", 0.25, "log", 25_000),
    Signal("helpful_events", 0.20, "log", 5_000),
    Signal("user_satisfaction", 0.15),
)

MA_SIGNALS: tuple[Signal, ...] = (
    Signal("a11y_advances", 0.20),
    Signal("perf_concurrency_support", 0.25),
    Signal("typescript_strictness", 0.20),
    Signal("rsc_compat_progress", 0.20),
    Signal("security_practices", 0.15),
)

COMPONENT_SIGNALS: dict[str, tuple[Signal, ...]] = {
    "ef": EF_SIGNALS,
    "cq": CQ_SIGNALS,
    "mh": MH_SIGNALS,
    "cb": CB_SIGNALS,
    "ma": MA_SIGNALS,
}
