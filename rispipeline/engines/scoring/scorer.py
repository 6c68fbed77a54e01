"""Scoring engine — raw metrics + eligibility to RIS. Pure, no I/O."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from rispipeline.engines.scoring.models import LibraryRawMetrics, LibraryScore
from rispipeline.engines.scoring.normalization import (
    COMPONENT_SIGNALS,
    Signal,
    clamp01,
    ema_smoothing,
)

COMPONENT_WEIGHTS: dict[str, float] = {
    "ef": 0.30,
    "cq": 0.25,
    "mh": 0.20,
    "cb": 0.15,
    "ma": 0.10,
}

ELIGIBILITY_THRESHOLD = 0.15
EMA_ALPHA = 0.7


def component_score(metrics: LibraryRawMetrics, signals: Iterable[Signal]) -> float:
    """Weighted mean of the normalised signals of one component."""
    total = 0.0
    for signal in signals:
        total += signal.weight * signal.normalize(getattr(metrics, signal.field, None))
    return clamp01(total)


def composite_base(
    ef: float, cq: float, mh: float, cb: float, ma: float, previous: float | None = None
) -> float:
    """Weighted component sum, EMA-smoothed against *previous* when given.

    *previous* is last quarter's composite before the sponsorship adjustment.
    """
    base = (
        COMPONENT_WEIGHTS["ef"] * ef
        + COMPONENT_WEIGHTS["cq"] * cq
        + COMPONENT_WEIGHTS["mh"] * mh
        + COMPONENT_WEIGHTS["cb"] * cb
        + COMPONENT_WEIGHTS["ma"] * ma
    )
    return clamp01(ema_smoothing(base, previous, EMA_ALPHA))


def combine_components(
    ef: float,
    cq: float,
    mh: float,
    cb: float,
    ma: float,
    sponsorship_adjustment: float = 1.0,
    previous: float | None = None,
) -> float:
    """Weighted RIS from component scores.

    >>> round(combine_components(0.8, 0.6, 0.9, 0.5, 0.7), 3)
    0.715
    >>> round(combine_components(0.8, 0.6, 0.9, 0.5, 0.7, 0.4), 3)
    0.286
    """
    base = composite_base(ef, cq, mh, cb, ma, previous)
    return clamp01(base * clamp01(sponsorship_adjustment))


def score_library(metrics: LibraryRawMetrics, previous: float | None = None) -> LibraryScore:
    components = {
        name: component_score(metrics, signals) for name, signals in COMPONENT_SIGNALS.items()
    }
    adjustment = metrics.sponsorship_adjustment
    if metrics.eligibility_status == "ineligible":
        adjustment = 0.0
    base = composite_base(previous=previous, **components)
    ris = clamp01(base * clamp01(adjustment))
    raw = dict(metrics.metric_values())
    raw["sponsorship_adjustment"] = adjustment
    raw["eligibility_status"] = metrics.eligibility_status
    raw["sponsorship_level"] = metrics.sponsorship_level
    return LibraryScore(
        library_name=metrics.library_name,
        owner=metrics.owner,
        repo=metrics.repo,
        ris=ris,
        ris_base=base,
        ris_previous=previous,
        raw=raw,
        **components,
    )


def calculate_scores(
    metrics: Iterable[LibraryRawMetrics],
    previous_scores: Mapping[str, float] | None = None,
) -> list[LibraryScore]:
    """Score every library. Output order follows input order.

    *previous_scores* maps library name to last quarter's pre-adjustment
    composite (``ris_base``); when present the composite is EMA-smoothed
    before the sponsorship adjustment.
    """
    previous_scores = previous_scores or {}
    return [score_library(m, previous_scores.get(m.library_name)) for m in metrics]


def is_eligible(score: LibraryScore, threshold: float = ELIGIBILITY_THRESHOLD) -> bool:
    return score.ris >= threshold


def score_summary(
    scores: list[LibraryScore], threshold: float = ELIGIBILITY_THRESHOLD
) -> dict:
    """Aggregate view used by the scores diagnostic endpoint."""
    values = sorted(s.ris for s in scores)
    eligible = sum(1 for v in values if v >= threshold)
    if values:
        mid = len(values) // 2
        median = values[mid] if len(values) % 2 else (values[mid - 1] + values[mid]) / 2
        average = sum(values) / len(values)
    else:
        median = average = 0.0
    return {
        "total": len(values),
        "eligible": eligible,
        "ineligible": len(values) - eligible,
        "eligibilityThreshold": threshold,
        "averageScore": average,
        "medianScore": median,
    }
