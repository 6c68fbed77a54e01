"""Scoring engine — eligibility policy, normalization, and RIS calculation."""

from rispipeline.engines.scoring.eligibility import (
    EligibilityPolicyError,
    get_eligibility_from_sponsorship,
    get_sponsorship_adjustment,
    resolve_eligibility,
    suggest_sponsorship_level,
    validate_eligibility_metadata,
)
from rispipeline.engines.scoring.models import LibraryRawMetrics, LibraryScore
from rispipeline.engines.scoring.scorer import (
    COMPONENT_WEIGHTS,
    ELIGIBILITY_THRESHOLD,
    calculate_scores,
    combine_components,
    is_eligible,
    score_summary,
)

__all__ = [
    "COMPONENT_WEIGHTS",
    "ELIGIBILITY_THRESHOLD",
    "EligibilityPolicyError",
    "LibraryRawMetrics",
    "LibraryScore",
    "calculate_scores",
    "combine_components",
    "get_eligibility_from_sponsorship",
    "get_sponsorship_adjustment",
    "is_eligible",
    "resolve_eligibility",
    "score_summary",
    "suggest_sponsorship_level",
    "validate_eligibility_metadata",
]
