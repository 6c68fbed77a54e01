"""Eligibility policy — sponsorship level to adjustment factor and status."""

from __future__ import annotations

from dataclasses import dataclass

from rispipeline.engines.scoring.models import EligibilityStatus, SponsorshipLevel

SPONSORSHIP_ADJUSTMENTS: dict[str, float] = {
    "none": 1.0,
    "minimal": 0.9,
    "moderate": 0.7,
    "substantial": 0.4,
    "exclusive": 0.0,
}

ELIGIBILITY_STATUSES: tuple[str, ...] = ("fully_eligible", "partially_sponsored", "ineligible")


class EligibilityPolicyError(ValueError):
    """Admin-entered eligibility metadata violates the policy."""


def get_sponsorship_adjustment(level: str) -> float:
    """Multiplicative RIS discount for *level*. Raises for unknown levels."""
    try:
        return SPONSORSHIP_ADJUSTMENTS[level]
    except KeyError:
        raise EligibilityPolicyError(f"unknown sponsorship level: {level!r}") from None


def get_eligibility_from_sponsorship(level: str) -> EligibilityStatus:
    """Default eligibility status implied by a sponsorship level."""
    get_sponsorship_adjustment(level)
    if level == "exclusive":
        return "ineligible"
    if level in ("none", "minimal"):
        return "fully_eligible"
    return "partially_sponsored"


@dataclass
class SponsorshipIndicators:
    """Observable funding signals an admin can use to pick a level."""

    estimated_annual_support: float = 0
    has_full_time_engineers: bool = False
    has_exclusive_corporate_control: bool = False


def suggest_sponsorship_level(indicators: SponsorshipIndicators) -> SponsorshipLevel:
    """Heuristic starting point for an admin review, never applied automatically."""
    support = indicators.estimated_annual_support
    if indicators.has_exclusive_corporate_control or support >= 500_000:
        return "exclusive"
    if indicators.has_full_time_engineers and support >= 200_000:
        return "substantial"
    if support >= 50_000:
        return "moderate"
    if support > 0:
        return "minimal"
    return "none"


def validate_eligibility_metadata(
    *,
    eligibility_status: str | None = None,
    sponsorship_level: str | None = None,
    sponsorship_adjustment: float | None = None,
) -> list[str]:
    """Return a list of problems with admin-entered overrides (empty when valid)."""
    errors: list[str] = []
    if eligibility_status is not None and eligibility_status not in ELIGIBILITY_STATUSES:
        errors.append(f"invalid eligibility_status: {eligibility_status!r}")
    if sponsorship_level is not None and sponsorship_level not in SPONSORSHIP_ADJUSTMENTS:
        errors.append(f"invalid sponsorship_level: {sponsorship_level!r}")
    if sponsorship_adjustment is not None and not 0.0 <= sponsorship_adjustment <= 1.0:
        errors.append("sponsorship_adjustment must be between 0 and 1")
    return errors


def resolve_eligibility(
    *,
    sponsorship_level: str,
    eligibility_status: str | None = None,
    sponsorship_adjustment: float | None = None,
) -> tuple[str, float]:
    """Combine admin input into the ``(status, adjustment)`` pair to persist.

    Status defaults from the level, the adjustment defaults from the level's
    table value, and ``ineligible`` always stores an adjustment of 0.0.
    """
    errors = validate_eligibility_metadata(
        eligibility_status=eligibility_status,
        sponsorship_level=sponsorship_level,
        sponsorship_adjustment=sponsorship_adjustment,
    )
    if errors:
        raise EligibilityPolicyError("; ".join(errors))
    status = eligibility_status or get_eligibility_from_sponsorship(sponsorship_level)
    if sponsorship_adjustment is None:
        sponsorship_adjustment = get_sponsorship_adjustment(sponsorship_level)
    if status == "ineligible":
        sponsorship_adjustment = 0.0
    return status, sponsorship_adjustment
