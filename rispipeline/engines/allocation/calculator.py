"""Quarterly allocation calculator — proportional RIS pool distribution."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from rispipeline.engines.allocation.pool_config import (
    DEFAULT_IMPACT_POOL_CONFIG,
    ImpactPoolConfig,
    PoolAllocations,
    calculate_pool_allocations,
)
from rispipeline.engines.scoring.models import LibraryScore
from rispipeline.engines.scoring.scorer import ELIGIBILITY_THRESHOLD

_PERIOD_RE = re.compile(r"^(\d{4})-Q([1-4])$")


class InvalidPeriodError(ValueError):
    """Period string is not of the form ``YYYY-Qn``."""


class AllocationInvariantError(ArithmeticError):
    """Distributed amounts do not add up to the RIS pool."""


# ── periods ──────────────────────────────────────────────────────────────


def current_quarter(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now.year}-Q{(now.month - 1) // 3 + 1}"


def parse_period(period: str) -> tuple[int, int]:
    """``"2025-Q3"`` -> ``(2025, 3)``. Raises :class:`InvalidPeriodError`."""
    match = _PERIOD_RE.match(period or "")
    if match is None:
        raise InvalidPeriodError(f"period must look like YYYY-Qn, got {period!r}")
    return int(match.group(1)), int(match.group(2))


def validate_period(period: str) -> str:
    parse_period(period)
    return period


def previous_quarter(period: str) -> str:
    year, quarter = parse_period(period)
    if quarter == 1:
        return f"{year - 1}-Q4"
    return f"{year}-Q{quarter - 1}"


def quarter_bounds(period: str) -> tuple[datetime, datetime]:
    """Inclusive start and exclusive end of *period*, UTC."""
    year, quarter = parse_period(period)
    start = datetime(year, 3 * (quarter - 1) + 1, 1, tzinfo=timezone.utc)
    if quarter == 4:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, 3 * quarter + 1, 1, tzinfo=timezone.utc)
    return start, end


# ── allocation ───────────────────────────────────────────────────────────


@dataclass
class LibraryAllocation:
    owner: str
    repo: str
    library_name: str
    ris: float
    allocated_amount: float
    eligible: bool
    ris_base: float | None = None


@dataclass
class QuarterlyAllocationResult:
    period: str
    total_revenue: float
    pools: PoolAllocations
    libraries: list[LibraryAllocation]
    eligibility_threshold: float
    config: ImpactPoolConfig
    computed_at: datetime
    notes: list[str] = field(default_factory=list)

    @property
    def should_distribute(self) -> bool:
        return self.pools.should_distribute

    @property
    def total_allocated(self) -> float:
        return math.fsum(lib.allocated_amount for lib in self.libraries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "total_revenue": self.total_revenue,
            "total_impact_pool": self.pools.total_impact_pool,
            "ris_pool": self.pools.ris_pool,
            "cis_pool": self.pools.cis_pool,
            "cois_pool": self.pools.cois_pool,
            "should_distribute": self.pools.should_distribute,
            "eligibility_threshold": self.eligibility_threshold,
            "eligible_count": sum(1 for lib in self.libraries if lib.eligible),
            "total_allocated": self.total_allocated,
            "config": self.config.to_dict(),
            "computed_at": self.computed_at.isoformat(),
            "libraries": [asdict(lib) for lib in self.libraries],
            "notes": list(self.notes),
        }


def allocate_ris_pool(
    scores: list[LibraryScore],
    ris_pool: float,
    threshold: float = ELIGIBILITY_THRESHOLD,
) -> list[LibraryAllocation]:
    """Distribute *ris_pool* in proportion to RIS among libraries at or above *threshold*.

    Libraries below the threshold are listed with an amount of 0. The result is
    sorted by RIS, highest first. When at least one library is eligible the
    amounts add up to *ris_pool*; otherwise nothing is distributed.
    """
    eligible = [s for s in scores if s.ris >= threshold and s.ris > 0]
    total_ris = math.fsum(s.ris for s in eligible)
    eligible_ids = {id(s) for s in eligible}

    allocations: list[LibraryAllocation] = []
    for score in scores:
        is_eligible = id(score) in eligible_ids
        amount = ris_pool * (score.ris / total_ris) if is_eligible and total_ris > 0 else 0.0
        allocations.append(
            LibraryAllocation(
                owner=score.owner,
                repo=score.repo,
                library_name=score.library_name,
                ris=score.ris,
                allocated_amount=amount,
                eligible=is_eligible,
                ris_base=score.ris_base,
            )
        )

    if eligible:
        distributed = math.fsum(a.allocated_amount for a in allocations)
        if not math.isclose(distributed, ris_pool, rel_tol=1e-6, abs_tol=1e-6):
            raise AllocationInvariantError(
                f"allocated {distributed} does not match RIS pool {ris_pool}"
            )

    allocations.sort(key=lambda a: (-a.ris, a.library_name))
    return allocations


def build_quarterly_allocation(
    period: str,
    scores: list[LibraryScore],
    total_revenue: float,
    config: ImpactPoolConfig = DEFAULT_IMPACT_POOL_CONFIG,
    *,
    threshold: float = ELIGIBILITY_THRESHOLD,
    now: datetime | None = None,
) -> QuarterlyAllocationResult:
    """Pools for *total_revenue* plus the per-library RIS distribution for *period*."""
    validate_period(period)
    pools = calculate_pool_allocations(total_revenue, config)
    libraries = allocate_ris_pool(scores, pools.ris_pool, threshold)
    notes: list[str] = []
    if not pools.should_distribute:
        notes.append(
            f"impact pool {pools.total_impact_pool:.2f} is below the "
            f"{config.minimum_quarterly_pool_usd:.2f} minimum; amounts are projections only"
        )
    if not any(lib.eligible for lib in libraries):
        notes.append("no library reached the eligibility threshold")
    return QuarterlyAllocationResult(
        period=period,
        total_revenue=total_revenue,
        pools=pools,
        libraries=libraries,
        eligibility_threshold=threshold,
        config=config,
        computed_at=now or datetime.now(timezone.utc),
        notes=notes,
    )
