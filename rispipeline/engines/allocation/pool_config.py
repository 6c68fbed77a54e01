"""Impact pool configuration — the RIS / CIS / CoIS revenue split."""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass

from rispipeline.core.config import env_float

POOL_SUM_TOLERANCE = 1e-3


class PoolConfigError(ValueError):
    """Pool configuration is internally inconsistent (a programming/config error)."""


@dataclass(frozen=True)
class ImpactPoolConfig:
    """Share of revenue set aside for impact pools and how it is split.

    Instances validate on construction; :func:`calculate_pool_allocations`
    validates again before use.
    """

    ris_pool_percent: float = 0.60
    cis_pool_percent: float = 0.24
    cois_pool_percent: float = 0.16
    total_allocation_percent: float = 0.20
    minimum_quarterly_pool_usd: float = 10_000

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise :class:`PoolConfigError` unless the split is usable."""
        shares = {
            "ris_pool_percent": self.ris_pool_percent,
            "cis_pool_percent": self.cis_pool_percent,
            "cois_pool_percent": self.cois_pool_percent,
            "total_allocation_percent": self.total_allocation_percent,
        }
        for name, value in shares.items():
            if not math.isfinite(value) or not 0.0 <= value <= 1.0:
                raise PoolConfigError(f"{name} must be within [0, 1], got {value}")
        if not math.isfinite(self.minimum_quarterly_pool_usd) or self.minimum_quarterly_pool_usd < 0:
            raise PoolConfigError(
                f"minimum_quarterly_pool_usd must be >= 0, got {self.minimum_quarterly_pool_usd}"
            )
        total = self.ris_pool_percent + self.cis_pool_percent + self.cois_pool_percent
        if abs(total - 1.0) > POOL_SUM_TOLERANCE:
            raise PoolConfigError(
                f"pool percentages must sum to 1.0, got {total} "
                f"(RIS: {self.ris_pool_percent}, CIS: {self.cis_pool_percent}, "
                f"CoIS: {self.cois_pool_percent})"
            )

    def to_dict(self) -> dict[str, float]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class PoolAllocations:
    total_impact_pool: float
    ris_pool: float
    cis_pool: float
    cois_pool: float
    should_distribute: bool

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


DEFAULT_IMPACT_POOL_CONFIG = ImpactPoolConfig()


def calculate_pool_allocations(
    total_revenue: float, config: ImpactPoolConfig = DEFAULT_IMPACT_POOL_CONFIG
) -> PoolAllocations:
    """Split *total_revenue* into the three impact pools."""
    config.validate()
    if not math.isfinite(total_revenue) or total_revenue < 0:
        raise PoolConfigError(f"total_revenue must be a non-negative number, got {total_revenue}")
    total_impact_pool = total_revenue * config.total_allocation_percent
    return PoolAllocations(
        total_impact_pool=total_impact_pool,
        ris_pool=total_impact_pool * config.ris_pool_percent,
        cis_pool=total_impact_pool * config.cis_pool_percent,
        cois_pool=total_impact_pool * config.cois_pool_percent,
        should_distribute=total_impact_pool >= config.minimum_quarterly_pool_usd,
    )


def adjust_educator_organizer_split(
    cis_percent: float, config: ImpactPoolConfig = DEFAULT_IMPACT_POOL_CONFIG
) -> ImpactPoolConfig:
    """Re-divide the non-RIS share between educators (CIS) and organizers (CoIS)."""
    if not 0.0 <= cis_percent <= 1.0:
        raise PoolConfigError(f"cis_percent must be within [0, 1], got {cis_percent}")
    non_ris = 1 - config.ris_pool_percent
    return dataclasses.replace(
        config,
        cis_pool_percent=non_ris * cis_percent,
        cois_pool_percent=non_ris * (1 - cis_percent),
    )


PRESET_CONFIGS: dict[str, ImpactPoolConfig] = {
    "equal_educator_organizer": adjust_educator_organizer_split(0.5),
    "educator_focused": adjust_educator_organizer_split(0.75),
    "organizer_focused": adjust_educator_organizer_split(0.25),
    "default": DEFAULT_IMPACT_POOL_CONFIG,
}


def pool_config_from_env() -> ImpactPoolConfig:
    """Build the active config from ``RIS_POOL_*`` variables, defaulting each field."""
    return ImpactPoolConfig(
        ris_pool_percent=env_float("RIS_POOL_RIS_PERCENT", DEFAULT_IMPACT_POOL_CONFIG.ris_pool_percent),
        cis_pool_percent=env_float("RIS_POOL_CIS_PERCENT", DEFAULT_IMPACT_POOL_CONFIG.cis_pool_percent),
        cois_pool_percent=env_float(
            "RIS_POOL_COIS_PERCENT", DEFAULT_IMPACT_POOL_CONFIG.cois_pool_percent
        ),
        total_allocation_percent=env_float(
            "RIS_POOL_TOTAL_ALLOCATION_PERCENT", DEFAULT_IMPACT_POOL_CONFIG.total_allocation_percent
        ),
        minimum_quarterly_pool_usd=env_float(
            "RIS_POOL_MINIMUM_USD", DEFAULT_IMPACT_POOL_CONFIG.minimum_quarterly_pool_usd
        ),
    )
