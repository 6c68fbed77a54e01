"""Allocation engine — impact pool split and quarterly RIS distribution."""

from rispipeline.engines.allocation.calculator import (
    AllocationInvariantError,
    InvalidPeriodError,
    LibraryAllocation,
    QuarterlyAllocationResult,
    allocate_ris_pool,
    build_quarterly_allocation,
    current_quarter,
    previous_quarter,
    quarter_bounds,
    validate_period,
)
from rispipeline.engines.allocation.pool_config import (
    DEFAULT_IMPACT_POOL_CONFIG,
    PRESET_CONFIGS,
    ImpactPoolConfig,
    PoolAllocations,
    PoolConfigError,
    adjust_educator_organizer_split,
    calculate_pool_allocations,
    pool_config_from_env,
)

__all__ = [
    "AllocationInvariantError",
    "DEFAULT_IMPACT_POOL_CONFIG",
    "ImpactPoolConfig",
    "InvalidPeriodError",
    "LibraryAllocation",
    "PRESET_CONFIGS",
    "PoolAllocations",
    "PoolConfigError",
    "QuarterlyAllocationResult",
    "adjust_educator_organizer_split",
    "allocate_ris_pool",
    "build_quarterly_allocation",
    "calculate_pool_allocations",
    "current_quarter",
    "pool_config_from_env",
    "previous_quarter",
    "quarter_bounds",
    "validate_period",
]
