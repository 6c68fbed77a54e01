"""AllocationService — compute and cache quarterly RIS allocations."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.database import utcnow
from rispipeline.dao.allocation_dao import AllocationDAO
from rispipeline.engines.allocation.calculator import (
    InvalidPeriodError,
    build_quarterly_allocation,
    previous_quarter,
    validate_period,
)
from rispipeline.engines.allocation.pool_config import (
    ImpactPoolConfig,
    PoolConfigError,
    pool_config_from_env,
)
from rispipeline.services import NotFoundError, ValidationError
from rispipeline.services.score_service import ScoreService

log = structlog.get_logger("rispipeline.allocation")


class AllocationService:
    def __init__(self, score_service: ScoreService, allocation_dao: AllocationDAO) -> None:
        self._scores = score_service
        self._dao = allocation_dao

    async def compute(
        self,
        session: AsyncSession,
        period: str,
        total_revenue: float,
        *,
        config: ImpactPoolConfig | None = None,
        smooth: bool = False,
    ) -> dict:
        """Score, allocate and overwrite the cached allocation for *period*.

        Raises :class:`ValidationError` for a bad period, negative revenue or
        an invalid pool configuration, and :class:`NotFoundError` when no
        library has metrics yet.
        """
        try:
            validate_period(period)
            config = config or pool_config_from_env()
        except (InvalidPeriodError, PoolConfigError) as exc:
            raise ValidationError(str(exc)) from exc

        scores = await self._scores.calculate(
            session, smooth_with=previous_quarter(period) if smooth else None
        )
        if not scores:
            raise NotFoundError("no library metrics cached. Run data collection first")

        try:
            result = build_quarterly_allocation(
                period, scores, total_revenue, config, now=utcnow()
            )
        except PoolConfigError as exc:
            raise ValidationError(str(exc)) from exc

        payload = result.to_dict()
        await self._dao.put(
            session,
            period=period,
            total_revenue=total_revenue,
            payload=payload,
            computed_at=result.computed_at,
        )
        log.info(
            "allocation.computed",
            period=period,
            total_revenue=total_revenue,
            ris_pool=result.pools.ris_pool,
            libraries=len(result.libraries),
            should_distribute=result.should_distribute,
        )
        return payload

    async def get(self, session: AsyncSession, period: str) -> dict:
        try:
            validate_period(period)
        except InvalidPeriodError as exc:
            raise ValidationError(str(exc)) from exc
        row = await self._dao.get_by_id(session, period)
        if row is None:
            raise NotFoundError(f"no allocation computed for {period}")
        return row.payload

    async def list_periods(self, session: AsyncSession) -> list[str]:
        return await self._dao.list_periods(session)
