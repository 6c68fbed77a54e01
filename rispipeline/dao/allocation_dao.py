"""AllocationDAO — quarterly_allocations cache."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.quarterly_allocation import QuarterlyAllocation


class AllocationDAO(BaseDAO[QuarterlyAllocation]):
    model = QuarterlyAllocation

    async def put(
        self,
        session: AsyncSession,
        *,
        period: str,
        total_revenue: float,
        payload: dict,
        computed_at: datetime,
    ) -> None:
        """Store the allocation for *period*, replacing any previous one wholesale."""
        values = {
            "total_revenue": total_revenue,
            "payload": payload,
            "computed_at": computed_at,
        }
        stmt = (
            insert(QuarterlyAllocation)
            .values(period=period, **values)
            .on_conflict_do_update(index_elements=["period"], set_=values)
        )
        await session.execute(stmt)

    async def list_periods(self, session: AsyncSession) -> list[str]:
        stmt = select(QuarterlyAllocation.period).order_by(QuarterlyAllocation.period.desc())
        result = await session.execute(stmt)
        return list(result.scalars().all())
