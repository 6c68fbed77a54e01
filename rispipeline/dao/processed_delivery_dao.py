"""ProcessedDeliveryDAO — applied-delivery ledger."""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy import exists as sa_exists
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.processed_delivery import ProcessedDelivery


class ProcessedDeliveryDAO(BaseDAO[ProcessedDelivery]):
    model = ProcessedDelivery

    async def is_processed(self, session: AsyncSession, delivery_id: str) -> bool:
        stmt = select(sa_exists().where(ProcessedDelivery.delivery_id == delivery_id))
        result = await session.execute(stmt)
        return result.scalar_one()

    async def record(
        self,
        session: AsyncSession,
        *,
        delivery_id: str,
        event_type: str,
        owner: str,
        repo: str,
    ) -> bool:
        """Insert the ledger row. Returns False if it was already present.

        A concurrent transaction inserting the same id blocks on the unique
        index until this one finishes, so only one of them gets True.
        """
        stmt = (
            insert(ProcessedDelivery)
            .values(delivery_id=delivery_id, event_type=event_type, owner=owner, repo=repo)
            .on_conflict_do_nothing(index_elements=["delivery_id"])
            .returning(ProcessedDelivery.delivery_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def prune(self, session: AsyncSession, *, older_than: datetime) -> int:
        stmt = delete(ProcessedDelivery).where(ProcessedDelivery.processed_at < older_than)
        result = await session.execute(stmt)
        return result.rowcount or 0
