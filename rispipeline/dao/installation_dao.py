"""InstallationDAO — installations table operations."""

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.installation import Installation


class InstallationDAO(BaseDAO[Installation]):
    model = Installation

    async def upsert(
        self, session: AsyncSession, *, owner: str, repo: str, installation_id: int
    ) -> None:
        """Create or re-point the installation record for ``owner/repo``."""
        stmt = (
            insert(Installation)
            .values(owner=owner, repo=repo, installation_id=installation_id)
            .on_conflict_do_update(
                constraint="uq_installations_owner_repo",
                set_={"installation_id": installation_id, "updated_at": func.now()},
            )
        )
        await session.execute(stmt)

    async def remove(self, session: AsyncSession, *, owner: str, repo: str) -> bool:
        stmt = (
            delete(Installation)
            .where(Installation.owner == owner, Installation.repo == repo)
            .returning(Installation.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get(self, session: AsyncSession, owner: str, repo: str) -> Installation | None:
        return await self.get_by_field(session, owner=owner, repo=repo)

    async def list_all(self, session: AsyncSession) -> list[Installation]:
        stmt = select(Installation).order_by(Installation.owner, Installation.repo)
        result = await session.execute(stmt)
        return list(result.scalars().all())
