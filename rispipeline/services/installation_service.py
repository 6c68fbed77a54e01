"""InstallationService — which repositories have the GitHub App installed."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.installation_dao import InstallationDAO
from rispipeline.models.installation import Installation

log = structlog.get_logger("rispipeline.webhook")


class InstallationService:
    def __init__(self, installation_dao: InstallationDAO) -> None:
        self._dao = installation_dao

    async def track(
        self, session: AsyncSession, owner: str, repo: str, installation_id: int
    ) -> None:
        await self._dao.upsert(session, owner=owner, repo=repo, installation_id=installation_id)
        log.info("installation.tracked", library=f"{owner}/{repo}", installation_id=installation_id)

    async def remove(self, session: AsyncSession, owner: str, repo: str) -> bool:
        removed = await self._dao.remove(session, owner=owner, repo=repo)
        if removed:
            log.info("installation.removed", library=f"{owner}/{repo}")
        return removed

    async def list_all(self, session: AsyncSession) -> list[Installation]:
        return await self._dao.list_all(session)

    async def count(self, session: AsyncSession) -> int:
        return await self._dao.count(session)
