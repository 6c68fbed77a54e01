"""LibraryApprovalDAO — library_approvals table operations."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.dao.base import BaseDAO
from rispipeline.models.library_approval import LibraryApproval


def approved_clause(owner_col: Any, repo_col: Any) -> ColumnElement[bool]:
    """``EXISTS`` filter matching rows whose ``owner/repo`` is approved."""
    return exists().where(
        LibraryApproval.owner == owner_col,
        LibraryApproval.repo == repo_col,
        LibraryApproval.status == "approved",
    )


class LibraryApprovalDAO(BaseDAO[LibraryApproval]):
    model = LibraryApproval

    # ── read ──────────────────────────────────────────────────────────────

    async def get(self, session: AsyncSession, owner: str, repo: str) -> LibraryApproval | None:
        return await self.get_by_field(session, owner=owner, repo=repo)

    async def list_by_status(
        self, session: AsyncSession, status: str | None = None
    ) -> list[LibraryApproval]:
        stmt = select(LibraryApproval)
        if status is not None:
            stmt = stmt.where(LibraryApproval.status == status)
        stmt = stmt.order_by(
            LibraryApproval.submitted_at, LibraryApproval.owner, LibraryApproval.repo
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        stmt = select(LibraryApproval.status, func.count().label("cnt")).group_by(
            LibraryApproval.status
        )
        result = await session.execute(stmt)
        return {row.status: row.cnt for row in result}

    async def approved_keys(self, session: AsyncSession) -> set[tuple[str, str]]:
        stmt = select(LibraryApproval.owner, LibraryApproval.repo).where(
            LibraryApproval.status == "approved"
        )
        result = await session.execute(stmt)
        return {(row.owner, row.repo) for row in result}

    # ── write ─────────────────────────────────────────────────────────────

    async def submit(
        self,
        session: AsyncSession,
        *,
        owner: str,
        repo: str,
        installation_id: int | None = None,
        html_url: str | None = None,
        description: str | None = None,
        language: str | None = None,
        stars: int | None = None,
    ) -> bool:
        """Insert a ``pending`` row. Returns False when ``owner/repo`` already has one."""
        stmt = (
            insert(LibraryApproval)
            .values(
                owner=owner,
                repo=repo,
                installation_id=installation_id,
                html_url=html_url,
                description=description,
                language=language,
                stars=stars,
            )
            .on_conflict_do_nothing(constraint="uq_library_approvals_owner_repo")
            .returning(LibraryApproval.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def transition(
        self,
        session: AsyncSession,
        *,
        owner: str,
        repo: str,
        from_statuses: Iterable[str],
        to_status: str,
        now: datetime,
        decided_by: str | None = None,
        reason: str | None = None,
    ) -> LibraryApproval | None:
        """Move the row to *to_status* if it is currently in *from_statuses*.

        Returns the updated row, or None when the row is missing or in some
        other status. Moving back to ``pending`` restarts the submission and
        clears the previous decision.
        """
        values: dict[str, Any] = {"status": to_status, "updated_at": now}
        if to_status == "pending":
            values.update(submitted_at=now, decided_at=None, decided_by=None, reason=None)
        else:
            values.update(decided_at=now, decided_by=decided_by, reason=reason)
        stmt = (
            update(LibraryApproval)
            .where(
                LibraryApproval.owner == owner,
                LibraryApproval.repo == repo,
                LibraryApproval.status.in_(tuple(from_statuses)),
            )
            .values(**values)
            .returning(LibraryApproval)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def set_installation(
        self, session: AsyncSession, *, owner: str, repo: str, installation_id: int
    ) -> None:
        stmt = (
            update(LibraryApproval)
            .where(LibraryApproval.owner == owner, LibraryApproval.repo == repo)
            .values(installation_id=installation_id, updated_at=func.now())
        )
        await session.execute(stmt)
