"""LibraryApprovalService — admin review of newly installed libraries.

Installing the GitHub App records the installation and submits the
repository for review. Until an admin approves it, the library is not
collected, retried, refreshed or scored, and webhook activity for it is
not queued.

Status lifecycle::

    (install) -> pending -> approved
                        \\-> rejected -> pending (resubmit)
    approved  -> rejected
    rejected  -> approved
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.database import utcnow
from rispipeline.core.logging import audit_logger
from rispipeline.dao.library_approval_dao import LibraryApprovalDAO
from rispipeline.models.library_approval import APPROVAL_STATUSES, LibraryApproval
from rispipeline.services import ConflictError, NotFoundError, ValidationError
from rispipeline.services.collection_state_service import CollectionStateService

log = structlog.get_logger("rispipeline.approval")

class LibraryApprovalService:
    def __init__(
        self,
        approval_dao: LibraryApprovalDAO,
        state_service: CollectionStateService,
    ) -> None:
        self._dao = approval_dao
        self._state = state_service

    # ── reads ─────────────────────────────────────────────────────────────

    async def status(self, session: AsyncSession, owner: str, repo: str) -> str:
        """``pending``, ``approved``, ``rejected``, or ``none`` when never submitted."""
        row = await self._dao.get(session, owner, repo)
        return row.status if row is not None else "none"

    async def is_approved(self, session: AsyncSession, owner: str, repo: str) -> bool:
        return await self.status(session, owner, repo) == "approved"

    async def approved_keys(self, session: AsyncSession) -> set[tuple[str, str]]:
        return await self._dao.approved_keys(session)

    async def list(self, session: AsyncSession, status: str | None = None) -> list[LibraryApproval]:
        if status is not None and status not in APPROVAL_STATUSES:
            raise ValidationError(
                f"status must be one of {', '.join(APPROVAL_STATUSES)}, got {status!r}"
            )
        return await self._dao.list_by_status(session, status)

    async def counts(self, session: AsyncSession) -> dict[str, int]:
        counts = await self._dao.count_by_status(session)
        return {status: counts.get(status, 0) for status in APPROVAL_STATUSES}

    # ── installation hook ─────────────────────────────────────────────────

    async def on_installed(
        self,
        session: AsyncSession,
        owner: str,
        repo: str,
        installation_id: int,
        repository: dict[str, Any] | None = None,
    ) -> str:
        """Record an App installation for ``owner/repo``. Returns the approval status.

        Unknown repositories are submitted for review with a snapshot of the
        repository payload. Known ones keep their status.
        """
        row = await self._dao.get(session, owner, repo)
        if row is None:
            repository = repository or {}
            await self._dao.submit(
                session,
                owner=owner,
                repo=repo,
                installation_id=installation_id,
                html_url=repository.get("html_url"),
                description=repository.get("description"),
                language=repository.get("language"),
                stars=repository.get("stargazers_count"),
            )
            log.info(
                "approval.submitted", library=f"{owner}/{repo}", installation_id=installation_id
            )
            return "pending"

        await self._dao.set_installation(
            session, owner=owner, repo=repo, installation_id=installation_id
        )
        if row.status != "approved":
            log.info(
                "approval.install_awaiting_review", library=f"{owner}/{repo}", status=row.status
            )
        return row.status

    # ── decisions ─────────────────────────────────────────────────────────

    async def _current(self, session: AsyncSession, owner: str, repo: str) -> LibraryApproval:
        row = await self._dao.get(session, owner, repo)
        if row is None:
            raise NotFoundError(f"no approval request for {owner}/{repo}")
        return row

    async def approve(
        self, session: AsyncSession, owner: str, repo: str, *, actor: str | None = None
    ) -> LibraryApproval:
        """Approve a pending or rejected library and queue its first collection."""
        current = await self._current(session, owner, repo)
        if current.status == "approved":
            raise ConflictError(f"{owner}/{repo} is already approved")
        row = await self._dao.transition(
            session,
            owner=owner,
            repo=repo,
            from_statuses=("pending", "rejected"),
            to_status="approved",
            now=utcnow(),
            decided_by=actor,
        )
        if row is None:
            raise ConflictError(f"{owner}/{repo} changed status concurrently")
        await self._state.mark_stale(session, owner, repo)
        audit_logger().info(
            "approval.approved",
            library=f"{owner}/{repo}",
            actor=actor,
            previous_status=current.status,
        )
        return row

    async def reject(
        self,
        session: AsyncSession,
        owner: str,
        repo: str,
        *,
        reason: str,
        actor: str | None = None,
    ) -> LibraryApproval:
        """Reject a pending or approved library. Rejected libraries are no longer collected."""
        if not reason or not reason.strip():
            raise ValidationError("a rejection reason is required")
        current = await self._current(session, owner, repo)
        if current.status == "rejected":
            raise ConflictError(f"{owner}/{repo} is already rejected")
        row = await self._dao.transition(
            session,
            owner=owner,
            repo=repo,
            from_statuses=("pending", "approved"),
            to_status="rejected",
            now=utcnow(),
            decided_by=actor,
            reason=reason.strip(),
        )
        if row is None:
            raise ConflictError(f"{owner}/{repo} changed status concurrently")
        audit_logger().info(
            "approval.rejected",
            library=f"{owner}/{repo}",
            actor=actor,
            previous_status=current.status,
            reason=row.reason,
        )
        return row

    async def resubmit(
        self, session: AsyncSession, owner: str, repo: str, *, actor: str | None = None
    ) -> LibraryApproval:
        """Send a rejected library back to the review queue."""
        current = await self._current(session, owner, repo)
        if current.status != "rejected":
            raise ConflictError(f"only rejected libraries can be resubmitted ({current.status})")
        row = await self._dao.transition(
            session,
            owner=owner,
            repo=repo,
            from_statuses=("rejected",),
            to_status="pending",
            now=utcnow(),
        )
        if row is None:
            raise ConflictError(f"{owner}/{repo} changed status concurrently")
        audit_logger().info("approval.resubmitted", library=f"{owner}/{repo}", actor=actor)
        return row
