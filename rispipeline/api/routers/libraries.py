"""Libraries router — admin review of installed repositories."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.api.deps import get_admin_email, get_approval_service, get_session
from rispipeline.api.schemas.approval import LibraryApprovalOut, RejectRequest
from rispipeline.services.library_approval_service import LibraryApprovalService

router = APIRouter()


@router.get("/libraries", response_model=list[LibraryApprovalOut])
async def list_libraries(
    status: str | None = Query(None, description="pending | approved | rejected"),
    _admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    approvals: LibraryApprovalService = Depends(get_approval_service),
) -> list[LibraryApprovalOut]:
    rows = await approvals.list(session, status)
    return [LibraryApprovalOut.model_validate(row) for row in rows]


@router.post("/libraries/{owner}/{repo}/approve", response_model=LibraryApprovalOut)
async def approve_library(
    owner: str,
    repo: str,
    admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    approvals: LibraryApprovalService = Depends(get_approval_service),
) -> LibraryApprovalOut:
    """Approve a library. Its first collection runs on the next stale refresh."""
    row = await approvals.approve(session, owner, repo, actor=admin)
    return LibraryApprovalOut.model_validate(row)


@router.post("/libraries/{owner}/{repo}/reject", response_model=LibraryApprovalOut)
async def reject_library(
    owner: str,
    repo: str,
    body: RejectRequest,
    admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    approvals: LibraryApprovalService = Depends(get_approval_service),
) -> LibraryApprovalOut:
    row = await approvals.reject(session, owner, repo, reason=body.reason, actor=admin)
    return LibraryApprovalOut.model_validate(row)


@router.post("/libraries/{owner}/{repo}/resubmit", response_model=LibraryApprovalOut)
async def resubmit_library(
    owner: str,
    repo: str,
    admin: str = Depends(get_admin_email),
    session: AsyncSession = Depends(get_session),
    approvals: LibraryApprovalService = Depends(get_approval_service),
) -> LibraryApprovalOut:
    row = await approvals.resubmit(session, owner, repo, actor=admin)
    return LibraryApprovalOut.model_validate(row)
