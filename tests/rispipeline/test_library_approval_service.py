"""Tests for LibraryApprovalService (mock DAO and state service)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from rispipeline.services import ConflictError, NotFoundError, ValidationError
from rispipeline.services.library_approval_service import LibraryApprovalService


def _row(status: str = "pending", **kw) -> SimpleNamespace:
    defaults = dict(owner="acme", repo="widgets", status=status, installation_id=4242, reason=None)
    defaults.update(kw)
    return SimpleNamespace(**defaults)


def _service(current=None):
    dao = AsyncMock()
    dao.get.return_value = current
    state = AsyncMock()
    return LibraryApprovalService(dao, state), dao, state


class TestReads:
    async def test_status_of_unknown_library(self):
        service, *_ = _service()
        assert await service.status(MagicMock(), "acme", "widgets") == "none"
        assert await service.is_approved(MagicMock(), "acme", "widgets") is False

    async def test_counts_fill_missing_statuses(self):
        service, dao, _ = _service()
        dao.count_by_status.return_value = {"pending": 3}
        assert await service.counts(MagicMock()) == {"pending": 3, "approved": 0, "rejected": 0}

    async def test_list_rejects_unknown_status(self):
        service, dao, _ = _service()
        with pytest.raises(ValidationError, match="status must be one of"):
            await service.list(MagicMock(), "maybe")
        dao.list_by_status.assert_not_awaited()


class TestOnInstalled:
    async def test_new_repository_is_submitted(self):
        service, dao, _ = _service()
        session = MagicMock()
        repository = {
            "full_name": "acme/widgets",
            "html_url": "https://github.com/acme/widgets",
            "description": "Widgets",
            "language": "TypeScript",
            "stargazers_count": 120,
        }

        status = await service.on_installed(session, "acme", "widgets", 4242, repository)

        assert status == "pending"
        kwargs = dao.submit.await_args.kwargs
        assert kwargs["installation_id"] == 4242
        assert kwargs["stars"] == 120
        assert kwargs["html_url"] == "https://github.com/acme/widgets"

    async def test_reinstall_updates_installation_id(self):
        service, dao, _ = _service(_row("approved"))
        session = MagicMock()

        assert await service.on_installed(session, "acme", "widgets", 99) == "approved"

        dao.submit.assert_not_awaited()
        dao.set_installation.assert_awaited_once_with(
            session, owner="acme", repo="widgets", installation_id=99
        )

    async def test_rejected_repository_stays_rejected(self):
        service, dao, _ = _service(_row("rejected"))
        assert await service.on_installed(MagicMock(), "acme", "widgets", 99) == "rejected"
        dao.submit.assert_not_awaited()


class TestApprove:
    async def test_queues_first_collection(self):
        service, dao, state = _service(_row("pending"))
        dao.transition.return_value = _row("approved", decided_by="admin@example.com")
        session = MagicMock()

        with capture_logs() as logs:
            row = await service.approve(session, "acme", "widgets", actor="admin@example.com")

        assert row.status == "approved"
        kwargs = dao.transition.await_args.kwargs
        assert kwargs["from_statuses"] == ("pending", "rejected")
        assert kwargs["to_status"] == "approved"
        state.mark_stale.assert_awaited_once_with(session, "acme", "widgets")
        audit = [e for e in logs if e["event"] == "approval.approved"]
        assert audit[0]["actor"] == "admin@example.com"
        assert audit[0]["previous_status"] == "pending"

    async def test_already_approved(self):
        service, dao, state = _service(_row("approved"))
        with pytest.raises(ConflictError, match="already approved"):
            await service.approve(MagicMock(), "acme", "widgets")
        dao.transition.assert_not_awaited()
        state.mark_stale.assert_not_awaited()

    async def test_unknown_library(self):
        service, *_ = _service()
        with pytest.raises(NotFoundError):
            await service.approve(MagicMock(), "acme", "widgets")

    async def test_lost_race(self):
        service, dao, state = _service(_row("pending"))
        dao.transition.return_value = None
        with pytest.raises(ConflictError, match="concurrently"):
            await service.approve(MagicMock(), "acme", "widgets")
        state.mark_stale.assert_not_awaited()


class TestReject:
    async def test_reason_required(self):
        service, dao, _ = _service(_row("pending"))
        with pytest.raises(ValidationError, match="reason"):
            await service.reject(MagicMock(), "acme", "widgets", reason="   ")
        dao.transition.assert_not_awaited()

    async def test_rejecting_approved_library_records_reason(self):
        service, dao, state = _service(_row("approved"))
        dao.transition.return_value = _row("rejected", reason="archived upstream")
        session = MagicMock()

        with capture_logs() as logs:
            await service.reject(
                session, "acme", "widgets", reason=" archived upstream ", actor="admin@example.com"
            )

        kwargs = dao.transition.await_args.kwargs
        assert kwargs["reason"] == "archived upstream"
        assert kwargs["from_statuses"] == ("pending", "approved")
        state.mark_stale.assert_not_awaited()
        audit = [e for e in logs if e["event"] == "approval.rejected"]
        assert audit[0]["previous_status"] == "approved"

    async def test_already_rejected(self):
        service, *_ = _service(_row("rejected"))
        with pytest.raises(ConflictError):
            await service.reject(MagicMock(), "acme", "widgets", reason="dup")


class TestResubmit:
    async def test_rejected_goes_back_to_pending(self):
        service, dao, _ = _service(_row("rejected"))
        dao.transition.return_value = _row("pending")

        row = await service.resubmit(MagicMock(), "acme", "widgets", actor="admin@example.com")

        assert row.status == "pending"
        kwargs = dao.transition.await_args.kwargs
        assert kwargs["from_statuses"] == ("rejected",)
        assert kwargs["to_status"] == "pending"

    async def test_pending_cannot_be_resubmitted(self):
        service, dao, _ = _service(_row("pending"))
        with pytest.raises(ConflictError, match="only rejected"):
            await service.resubmit(MagicMock(), "acme", "widgets")
        dao.transition.assert_not_awaited()
