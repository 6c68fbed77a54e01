"""Tests for WebhookIntake (mock queue, installation and approval services)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from rispipeline.engines.webhook.intake import WebhookIntake
from rispipeline.engines.webhook.signature import compute_signature
from rispipeline.services import AuthenticationError, ConfigurationError

SECRET = "webhook-test-secret"


def _signed(payload: dict) -> tuple[bytes, str]:
    body = json.dumps(payload).encode()
    return body, compute_signature(body, SECRET)


def _make_intake(approved: bool = True):
    queue = AsyncMock()
    queue.enqueue.return_value = True
    installations = AsyncMock()
    installations.remove.return_value = True
    approvals = AsyncMock()
    approvals.is_approved.return_value = approved
    approvals.on_installed.return_value = "pending"
    return WebhookIntake(queue, installations, approvals), queue, installations, approvals


@pytest.fixture
def session(session_factory):
    return session_factory.session


class TestVerification:
    async def test_missing_secret_is_configuration_error(self, monkeypatch, session):
        monkeypatch.delenv("GITHUB_WEBHOOK_SECRET")
        intake, queue, _, _ = _make_intake()
        body, sig = _signed({})
        with pytest.raises(ConfigurationError):
            await intake.handle(session, body, sig, "push", "d-1")
        queue.enqueue.assert_not_awaited()

    async def test_bad_signature_has_no_side_effects(self, session):
        intake, queue, installations, _ = _make_intake()
        body, _ = _signed({"repository": {"full_name": "a/b"}})
        with pytest.raises(AuthenticationError):
            await intake.handle(session, body, "sha256=" + "f" * 64, "push", "d-1")
        queue.enqueue.assert_not_awaited()
        installations.track.assert_not_awaited()

    async def test_missing_signature(self, session):
        intake, _, _, _ = _make_intake()
        with pytest.raises(AuthenticationError):
            await intake.handle(session, b"{}", None, "push", "d-1")


class TestDispatch:
    async def test_ping(self, session):
        intake, queue, _, _ = _make_intake()
        body, sig = _signed({"zen": "Keep it logically awesome."})
        result = await intake.handle(session, body, sig, "ping", "d-ping")
        assert result["success"] is True
        assert result["action"] == "acknowledged"
        queue.enqueue.assert_not_awaited()

    async def test_content_event_enqueued(self, session):
        intake, queue, _, _ = _make_intake()
        payload = {"repository": {"full_name": "TanStack/query"}, "commits": []}
        body, sig = _signed(payload)
        result = await intake.handle(session, body, sig, "push", "d-1")
        assert result == {
            "success": True,
            "eventType": "push",
            "deliveryId": "d-1",
            "received": True,
            "action": "queued",
        }
        kwargs = queue.enqueue.call_args.kwargs
        assert (kwargs["owner"], kwargs["repo"]) == ("TanStack", "query")
        assert kwargs["payload"] == payload

    async def test_unapproved_library_not_queued(self, session):
        intake, queue, _, approvals = _make_intake(approved=False)
        body, sig = _signed({"repository": {"full_name": "someone/new-lib"}})
        result = await intake.handle(session, body, sig, "push", "d-1")
        assert result["success"] is True
        assert result["action"] == "not_approved"
        approvals.is_approved.assert_awaited_once_with(session, "someone", "new-lib")
        queue.enqueue.assert_not_awaited()

    async def test_duplicate_delivery(self, session):
        intake, queue, _, _ = _make_intake()
        queue.enqueue.return_value = False
        body, sig = _signed({"repository": {"full_name": "a/b"}})
        result = await intake.handle(session, body, sig, "issues", "d-1")
        assert result["action"] == "duplicate"

    async def test_unhandled_event_type_ignored(self, session):
        intake, queue, _, _ = _make_intake()
        body, sig = _signed({"repository": {"full_name": "a/b"}})
        result = await intake.handle(session, body, sig, "watch", "d-1")
        assert result["action"] == "ignored"
        queue.enqueue.assert_not_awaited()

    async def test_installation_created_tracks_and_submits_for_approval(self, session):
        intake, _, installations, approvals = _make_intake()
        approvals.on_installed.side_effect = ["approved", "pending"]
        payload = {
            "action": "created",
            "installation": {"id": 4242},
            "repositories": [{"full_name": "pmndrs/jotai"}, {"full_name": "pmndrs/zustand"}],
        }
        body, sig = _signed(payload)
        result = await intake.handle(session, body, sig, "installation", "d-1")
        assert result["repositories"] == 2
        assert result["awaitingApproval"] == 1
        approvals.on_installed.assert_any_await(
            session, "pmndrs", "jotai", 4242, {"full_name": "pmndrs/jotai"}
        )
        installations.track.assert_any_await(session, "pmndrs", "jotai", 4242)

    async def test_repositories_removed(self, session):
        intake, _, installations, _ = _make_intake()
        payload = {
            "action": "removed",
            "installation": {"id": 4242},
            "repositories_removed": [{"full_name": "pmndrs/jotai"}],
        }
        body, sig = _signed(payload)
        result = await intake.handle(session, body, sig, "installation_repositories", "d-1")
        assert result["action"] == "installation_removed"
        installations.remove.assert_awaited_once_with(session, "pmndrs", "jotai")


class TestPostVerificationErrors:
    async def test_invalid_json_acknowledged(self, session):
        intake, _, _, _ = _make_intake()
        body = b"not json"
        result = await intake.handle(session, body, compute_signature(body, SECRET), "push", "d-1")
        assert result["success"] is False
        assert result["received"] is True
        assert result["error"]

    async def test_missing_repository_acknowledged(self, session):
        intake, queue, _, _ = _make_intake()
        body, sig = _signed({"commits": []})
        result = await intake.handle(session, body, sig, "push", "d-1")
        assert result["success"] is False
        assert "repository" in result["error"]
        queue.enqueue.assert_not_awaited()

    async def test_storage_failure_acknowledged(self, session):
        intake, queue, _, _ = _make_intake()
        queue.enqueue.side_effect = RuntimeError("connection reset")
        body, sig = _signed({"repository": {"full_name": "a/b"}})
        result = await intake.handle(session, body, sig, "push", "d-1")
        assert result["success"] is False
        assert result["error"] == "connection reset"
