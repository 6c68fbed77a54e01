"""Tests for collection outcome classification, backoff and state transitions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rispipeline.models.collection_state import COLLECTION_SOURCES, CollectionState
from rispipeline.services import NotFoundError
from rispipeline.services.collection_state_service import (
    CollectionOutcome,
    CollectionStateService,
    classify_outcome,
    compute_backoff,
    sources_to_collect,
)

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _state(**overrides) -> CollectionState:
    values = dict(
        owner="remix-run",
        repo="react-router",
        library_name="react-router",
        status="running",
        attempts=0,
        completed_sources=[],
        failed_sources={},
        stale_since=None,
        running_since=NOW - timedelta(minutes=5),
    )
    values.update(overrides)
    return CollectionState(**values)


@pytest.fixture
def dao():
    dao = MagicMock()
    for name in ("get", "save", "ensure", "claim", "mark_stale", "count_by_status", "retry_summary"):
        setattr(dao, name, AsyncMock())
    dao.save.side_effect = lambda session, **kw: kw
    return dao


@pytest.fixture
def service(dao):
    with patch("rispipeline.services.collection_state_service.utcnow", return_value=NOW):
        yield CollectionStateService(dao)


# ── backoff ───────────────────────────────────────────────────────────────


class TestBackoff:
    @pytest.mark.parametrize(
        "attempts, minutes", [(0, 2), (1, 2), (2, 4), (3, 8), (5, 32), (6, 60), (20, 60)]
    )
    def test_doubles_until_cap(self, attempts, minutes):
        assert compute_backoff(attempts) == timedelta(minutes=minutes)

    def test_configurable(self, monkeypatch):
        monkeypatch.setenv("RIS_RETRY_BASE_MINUTES", "1")
        monkeypatch.setenv("RIS_RETRY_CAP_MINUTES", "5")
        assert compute_backoff(10) == timedelta(minutes=5)


# ── sources_to_collect ────────────────────────────────────────────────────


class TestSourcesToCollect:
    def test_never_collected(self):
        assert sources_to_collect(None, resume=True) == list(COLLECTION_SOURCES)

    def test_resume_skips_completed(self):
        state = _state(status="partial", completed_sources=["github_basic", "npm_metrics"])
        remaining = sources_to_collect(state, resume=True)
        assert "github_basic" not in remaining
        assert "npm_metrics" not in remaining
        assert len(remaining) == len(COLLECTION_SOURCES) - 2

    def test_no_resume_refetches_everything(self):
        state = _state(status="partial", completed_sources=list(COLLECTION_SOURCES))
        assert sources_to_collect(state, resume=False) == list(COLLECTION_SOURCES)

    def test_resume_after_full_success_is_empty(self):
        state = _state(status="succeeded", completed_sources=list(COLLECTION_SOURCES))
        assert sources_to_collect(state, resume=True) == []


# ── classify_outcome ──────────────────────────────────────────────────────


class TestClassifyOutcome:
    def test_all_succeeded(self):
        outcome = classify_outcome(
            previous_completed=[], attempted=list(COLLECTION_SOURCES), errors={}
        )
        assert outcome.status == "succeeded"
        assert outcome.completed_sources == list(COLLECTION_SOURCES)
        assert outcome.error is None

    def test_partial(self):
        outcome = classify_outcome(
            previous_completed=[],
            attempted=["github_basic", "npm_metrics"],
            errors={"npm_metrics": "No NPM package name found for this repository"},
        )
        assert outcome.status == "partial"
        assert outcome.completed_sources == ["github_basic"]
        assert outcome.failed_sources == {
            "npm_metrics": "No NPM package name found for this repository"
        }
        assert outcome.error.startswith("npm_metrics:")

    def test_all_attempted_failed(self):
        outcome = classify_outcome(
            previous_completed=["github_basic"],
            attempted=["cdn_metrics"],
            errors={"cdn_metrics": "timed out after 120s"},
        )
        assert outcome.status == "failed"
        assert outcome.completed_sources == ["github_basic"]

    def test_resumed_run_keeps_earlier_progress(self):
        outcome = classify_outcome(
            previous_completed=["github_basic", "github_prs"],
            attempted=["github_issues"],
            errors={},
        )
        assert outcome.status == "succeeded"
        assert outcome.completed_sources == ["github_basic", "github_prs", "github_issues"]

    def test_failing_source_drops_from_completed(self):
        outcome = classify_outcome(
            previous_completed=["github_basic", "github_prs"],
            attempted=["github_basic", "github_prs"],
            errors={"github_prs": "boom"},
        )
        assert outcome.completed_sources == ["github_basic"]

    def test_fatal(self):
        outcome = classify_outcome(
            previous_completed=["github_basic"],
            attempted=["github_prs", "npm_metrics"],
            errors={},
            fatal_error="GITHUB_TOKEN is not configured",
        )
        assert outcome.status == "failed"
        assert outcome.completed_sources == ["github_basic"]
        assert set(outcome.failed_sources) == {"github_prs", "npm_metrics"}

    def test_nothing_to_do_is_success(self):
        outcome = classify_outcome(
            previous_completed=list(COLLECTION_SOURCES), attempted=[], errors={}
        )
        assert outcome.status == "succeeded"


# ── record_outcome ────────────────────────────────────────────────────────


class TestRecordOutcome:
    async def test_success_resets_attempts(self, service, dao):
        claimed = _state(attempts=3)
        outcome = CollectionOutcome("succeeded", list(COLLECTION_SOURCES))
        saved = await service.record_outcome(MagicMock(), claimed, outcome)
        assert saved["attempts"] == 0
        assert saved["next_retry_at"] is None
        assert saved["last_success_at"] == NOW
        assert saved["running_since"] is None

    async def test_failure_schedules_backoff(self, service, dao):
        claimed = _state(attempts=2)
        outcome = CollectionOutcome("partial", ["github_basic"], {"github_prs": "x"}, "x")
        saved = await service.record_outcome(MagicMock(), claimed, outcome)
        assert saved["attempts"] == 3
        assert saved["status"] == "partial"
        assert saved["next_retry_at"] == NOW + timedelta(minutes=8)

    async def test_terminal_after_max_attempts(self, service, dao):
        claimed = _state(attempts=7)
        outcome = CollectionOutcome("partial", ["github_basic"], {"github_prs": "x"}, "x")
        saved = await service.record_outcome(MagicMock(), claimed, outcome)
        assert saved["attempts"] == 8
        assert saved["status"] == "failed"
        assert saved["next_retry_at"] is None

    async def test_stale_mark_cleared_when_older_than_run(self, service, dao):
        claimed = _state(stale_since=NOW - timedelta(hours=1))
        saved = await service.record_outcome(
            MagicMock(), claimed, CollectionOutcome("succeeded", list(COLLECTION_SOURCES))
        )
        assert saved["stale_since"] is None

    async def test_stale_mark_kept_when_newer_than_run(self, service, dao):
        claimed = _state(stale_since=NOW - timedelta(minutes=1))
        saved = await service.record_outcome(
            MagicMock(), claimed, CollectionOutcome("succeeded", list(COLLECTION_SOURCES))
        )
        assert "stale_since" not in saved

    async def test_failure_keeps_stale_mark(self, service, dao):
        claimed = _state(stale_since=NOW - timedelta(hours=1))
        saved = await service.record_outcome(
            MagicMock(), claimed, CollectionOutcome("failed", [], {"github_basic": "x"}, "x")
        )
        assert "stale_since" not in saved


# ── claim / reset / stats ─────────────────────────────────────────────────


class TestTransitions:
    async def test_claim_ensures_row_then_claims(self, service, dao):
        dao.claim.return_value = _state()
        claimed = await service.claim(MagicMock(), "remix-run", "react-router", library_name="rr")
        assert claimed is not None
        dao.ensure.assert_awaited_once()
        kwargs = dao.claim.call_args.kwargs
        assert kwargs["lease_cutoff"] == NOW - timedelta(seconds=900)

    async def test_claim_busy(self, service, dao):
        dao.claim.return_value = None
        assert await service.claim(MagicMock(), "a", "b") is None

    async def test_reset_unknown_library(self, service, dao):
        dao.get.return_value = None
        with pytest.raises(NotFoundError):
            await service.reset(MagicMock(), "a", "b", actor="admin@example.com")

    async def test_reset_makes_due_now(self, service, dao):
        dao.get.return_value = _state(status="failed", attempts=8)
        saved = await service.reset(MagicMock(), "remix-run", "react-router")
        assert saved["attempts"] == 0
        assert saved["next_retry_at"] == NOW

    async def test_stats(self, service, dao):
        dao.count_by_status.return_value = {"succeeded": 4, "failed": 2, "partial": 1}
        dao.retry_summary.return_value = {"due": 1, "waiting": 1, "terminal": 1, "stale": 3}
        stats = await service.stats(MagicMock())
        assert stats["total"] == 7
        assert stats["never"] == 0
        assert stats["pending_retries"] == 2
        assert stats["due_retries"] == 1
        assert stats["terminal_failures"] == 1
        assert stats["stale"] == 3
