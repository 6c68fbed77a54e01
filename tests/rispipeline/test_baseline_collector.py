"""Tests for BaselineCollector driven by an in-memory collection-state store."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from rispipeline.engines.collector.activity import LibraryActivity
from rispipeline.engines.collector.baseline import BaselineCollector
from rispipeline.models.collection_state import COLLECTION_SOURCES, CollectionState
from rispipeline.services.collection_state_service import CollectionStateService


class InMemoryStateDAO:
    """Just enough of CollectionStateDAO to drive the state machine."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], CollectionState] = {}

    async def get(self, session, owner, repo):
        return self.rows.get((owner, repo))

    async def ensure(self, session, *, owner, repo, library_name=None):
        self.rows.setdefault(
            (owner, repo),
            CollectionState(
                owner=owner,
                repo=repo,
                library_name=library_name,
                status="never",
                attempts=0,
                completed_sources=[],
                failed_sources={},
            ),
        )

    async def claim(self, session, *, owner, repo, now, lease_cutoff):
        row = self.rows[(owner, repo)]
        if row.status == "running" and row.running_since and row.running_since >= lease_cutoff:
            return None
        row.status = "running"
        row.running_since = now
        row.last_attempt_at = now
        return row

    async def save(self, session, *, owner, repo, **values):
        row = self.rows[(owner, repo)]
        for key, value in values.items():
            setattr(row, key, value)
        return row

    async def list_due_retries(self, session, *, now, limit, max_attempts, approved_only=False):
        due = [
            row
            for row in self.rows.values()
            if row.status in ("failed", "partial")
            and row.next_retry_at is not None
            and row.next_retry_at <= now
            and row.attempts < max_attempts
        ]
        return due[:limit]


class _Client:
    def __init__(self, *args) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


def _fetchers(failing: dict[str, str] | None = None, calls: list[str] | None = None):
    failing = failing or {}

    def _make(source: str):
        async def _fetch(ctx):
            if calls is not None:
                calls.append(source)
            if source in failing:
                raise RuntimeError(failing[source])
            if source.startswith("github_") and source != "github_basic":
                return []
            return {}

        return _fetch

    return {source: _make(source) for source in COLLECTION_SOURCES}


@pytest.fixture
def dao() -> InMemoryStateDAO:
    return InMemoryStateDAO()


@pytest.fixture
def metrics() -> AsyncMock:
    mock = AsyncMock()
    mock.load_activity.return_value = None
    return mock


def _collector(dao, metrics, fetchers) -> BaselineCollector:
    return BaselineCollector(
        CollectionStateService(dao),
        metrics,
        github_factory=_Client,
        ecosystem_factory=_Client,
        fetchers=fetchers,
    )


class TestCollect:
    async def test_first_run_fetches_everything(self, dao, metrics, session_factory):
        calls: list[str] = []
        collector = _collector(dao, metrics, _fetchers(calls=calls))

        result = await collector.collect(session_factory, "vercel", "swr")

        assert result.status == "succeeded"
        assert sorted(calls) == sorted(COLLECTION_SOURCES)
        assert result.metrics_calculated is True
        row = dao.rows[("vercel", "swr")]
        assert row.status == "succeeded"
        assert row.attempts == 0
        assert row.running_since is None
        assert row.completed_sources == list(COLLECTION_SOURCES)
        saved = metrics.save_activity.await_args.args[1]
        assert isinstance(saved, LibraryActivity)
        assert saved.library_name == "swr"

    async def test_partial_then_resume_fetches_only_missing(self, dao, metrics, session_factory):
        first = _collector(dao, metrics, _fetchers(failing={"npm_metrics": "registry down"}))
        result = await first.collect(session_factory, "vercel", "swr")

        assert result.status == "partial"
        assert result.failed_sources == {"npm_metrics": "registry down"}
        row = dao.rows[("vercel", "swr")]
        assert row.attempts == 1
        assert row.next_retry_at is not None
        assert "npm_metrics" not in row.completed_sources

        calls: list[str] = []
        second = _collector(dao, metrics, _fetchers(calls=calls))
        result = await second.collect(session_factory, "vercel", "swr")

        assert calls == ["npm_metrics"]
        assert result.status == "succeeded"
        assert row.attempts == 0
        assert row.failed_sources == {}

    async def test_force_refetches_everything(self, dao, metrics, session_factory):
        await _collector(dao, metrics, _fetchers()).collect(session_factory, "vercel", "swr")

        calls: list[str] = []
        await _collector(dao, metrics, _fetchers(calls=calls)).collect(
            session_factory, "vercel", "swr", force=True
        )
        assert len(calls) == len(COLLECTION_SOURCES)

    async def test_every_source_failing_is_failed(self, dao, metrics, session_factory):
        failing = {source: "down" for source in COLLECTION_SOURCES}
        result = await _collector(dao, metrics, _fetchers(failing=failing)).collect(
            session_factory, "vercel", "swr"
        )
        assert result.status == "failed"
        assert result.metrics_calculated is False
        metrics.save_activity.assert_not_awaited()

    async def test_running_library_is_skipped(self, dao, metrics, session_factory):
        await dao.ensure(None, owner="vercel", repo="swr")
        dao.rows[("vercel", "swr")].status = "running"
        dao.rows[("vercel", "swr")].running_since = datetime.now().astimezone()

        calls: list[str] = []
        result = await _collector(dao, metrics, _fetchers(calls=calls)).collect(
            session_factory, "vercel", "swr"
        )
        assert result.status == "skipped"
        assert result.skipped is True
        assert calls == []

    async def test_missing_token_fails_without_fetching(
        self, dao, metrics, session_factory, monkeypatch
    ):
        monkeypatch.delenv("GITHUB_TOKEN")
        calls: list[str] = []
        result = await _collector(dao, metrics, _fetchers(calls=calls)).collect(
            session_factory, "vercel", "swr"
        )
        assert result.status == "failed"
        assert "GITHUB_TOKEN" in result.error
        assert calls == []
        assert dao.rows[("vercel", "swr")].attempts == 1


class TestRetryLifecycle:
    async def test_exhausted_library_is_terminal_until_reset(
        self, dao, metrics, session_factory, monkeypatch
    ):
        monkeypatch.setenv("RIS_MAX_COLLECTION_ATTEMPTS", "2")
        monkeypatch.setenv("RIS_RETRY_BASE_MINUTES", "0")
        state = CollectionStateService(dao)
        failing = {source: "down" for source in COLLECTION_SOURCES}
        collector = _collector(dao, metrics, _fetchers(failing=failing))

        await collector.collect(session_factory, "vercel", "swr")
        assert [r.repo for r in await state.list_due_retries(None, limit=10)] == ["swr"]

        await collector.collect(session_factory, "vercel", "swr")
        row = dao.rows[("vercel", "swr")]
        assert row.status == "failed"
        assert row.attempts == 2
        assert row.next_retry_at is None
        assert await state.list_due_retries(None, limit=10) == []

        await state.reset(None, "vercel", "swr", actor="admin@example.com")
        assert row.attempts == 0
        assert [r.repo for r in await state.list_due_retries(None, limit=10)] == ["swr"]


class TestCollectMany:
    async def test_heartbeat_after_each_library(self, dao, metrics, session_factory):
        heartbeat = AsyncMock()
        results = await _collector(dao, metrics, _fetchers()).collect_many(
            session_factory,
            [("vercel", "swr", None), ("pmndrs", "zustand", "zustand")],
            heartbeat=heartbeat,
        )
        assert [r.repo for r in results] == ["swr", "zustand"]
        assert all(r.status == "succeeded" for r in results)
        assert heartbeat.await_count == 2
