"""Shared fixtures for rispipeline unit tests.

Nothing here touches PostgreSQL; DAO tests under ``dao/`` bring their own
database fixtures.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeSessionFactory:
    """Stands in for ``async_sessionmaker``: every call yields the same mock session.

    ``begins`` counts how many transactions were opened.
    """

    def __init__(self) -> None:
        self.session = MagicMock()
        self.session.execute = AsyncMock()
        self.session.flush = AsyncMock()
        self.begins = 0

        @asynccontextmanager
        async def _begin():
            self.begins += 1
            yield self.session

        self.session.begin = _begin
        self.session.begin_nested = _begin

    def __call__(self):
        @asynccontextmanager
        async def _session():
            yield self.session

        return _session()


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
def _pipeline_env(monkeypatch):
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "webhook-test-secret")
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
    monkeypatch.setenv("CRON_SECRET", "cron-test-secret")
    monkeypatch.setenv("RIS_JWT_SECRET", "test-jwt-secret-for-unit-tests")
    monkeypatch.setenv("RIS_ADMIN_EMAILS", "admin@example.com")
