"""Tests for the GitHub and package-ecosystem HTTP clients (httpx.MockTransport)."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from rispipeline.engines.collector.ecosystem_client import EcosystemClient
from rispipeline.engines.collector.github_client import GitHubClient, RateLimitError
from rispipeline.engines.collector.http import UpstreamError


def _github(handler) -> GitHubClient:
    return GitHubClient("ghp_test", transport=httpx.MockTransport(handler))


def _ecosystem(handler) -> EcosystemClient:
    return EcosystemClient(transport=httpx.MockTransport(handler))


# ── GitHubClient ──────────────────────────────────────────────────────────


class TestGitHubClient:
    async def test_auth_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json={"full_name": "vercel/swr"})

        async with _github(handler) as gh:
            data = await gh.get("/repos/vercel/swr")
        assert data["full_name"] == "vercel/swr"
        assert seen["authorization"] == "Bearer ghp_test"

    async def test_pagination_follows_link(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"n": 3}])
            assert request.url.params["per_page"] == "100"
            return httpx.Response(
                200,
                json=[{"n": 1}, {"n": 2}],
                headers={"Link": '<https://api.github.com/repos/a/b/pulls?page=2>; rel="next"'},
            )

        async with _github(handler) as gh:
            items = [item async for item in gh.get_paginated("/repos/a/b/pulls")]
        assert [i["n"] for i in items] == [1, 2, 3]

    async def test_pagination_respects_max_pages(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return httpx.Response(
                200,
                json=[{"n": len(calls)}],
                headers={"Link": '<https://api.github.com/next>; rel="next"'},
            )

        async with _github(handler) as gh:
            items = [item async for item in gh.get_paginated("/x", max_pages=2)]
        assert len(items) == 2
        assert len(calls) == 2

    async def test_long_rate_limit_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403, headers={"X-RateLimit-Remaining": "0", "Retry-After": "3600"}
            )

        async with _github(handler) as gh:
            with pytest.raises(RateLimitError) as excinfo:
                await gh.get("/repos/a/b")
        assert excinfo.value.retry_after == 3600

    async def test_short_rate_limit_waits_and_retries(self):
        responses = [
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, json={"ok": True}),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            async with _github(handler) as gh:
                assert await gh.get("/repos/a/b") == {"ok": True}
        mock_sleep.assert_awaited_with(2)

    async def test_plain_403_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(403, json={"message": "Resource not accessible"})

        async with _github(handler) as gh:
            with pytest.raises(httpx.HTTPStatusError):
                await gh.get("/repos/a/b")
        assert len(calls) == 1

    async def test_server_errors_retry_then_fail(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(502)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            async with _github(handler) as gh:
                with pytest.raises(UpstreamError):
                    await gh.get("/repos/a/b")
        assert len(calls) == 3

    async def test_exhausted_window_sleeps_after_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={}, headers={"X-RateLimit-Remaining": "0", "Retry-After": "5"}
            )

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            async with _github(handler) as gh:
                await gh.get("/repos/a/b")
        mock_sleep.assert_awaited_once_with(5)

    def test_parse_next_link(self):
        header = (
            '<https://api.github.com/x?page=1>; rel="prev", '
            '<https://api.github.com/x?page=3>; rel="next"'
        )
        assert GitHubClient._parse_next_link(header) == "https://api.github.com/x?page=3"
        assert GitHubClient._parse_next_link("") is None


# ── EcosystemClient ───────────────────────────────────────────────────────


class TestEcosystemClient:
    async def test_npm_downloads_window(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/downloads/point/2025-01-15:2026-01-15/zustand"
            return httpx.Response(200, json={"downloads": 123_456})

        async with _ecosystem(handler) as eco:
            assert await eco.npm_downloads_12mo("zustand", today=date(2026, 1, 15)) == 123_456

    async def test_unknown_package_is_zero(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not found"})

        async with _ecosystem(handler) as eco:
            assert await eco.npm_downloads_12mo("nope") == 0
            assert await eco.npm_dependents("nope") == 0
            assert await eco.npm_typescript_support("nope") is False
            assert await eco.jsdelivr_hits_12mo("nope") == 0
            assert await eco.ossf_score("a", "b") == 0.0

    async def test_dependents_scoped_package_is_quoted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.raw_path.endswith(b"%40tanstack%2Freact-query")
            return httpx.Response(200, json={"collected": {"npm": {"dependentsCount": 900}}})

        async with _ecosystem(handler) as eco:
            assert await eco.npm_dependents("@tanstack/react-query") == 900

    async def test_typescript_support_from_latest(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "dist-tags": {"latest": "5.0.0"},
                    "versions": {"4.0.0": {}, "5.0.0": {"types": "index.d.ts"}},
                },
            )

        async with _ecosystem(handler) as eco:
            assert await eco.npm_typescript_support("swr") is True

    async def test_jsdelivr_hits(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["period"] == "year"
            return httpx.Response(200, json={"hits": {"total": 5_000}})

        async with _ecosystem(handler) as eco:
            assert await eco.jsdelivr_hits_12mo("swr") == 5_000

    async def test_ossf_score_scaled(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"score": 7.3})

        async with _ecosystem(handler) as eco:
            assert await eco.ossf_score("vercel", "swr") == pytest.approx(0.73)
