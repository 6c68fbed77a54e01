"""Tests for per-source fetchers and failure-isolated fan-out."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from rispipeline.engines.collector.activity import LibraryActivity, calculate_metrics
from rispipeline.engines.collector.sources import (
    NoPackageError,
    SourceContext,
    fetch_github_issues,
    fetch_github_prs,
    fetch_npm_metrics,
    fetch_sources,
    npm_package_name,
)

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class _FakeGitHub:
    def __init__(self, pages: dict[str, list[dict]], details: dict[str, dict] | None = None):
        self.pages = pages
        self.details = details or {}
        self.detail_calls: list[str] = []

    async def get_paginated(self, path, params=None, max_pages=10):
        for item in self.pages.get(path, []):
            yield item

    async def get(self, path):
        self.detail_calls.append(path)
        return self.details.get(path, {})


def _ctx(github=None, ecosystem=None, owner="vercel", repo="swr") -> SourceContext:
    return SourceContext(
        owner=owner,
        repo=repo,
        github=github or _FakeGitHub({}),
        ecosystem=ecosystem or AsyncMock(),
        now=NOW,
    )


class TestPackageName:
    def test_override(self):
        assert npm_package_name("TanStack", "query") == "@tanstack/react-query"

    def test_defaults_to_repo(self):
        assert npm_package_name("someone", "tiny-lib") == "tiny-lib"

    def test_unpublished(self):
        assert npm_package_name("facebook", "hermes") is None

    async def test_unpublished_repo_fails_npm_source(self):
        with pytest.raises(NoPackageError, match="No NPM package name"):
            await fetch_npm_metrics(_ctx(owner="facebook", repo="hermes"))


class TestGitHubFetchers:
    async def test_prs_stop_at_history_window(self):
        github = _FakeGitHub(
            {
                "/repos/vercel/swr/pulls": [
                    {"id": 1, "number": 10, "created_at": "2026-01-10T00:00:00Z",
                     "merged_at": "2026-01-11T00:00:00Z", "user": {"login": "a"}},
                    {"id": 2, "number": 9, "created_at": "2025-12-01T00:00:00Z",
                     "merged_at": None, "user": {"login": "b"}},
                    {"id": 3, "number": 1, "created_at": "2020-01-01T00:00:00Z",
                     "merged_at": "2020-01-02T00:00:00Z"},
                ]
            },
            details={"/repos/vercel/swr/pulls/10": {"additions": 40, "deletions": 5, "changed_files": 3}},
        )
        prs = await fetch_github_prs(_ctx(github))

        assert [pr["number"] for pr in prs] == [10, 9]
        merged = prs[0]
        assert merged["merged"] is True
        assert (merged["additions"], merged["deletions"], merged["changed_files"]) == (40, 5, 3)
        assert prs[1]["additions"] == 0
        assert github.detail_calls == ["/repos/vercel/swr/pulls/10"]

    async def test_issues_skip_pull_requests(self):
        github = _FakeGitHub(
            {
                "/repos/vercel/swr/issues": [
                    {"id": 1, "number": 5, "created_at": "2026-01-01T00:00:00Z",
                     "labels": [{"name": "bug"}, "junk"]},
                    {"id": 2, "number": 6, "created_at": "2026-01-02T00:00:00Z",
                     "pull_request": {"url": "x"}},
                ]
            }
        )
        issues = await fetch_github_issues(_ctx(github))
        assert [i["number"] for i in issues] == [5]
        assert issues[0]["labels"] == ["bug"]
        assert issues[0]["author"] == "unknown"

    async def test_pr_first_response_skips_author_and_bots(self):
        base = "https://api.github.com/repos/vercel/swr"
        github = _FakeGitHub(
            {
                "/repos/vercel/swr/pulls": [
                    {"id": 1, "number": 10, "created_at": "2026-01-10T00:00:00Z",
                     "merged_at": None, "user": {"login": "alice"}},
                    {"id": 2, "number": 11, "created_at": "2026-01-10T00:00:00Z",
                     "merged_at": None, "user": {"login": "carol"}},
                ],
                "/repos/vercel/swr/issues/comments": [
                    {"issue_url": f"{base}/issues/10", "user": {"login": "alice"},
                     "created_at": "2026-01-10T01:00:00Z"},
                    {"issue_url": f"{base}/issues/10", "user": {"login": "renovate[bot]"},
                     "created_at": "2026-01-10T02:00:00Z"},
                    {"issue_url": f"{base}/issues/10", "user": {"login": "bob"},
                     "created_at": "2026-01-10T08:00:00Z"},
                ],
                "/repos/vercel/swr/pulls/comments": [
                    {"pull_request_url": f"{base}/pulls/10", "user": {"login": "dan"},
                     "created_at": "2026-01-10T05:00:00Z"},
                ],
            }
        )
        prs = await fetch_github_prs(_ctx(github))

        by_number = {pr["number"]: pr for pr in prs}
        assert by_number[10]["first_response_at"] == "2026-01-10T05:00:00Z"
        assert by_number[11]["first_response_at"] is None

    async def test_issue_first_response(self):
        github = _FakeGitHub(
            {
                "/repos/vercel/swr/issues": [
                    {"id": 1, "number": 5, "created_at": "2026-01-01T00:00:00Z",
                     "user": {"login": "reporter"}},
                ],
                "/repos/vercel/swr/issues/comments": [
                    {"issue_url": "https://api.github.com/repos/vercel/swr/issues/5",
                     "user": {"login": "maintainer"}, "created_at": "2026-01-01T12:00:00Z"},
                    {"issue_url": "https://api.github.com/repos/vercel/swr/issues/99",
                     "user": {"login": "maintainer"}, "created_at": "2026-01-01T01:00:00Z"},
                ],
            }
        )
        [issue] = await fetch_github_issues(_ctx(github))
        assert issue["first_response_at"] == "2026-01-01T12:00:00Z"

    async def test_responses_feed_latency_signals(self):
        github = _FakeGitHub(
            {
                "/repos/vercel/swr/pulls": [
                    {"id": 1, "number": 10, "created_at": "2026-01-10T00:00:00Z",
                     "merged_at": None, "user": {"login": "alice"}},
                ],
                "/repos/vercel/swr/issues": [
                    {"id": 2, "number": 5, "created_at": "2026-01-01T00:00:00Z",
                     "user": {"login": "reporter"}},
                ],
                "/repos/vercel/swr/issues/comments": [
                    {"issue_url": "https://api.github.com/repos/vercel/swr/issues/10",
                     "user": {"login": "bob"}, "created_at": "2026-01-11T00:00:00Z"},
                    {"issue_url": "https://api.github.com/repos/vercel/swr/issues/5",
                     "user": {"login": "bob"}, "created_at": "2026-01-02T00:00:00Z"},
                ],
            }
        )
        ctx = _ctx(github)
        activity = LibraryActivity.empty("vercel", "swr", "swr", NOW)
        activity.apply_source("github_prs", await fetch_github_prs(ctx))
        activity.apply_source("github_issues", await fetch_github_issues(ctx))

        metrics = calculate_metrics(activity, now=NOW)

        assert metrics.response_score == pytest.approx(0.5)
        assert metrics.triage_score == pytest.approx(0.5)


class TestFetchSources:
    async def test_failures_are_isolated(self):
        async def ok(ctx):
            return {"score": 0.8}

        async def broken(ctx):
            raise RuntimeError("boom")

        payloads, errors = await fetch_sources(
            _ctx(),
            ["ossf_metrics", "npm_metrics"],
            timeout=5,
            fetchers={"ossf_metrics": ok, "npm_metrics": broken},
        )
        assert payloads == {"ossf_metrics": {"score": 0.8}}
        assert errors == {"npm_metrics": "boom"}

    async def test_timeout_message(self):
        async def slow(ctx):
            await asyncio.sleep(10)

        payloads, errors = await fetch_sources(
            _ctx(), ["cdn_metrics"], timeout=0.01, fetchers={"cdn_metrics": slow}
        )
        assert payloads == {}
        assert errors == {"cdn_metrics": "timed out after 0.01s"}

    async def test_exception_without_message_uses_type(self):
        async def broken(ctx):
            raise KeyError

        _, errors = await fetch_sources(
            _ctx(), ["github_basic"], timeout=5, fetchers={"github_basic": broken}
        )
        assert errors == {"github_basic": "KeyError"}
