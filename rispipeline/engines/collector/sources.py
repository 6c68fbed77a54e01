"""Per-source fetchers — pure API collection, no DB access.

Each fetcher returns the payload that :meth:`LibraryActivity.apply_source`
understands for its source id.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from rispipeline.engines.collector.activity import WINDOW_DAYS, parse_ts
from rispipeline.engines.collector.ecosystem_client import EcosystemClient
from rispipeline.engines.collector.github_client import GitHubClient

log = structlog.get_logger("rispipeline.collector")

# A little more than the scoring window so boundary items are not lost.
_HISTORY_DAYS = WINDOW_DAYS + 35
_MAX_PR_DETAILS = 50
_MAX_COMMENT_PAGES = 10
_MAX_CONCURRENCY = 4

# Repositories whose npm package name differs from the repo name.
# ``None`` marks repositories that publish nothing to npm.
NPM_PACKAGE_OVERRIDES: dict[str, str | None] = {
    "facebook/react": "react",
    "facebook/react-native": "react-native",
    "facebook/jest": "jest",
    "facebook/relay": "react-relay",
    "facebook/hermes": None,
    "facebook/metro": "metro",
    "facebook/react-devtools": "react-devtools",
    "reactjs/react.dev": None,
    "reactjs/rfcs": None,
    "reduxjs/redux": "redux",
    "reduxjs/redux-toolkit": "@reduxjs/toolkit",
    "pmndrs/zustand": "zustand",
    "pmndrs/jotai": "jotai",
    "pmndrs/valtio": "valtio",
    "pmndrs/react-spring": "@react-spring/web",
    "statelyai/xstate": "xstate",
    "TanStack/query": "@tanstack/react-query",
    "TanStack/router": "@tanstack/react-router",
    "TanStack/table": "@tanstack/react-table",
    "vercel/swr": "swr",
    "vercel/next.js": "next",
    "vercel/turbo": "turbo",
    "apollographql/apollo-client": "@apollo/client",
    "trpc/trpc": "@trpc/server",
    "urql-graphql/urql": "urql",
    "remix-run/react-router": "react-router-dom",
    "remix-run/remix": "@remix-run/react",
    "molefrog/wouter": "wouter",
    "gatsbyjs/gatsby": "gatsby",
    "withastro/astro": "astro",
    "expo/expo": "expo",
    "react-hook-form/react-hook-form": "react-hook-form",
    "jaredpalmer/formik": "formik",
    "colinhacks/zod": "zod",
    "jquense/yup": "yup",
    "final-form/react-final-form": "react-final-form",
    "testing-library/react-testing-library": "@testing-library/react",
    "testing-library/react-hooks-testing-library": "@testing-library/react-hooks",
    "vitest-dev/vitest": "vitest",
    "microsoft/playwright": "@playwright/test",
    "radix-ui/primitives": "@radix-ui/react-primitive",
    "tailwindlabs/headlessui": "@headlessui/react",
    "adobe/react-spectrum": "@adobe/react-spectrum",
    "ariakit/ariakit": "@ariakit/react",
    "mui/material-ui": "@mui/material",
    "chakra-ui/chakra-ui": "@chakra-ui/react",
    "framer/motion": "framer-motion",
    "formkit/auto-animate": "@formkit/auto-animate",
    "storybookjs/storybook": "storybook",
    "vitejs/vite": "vite",
    "styled-components/styled-components": "styled-components",
    "emotion-js/emotion": "@emotion/react",
    "tailwindlabs/tailwindcss": "tailwindcss",
    "marklawlor/nativewind": "nativewind",
    "react-navigation/react-navigation": "@react-navigation/native",
    "react-native-community/react-native-releases": None,
}


class NoPackageError(LookupError):
    """The repository has no npm package to measure."""


def npm_package_name(owner: str, repo: str) -> str | None:
    key = f"{owner}/{repo}"
    if key in NPM_PACKAGE_OVERRIDES:
        return NPM_PACKAGE_OVERRIDES[key]
    return repo


def _require_package(owner: str, repo: str) -> str:
    package = npm_package_name(owner, repo)
    if not package:
        raise NoPackageError("No NPM package name found for this repository")
    return package


@dataclass
class SourceContext:
    owner: str
    repo: str
    github: GitHubClient
    ecosystem: EcosystemClient
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def since(self) -> datetime:
        return self.now - timedelta(days=_HISTORY_DAYS)

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"


# ── GitHub ───────────────────────────────────────────────────────────────


def _login(obj: dict | None) -> str:
    return (obj or {}).get("login") or "unknown"


def _trailing_number(url: str | None) -> int | None:
    tail = (url or "").rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else None


async def _first_responses(
    ctx: SourceContext, path: str, url_key: str, authors: dict[int, str]
) -> dict[int, str]:
    """Earliest comment per item by someone other than its author (bots excluded).

    Reads the repository-wide comment listing rather than one request per
    item. *authors* maps item number to the author's login.
    """
    firsts: dict[int, str] = {}
    if not authors:
        return firsts
    async for comment in ctx.github.get_paginated(
        f"{ctx.repo_path}/{path}",
        {"since": ctx.since.isoformat(), "sort": "created", "direction": "asc"},
        max_pages=_MAX_COMMENT_PAGES,
    ):
        number = _trailing_number(comment.get(url_key))
        if number not in authors:
            continue
        login = _login(comment.get("user"))
        if login == authors[number] or login.endswith("[bot]"):
            continue
        created = parse_ts(comment.get("created_at"))
        if created is None:
            continue
        current = parse_ts(firsts.get(number))
        if current is None or created < current:
            firsts[number] = comment["created_at"]
    return firsts


async def fetch_github_basic(ctx: SourceContext) -> dict[str, Any]:
    data = await ctx.github.get(ctx.repo_path)
    return {
        "stars": data.get("stargazers_count", 0),
        "forks": data.get("forks_count", 0),
        "is_archived": data.get("archived", False),
        "last_commit_date": data.get("pushed_at"),
    }


async def fetch_github_prs(ctx: SourceContext) -> list[dict[str, Any]]:
    """Pull requests created in the history window, newest first.

    The list endpoint carries no diff stats, so merged PRs get a detail
    fetch (bounded by ``_MAX_PR_DETAILS``); the rest count as zero lines.
    ``first_response_at`` is the earliest non-author discussion or review
    comment.
    """
    prs: list[dict[str, Any]] = []
    async for pr in ctx.github.get_paginated(
        f"{ctx.repo_path}/pulls",
        {"state": "all", "sort": "created", "direction": "desc"},
    ):
        created = parse_ts(pr.get("created_at"))
        if created is not None and created < ctx.since:
            break
        prs.append(
            {
                "id": pr.get("id"),
                "number": pr.get("number"),
                "title": pr.get("title"),
                "created_at": pr.get("created_at"),
                "merged_at": pr.get("merged_at"),
                "closed_at": pr.get("closed_at"),
                "state": pr.get("state"),
                "merged": pr.get("merged_at") is not None,
                "author": _login(pr.get("user")),
                "additions": 0,
                "deletions": 0,
                "changed_files": 0,
            }
        )

    merged = [pr for pr in prs if pr["merged"]][:_MAX_PR_DETAILS]
    for pr in merged:
        detail = await ctx.github.get(f"{ctx.repo_path}/pulls/{pr['number']}")
        pr["additions"] = detail.get("additions", 0)
        pr["deletions"] = detail.get("deletions", 0)
        pr["changed_files"] = detail.get("changed_files", 0)

    authors = {pr["number"]: pr["author"] for pr in prs if pr["number"] is not None}
    discussion = await _first_responses(ctx, "issues/comments", "issue_url", authors)
    review = await _first_responses(ctx, "pulls/comments", "pull_request_url", authors)
    for pr in prs:
        stamps = [s for s in (discussion.get(pr["number"]), review.get(pr["number"])) if s]
        pr["first_response_at"] = min(stamps, key=parse_ts) if stamps else None
    return prs


async def fetch_github_issues(ctx: SourceContext) -> list[dict[str, Any]]:
    issues: list[dict[str, Any]] = []
    async for issue in ctx.github.get_paginated(
        f"{ctx.repo_path}/issues",
        {"state": "all", "since": ctx.since.isoformat(), "sort": "created", "direction": "desc"},
    ):
        if issue.get("pull_request"):
            continue
        created = parse_ts(issue.get("created_at"))
        if created is not None and created < ctx.since:
            continue
        issues.append(
            {
                "id": issue.get("id"),
                "number": issue.get("number"),
                "title": issue.get("title"),
                "created_at": issue.get("created_at"),
                "closed_at": issue.get("closed_at"),
                "state": issue.get("state"),
                "author": _login(issue.get("user")),
                "comments": issue.get("comments", 0),
                "labels": [
                    label.get("name")
                    for label in issue.get("labels") or []
                    if isinstance(label, dict) and label.get("name")
                ],
            }
        )

    authors = {i["number"]: i["author"] for i in issues if i["number"] is not None}
    firsts = await _first_responses(ctx, "issues/comments", "issue_url", authors)
    for issue in issues:
        issue["first_response_at"] = firsts.get(issue["number"])
    return issues


async def fetch_github_commits(ctx: SourceContext) -> list[dict[str, Any]]:
    commits: list[dict[str, Any]] = []
    async for commit in ctx.github.get_paginated(
        f"{ctx.repo_path}/commits", {"since": ctx.since.isoformat()}
    ):
        detail = commit.get("commit") or {}
        git_author = detail.get("author") or {}
        committer = detail.get("committer") or {}
        commits.append(
            {
                "sha": commit.get("sha"),
                "date": git_author.get("date") or committer.get("date"),
                "author": (commit.get("author") or {}).get("login")
                or git_author.get("name")
                or "unknown",
                "message": detail.get("message", ""),
            }
        )
    return commits


async def fetch_github_releases(ctx: SourceContext) -> list[dict[str, Any]]:
    releases: list[dict[str, Any]] = []
    async for release in ctx.github.get_paginated(f"{ctx.repo_path}/releases", max_pages=3):
        releases.append(
            {
                "id": release.get("id"),
                "tag_name": release.get("tag_name"),
                "name": release.get("name") or release.get("tag_name"),
                "published_at": release.get("published_at") or release.get("created_at"),
                "prerelease": bool(release.get("prerelease")),
                "draft": bool(release.get("draft")),
            }
        )
    return releases


# ── ecosystem ────────────────────────────────────────────────────────────


async def fetch_npm_metrics(ctx: SourceContext) -> dict[str, Any]:
    package = _require_package(ctx.owner, ctx.repo)
    downloads, dependents, typescript = await asyncio.gather(
        ctx.ecosystem.npm_downloads_12mo(package, today=ctx.now.date()),
        ctx.ecosystem.npm_dependents(package),
        ctx.ecosystem.npm_typescript_support(package),
    )
    return {
        "package": package,
        "downloads_12mo": downloads,
        "dependents": dependents,
        "typescript_support": typescript,
    }


async def fetch_cdn_metrics(ctx: SourceContext) -> dict[str, Any]:
    package = _require_package(ctx.owner, ctx.repo)
    return {"package": package, "hits_12mo": await ctx.ecosystem.jsdelivr_hits_12mo(package)}


async def fetch_ossf_metrics(ctx: SourceContext) -> dict[str, Any]:
    return {"score": await ctx.ecosystem.ossf_score(ctx.owner, ctx.repo)}


SourceFetcher = Callable[[SourceContext], Awaitable[Any]]

SOURCE_FETCHERS: dict[str, SourceFetcher] = {
    "github_basic": fetch_github_basic,
    "github_prs": fetch_github_prs,
    "github_issues": fetch_github_issues,
    "github_commits": fetch_github_commits,
    "github_releases": fetch_github_releases,
    "npm_metrics": fetch_npm_metrics,
    "cdn_metrics": fetch_cdn_metrics,
    "ossf_metrics": fetch_ossf_metrics,
}


async def fetch_sources(
    ctx: SourceContext,
    sources: list[str],
    *,
    timeout: float,
    fetchers: dict[str, SourceFetcher] | None = None,
    concurrency: int = _MAX_CONCURRENCY,
) -> tuple[dict[str, Any], dict[str, str]]:
    """Fetch *sources* concurrently, isolating failures.

    Returns ``(payloads, errors)``: payloads keyed by the sources that
    succeeded, and an error message per source that raised or timed out.
    """
    fetchers = fetchers or SOURCE_FETCHERS
    sem = asyncio.Semaphore(concurrency)

    async def _run(source: str) -> Any:
        async with sem:
            return await asyncio.wait_for(fetchers[source](ctx), timeout)

    results = await asyncio.gather(*(_run(s) for s in sources), return_exceptions=True)

    payloads: dict[str, Any] = {}
    errors: dict[str, str] = {}
    for source, result in zip(sources, results, strict=True):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.TimeoutError):
                message = f"timed out after {timeout:g}s"
            else:
                message = str(result) or type(result).__name__
            log.warning(
                "collector.source_failed",
                library=f"{ctx.owner}/{ctx.repo}",
                source=source,
                error=message,
            )
            errors[source] = message
            continue
        payloads[source] = result
    return payloads, errors
