"""Async GitHub REST client with pagination and rate-limit handling."""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import structlog

from rispipeline.engines.collector.http import HttpJsonClient

log = structlog.get_logger("rispipeline.collector")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')
_MAX_RATE_LIMIT_WAIT = 300  # seconds; longer waits fail the source instead


class RateLimitError(Exception):
    """GitHub rate limit is exhausted for longer than we are willing to wait."""

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"rate limit exceeded, retry after {retry_after}s")


class GitHubClient(HttpJsonClient):
    """GitHub REST API v3 client authenticated with a token."""

    name = "github"

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.github.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "Authorization": f"Bearer {token}",
            },
            transport=transport,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    # ── public ─────────────────────────────────────────────────────────────

    async def get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        max_pages: int = 10,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield JSON items from a paginated endpoint.

        Follows ``Link: <...>; rel="next"`` headers and stops after
        *max_pages* pages.
        """
        url: str | None = path
        params = dict(params or {})
        params.setdefault("per_page", 100)
        page = 0

        while url and page < max_pages:
            response = await self._request_with_retry(url, params if page == 0 else None)
            await self._check_rate_limit(response)

            data = response.json()
            if isinstance(data, list):
                for item in data:
                    yield item
            else:
                yield data

            url = self._parse_next_link(response.headers.get("Link", ""))
            page += 1

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Single-resource GET, returns parsed JSON."""
        response = await self._request_with_retry(path, params)
        await self._check_rate_limit(response)
        return response.json()

    # ── internal ───────────────────────────────────────────────────────────

    async def _should_retry(self, response: httpx.Response, attempt: int) -> bool:
        """Sleep through short 403/429 rate limits, fail fast on long ones."""
        if response.status_code not in (403, 429) or not self._is_rate_limited(response):
            return False
        wait = self._get_rate_limit_wait(response)
        if wait > _MAX_RATE_LIMIT_WAIT:
            raise RateLimitError(wait)
        log.warning("github.rate_limit", url=str(response.url), wait_seconds=wait, attempt=attempt + 1)
        await asyncio.sleep(wait)
        return True

    async def _check_rate_limit(self, response: httpx.Response) -> None:
        """Sleep until the window resets if this response used the last request."""
        remaining = self._parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None and remaining == 0:
            wait = self._get_rate_limit_wait(response)
            if wait > _MAX_RATE_LIMIT_WAIT:
                raise RateLimitError(wait)
            log.warning("github.rate_limit_wait", wait_seconds=wait)
            await asyncio.sleep(wait)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # secondary (abuse) limits only send Retry-After
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (ValueError, TypeError):
                pass
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return max(int(reset_ts) - int(time.time()), 1)
            except (ValueError, TypeError):
                pass
        return 60

    @staticmethod
    def _parse_header_int(value: str | None) -> int | None:
        if value is None:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None
