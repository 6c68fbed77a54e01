"""Shared async JSON-over-HTTP client with retry and exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

log = structlog.get_logger("rispipeline.collector")

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds


class UpstreamError(Exception):
    """An upstream API kept failing after all retries."""


class HttpJsonClient:
    """Thin async wrapper that retries 5xx responses and timeouts.

    Subclasses set ``name`` (used in log events) and may override
    :meth:`_should_retry` to add service-specific retry conditions.
    """

    name = "http"

    def __init__(
        self,
        *,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpJsonClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        *,
        missing_ok: bool = False,
    ) -> Any:
        """GET *url* and return parsed JSON.

        With *missing_ok*, a 404 returns None instead of raising.
        """
        response = await self._request_with_retry(url, params, missing_ok=missing_ok)
        if response is None:
            return None
        return response.json()

    # ── internal ───────────────────────────────────────────────────────────

    async def _should_retry(self, response: httpx.Response, attempt: int) -> bool:
        """Return True to retry *response*; may sleep first. Default: no."""
        return False

    async def _request_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        *,
        missing_ok: bool = False,
    ) -> httpx.Response | None:
        """GET with exponential backoff on 5xx and timeout errors."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.get(url, params=params)

                if await self._should_retry(resp, attempt):
                    last_exc = UpstreamError(f"{self.name} asked to retry {url}")
                    continue

                if resp.status_code == 404 and missing_ok:
                    return None

                if resp.status_code < 500:
                    resp.raise_for_status()
                    return resp

                log.warning(
                    f"{self.name}.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = httpx.HTTPStatusError(
                    f"{resp.status_code}", request=resp.request, response=resp
                )
            except httpx.TimeoutException as exc:
                log.warning(
                    f"{self.name}.timeout",
                    url=url,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = exc

            if attempt < _MAX_RETRIES - 1:
                await asyncio.sleep(_RETRY_BASE_DELAY * (2**attempt))

        raise UpstreamError(f"{self.name} request failed: {url}") from last_exc
