"""Environment-variable configuration helpers.

Settings are read at the point of use so tests can monkeypatch the
environment without reloading modules.
"""

from __future__ import annotations

import os


def env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


def env_list(key: str, default: str = "") -> list[str]:
    """Comma-separated list, blanks dropped."""
    raw = os.environ.get(key, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ── integration secrets ──────────────────────────────────────────────────

ENV_WEBHOOK_SECRET = "GITHUB_WEBHOOK_SECRET"
ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
ENV_CRON_SECRET = "CRON_SECRET"

# ── pipeline tuning ──────────────────────────────────────────────────────


def collection_lock_ttl() -> int:
    """Seconds a global collection lease stays valid without a heartbeat."""
    return env_int("RIS_COLLECTION_LOCK_TTL", 600)


def library_lease_ttl() -> int:
    """Seconds before a per-library ``running`` claim is considered abandoned."""
    return env_int("RIS_LIBRARY_LEASE_TTL", 900)


def max_collection_attempts() -> int:
    return env_int("RIS_MAX_COLLECTION_ATTEMPTS", 8)


def retry_base_minutes() -> float:
    return env_float("RIS_RETRY_BASE_MINUTES", 2)


def retry_cap_minutes() -> float:
    return env_float("RIS_RETRY_CAP_MINUTES", 60)


def source_timeout() -> float:
    return env_float("RIS_SOURCE_TIMEOUT", 120)
