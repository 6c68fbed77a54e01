"""Package-ecosystem APIs: npm registry/downloads, npms.io, jsDelivr, OpenSSF Scorecard."""

from __future__ import annotations

from datetime import date, timedelta
from urllib.parse import quote

import httpx

from rispipeline.engines.collector.http import HttpJsonClient

NPM_DOWNLOADS_URL = "https://api.npmjs.org/downloads/point"
NPM_REGISTRY_URL = "https://registry.npmjs.org"
NPMS_URL = "https://api.npms.io/v2/package"
JSDELIVR_URL = "https://data.jsdelivr.com/v1/stats/packages/npm"
SCORECARD_URL = "https://api.securityscorecards.dev/projects/github.com"


class EcosystemClient(HttpJsonClient):
    """Unauthenticated reads from public package-ecosystem endpoints."""

    name = "ecosystem"

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__(headers={"Accept": "application/json"}, transport=transport)

    async def __aenter__(self) -> EcosystemClient:
        return self

    # ── npm ────────────────────────────────────────────────────────────────

    async def npm_downloads_12mo(self, package: str, *, today: date | None = None) -> int:
        """Total downloads over the last 365 days (0 if the package is unknown)."""
        end = today or date.today()
        start = end - timedelta(days=365)
        data = await self.get_json(
            f"{NPM_DOWNLOADS_URL}/{start.isoformat()}:{end.isoformat()}/{package}",
            missing_ok=True,
        )
        if not data:
            return 0
        return int(data.get("downloads") or 0)

    async def npm_dependents(self, package: str) -> int:
        """Dependent package count as reported by npms.io."""
        data = await self.get_json(f"{NPMS_URL}/{quote(package, safe='')}", missing_ok=True)
        if not data:
            return 0
        npm = (data.get("collected") or {}).get("npm") or {}
        return int(npm.get("dependentsCount") or 0)

    async def npm_typescript_support(self, package: str) -> bool:
        """True when the latest published version ships its own type definitions."""
        data = await self.get_json(f"{NPM_REGISTRY_URL}/{package}", missing_ok=True)
        if not data:
            return False
        latest_tag = (data.get("dist-tags") or {}).get("latest")
        latest = (data.get("versions") or {}).get(latest_tag) or {}
        return bool(latest.get("types") or latest.get("typings"))

    # ── jsDelivr ───────────────────────────────────────────────────────────

    async def jsdelivr_hits_12mo(self, package: str) -> int:
        data = await self.get_json(
            f"{JSDELIVR_URL}/{package}", params={"period": "year"}, missing_ok=True
        )
        if not data:
            return 0
        return int((data.get("hits") or {}).get("total") or 0)

    # ── OpenSSF Scorecard ──────────────────────────────────────────────────

    async def ossf_score(self, owner: str, repo: str) -> float:
        """Aggregate Scorecard score normalised to [0, 1]; 0 when not scored."""
        data = await self.get_json(f"{SCORECARD_URL}/{owner}/{repo}", missing_ok=True)
        if not data:
            return 0.0
        score = float(data.get("score") or 0.0)
        return max(0.0, min(1.0, score / 10))
