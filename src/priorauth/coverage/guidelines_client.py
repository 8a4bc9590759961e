"""Async client for the Carelon / Evolent guideline search service.

Both providers are served by the same host and return an Azure-search style
envelope `{"value": [{"id", "content", ...}]}`. The index is fetched whole
and filtered locally.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from priorauth.coverage.schema import CoverageReference, SourceType
from priorauth.errors import SourceError

logger = structlog.get_logger()

GUIDELINES_BASE = "https://ai-aug-carelon-hxdxaeczd9b4fdfc.canadacentral-01.azurewebsites.net"

PROVIDER_PATHS: dict[SourceType, str] = {
    SourceType.CARELON: "/api/search",
    SourceType.EVOLENT: "/api/evolent/search",
}

# Guideline chunks rarely carry a title; matching falls back to the opening
# text of the chunk, which is where the guideline heading sits.
TITLE_FALLBACK_CHARS = 300


class GuidelinesClient:
    """Async HTTP client for the guideline search service."""

    def __init__(
        self,
        base_url: str = GUIDELINES_BASE,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def search_index(self, provider: SourceType) -> list[dict]:
        """Fetch the provider's guideline records (`value` array)."""
        path = PROVIDER_PATHS.get(provider)
        if path is None:
            raise ValueError(f"No guideline index for provider {provider}")

        try:
            resp = await self._http.get(path)
        except httpx.TimeoutException as exc:
            raise SourceError(f"{provider} guideline API timed out") from exc
        except httpx.HTTPError as exc:
            raise SourceError(f"{provider} guideline API unreachable: {exc}") from exc

        if resp.status_code >= 400:
            logger.warning("guidelines_http_error", provider=str(provider), status=resp.status_code)
            raise SourceError(
                f"{provider} guideline API returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            payload: Any = resp.json()
        except ValueError as exc:
            raise SourceError(f"{provider} guideline API returned invalid JSON") from exc

        values = payload.get("value") if isinstance(payload, dict) else None
        if not isinstance(values, list):
            raise SourceError(f"Unexpected {provider} guideline API response format")

        records = [v for v in values if isinstance(v, dict)]
        logger.debug("guidelines_index", provider=str(provider), records=len(records))
        return records

    def reference_url(self, provider: SourceType, record: dict) -> str:
        url = str(record.get("url") or record.get("source_url") or "")
        if url.startswith(("http://", "https://")):
            return url
        if url:
            return f"{self._base_url}/{url.lstrip('/')}"
        return f"{self._base_url}{PROVIDER_PATHS[provider]}#{record.get('id', '')}"

    async def health_check(self) -> bool:
        try:
            resp = await self._http.get(PROVIDER_PATHS[SourceType.CARELON])
            return resp.status_code < 400
        except httpx.HTTPError:
            return False

    async def aclose(self) -> None:
        await self._http.aclose()


def guideline_title(record: dict) -> str:
    title = record.get("title")
    if title:
        return str(title)
    return str(record.get("content") or "")[:TITLE_FALLBACK_CHARS]


def parse_guideline(client: GuidelinesClient, provider: SourceType, record: dict) -> CoverageReference:
    title = str(record.get("title") or "").strip()
    if not title:
        title = " ".join(str(record.get("content") or "").split())[:80] or "Untitled guideline"
    return CoverageReference(
        title=title,
        display_id=str(record.get("id") or ""),
        source_type=provider,
        url=client.reference_url(provider, record),
    )
