"""Async CMS Coverage API client.

Wraps the public reports API at https://api.coverage.cms.gov/v1/.
Only identifiers (state id, status) are sent upstream; the listing is
filtered locally by the search tools.

This client is thin: it returns raw record dicts. Record-to-reference
parsing lives in the module-level parse_* helpers.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from priorauth.coverage.schema import CoverageReference, SourceType
from priorauth.errors import SourceError

logger = structlog.get_logger()

CMS_API_BASE = "https://api.coverage.cms.gov/v1"
MCD_BASE = "https://www.cms.gov/medicare-coverage-database"
NCD_VIEW_URL = f"{MCD_BASE}/view/ncd.aspx"
ARTICLE_DETAILS_URL = f"{MCD_BASE}/details/article-details.aspx"

NCD_PATH = "/reports/national-coverage-ncd/"
LCD_PATH = "/reports/local-coverage-final-lcds/"
ARTICLE_PATH = "/reports/local-coverage-articles/"

# "A" selects currently active documents on the local report endpoints.
ACTIVE_STATUS = "A"


class CMSCoverageClient:
    """Async HTTP client for the CMS Coverage reports API.

    Instantiate once per process and reuse; the connection pool is shared
    by every Medicare search tool and the policy page fetcher.
    """

    def __init__(
        self,
        base_url: str = CMS_API_BASE,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
            follow_redirects=True,
            transport=transport,
        )

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET one listing. Non-2xx, timeout and network failures raise SourceError."""
        try:
            resp = await self._http.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("cms_request_timeout", path=path)
            raise SourceError(f"CMS Coverage API timed out ({path})") from exc
        except httpx.HTTPError as exc:
            logger.warning("cms_request_failed", path=path, error=str(exc)[:200])
            raise SourceError(f"CMS Coverage API unreachable ({path}): {exc}") from exc

        if resp.status_code >= 400:
            logger.warning("cms_http_error", path=path, status=resp.status_code)
            raise SourceError(
                f"CMS Coverage API returned HTTP {resp.status_code} for {path}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise SourceError(f"CMS Coverage API returned invalid JSON for {path}") from exc

    async def national_ncds(self) -> list[dict]:
        """Fetch the full NCD listing.

        The NCD report must carry both `meta` and `data`; a `meta.status.id`
        of 400 or above is an upstream error even under HTTP 200.
        """
        payload = await self._get_json(NCD_PATH)
        if not isinstance(payload, dict) or "meta" not in payload or not isinstance(
            payload.get("data"), list
        ):
            raise SourceError("Unexpected CMS API response format for the NCD listing")

        status = (payload.get("meta") or {}).get("status") or {}
        status_id = status.get("id")
        if isinstance(status_id, int) and status_id >= 400:
            message = status.get("message") or "Unknown error"
            raise SourceError(f"Error from CMS Coverage API: {message}", status_code=status_id)

        logger.debug("cms_ncd_listing", records=len(payload["data"]))
        return payload["data"]

    async def local_lcds(self, state_id: int) -> list[dict]:
        payload = await self._get_json(
            LCD_PATH, params={"state_id": state_id, "status": ACTIVE_STATUS}
        )
        records = records_from_payload(payload)
        logger.debug("cms_lcd_listing", state_id=state_id, records=len(records))
        return records

    async def local_articles(self, state_id: int) -> list[dict]:
        payload = await self._get_json(
            ARTICLE_PATH, params={"state_id": state_id, "status": ACTIVE_STATUS}
        )
        records = records_from_payload(payload)
        logger.debug("cms_article_listing", state_id=state_id, records=len(records))
        return records

    async def fetch_page(self, url: str) -> str:
        """Fetch an absolute document URL and return the response body as text."""
        try:
            resp = await self._http.get(url, headers={"Accept": "text/html,*/*"})
        except httpx.TimeoutException as exc:
            raise SourceError(f"Timed out fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise SourceError(f"Could not fetch {url}: {exc}") from exc
        if resp.status_code >= 400:
            raise SourceError(
                f"Failed to fetch {url}: HTTP {resp.status_code}", status_code=resp.status_code
            )
        return resp.text

    async def health_check(self) -> bool:
        """Return True if the NCD report endpoint answers with 2xx."""
        try:
            resp = await self._http.get(NCD_PATH)
            return resp.status_code < 400
        except httpx.HTTPError:
            return False

    async def aclose(self) -> None:
        await self._http.aclose()


def records_from_payload(payload: Any) -> list[dict]:
    """Accept either a bare list or the `{meta, data}` report envelope."""
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return [r for r in payload["data"] if isinstance(r, dict)]
    raise SourceError("Unexpected CMS API response format")


def absolute_url(url: str | None) -> str:
    """Resolve the relative document paths some report rows carry."""
    if not url:
        return ""
    url = url.strip()
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    return f"https://www.cms.gov/{url.lstrip('/')}"


def ncd_view_url(record: dict) -> str:
    doc_id = record.get("document_id")
    version = record.get("document_version")
    if doc_id is None or version is None:
        return absolute_url(record.get("url"))
    return f"{NCD_VIEW_URL}?ncdid={doc_id}&ncdver={version}"


def article_view_url(record: dict) -> str:
    if record.get("url"):
        return absolute_url(record["url"])
    article_id = record.get("article_id", record.get("document_id"))
    version = record.get("article_version", record.get("document_version"))
    if article_id is None or version is None:
        return ""
    return f"{ARTICLE_DETAILS_URL}?articleid={article_id}&articlever={version}"


def record_title(record: dict) -> str:
    return str(record.get("title") or "")


def record_display_id(record: dict) -> str:
    return str(record.get("document_display_id") or record.get("article_display_id") or "")


def parse_ncd(record: dict) -> CoverageReference | None:
    url = ncd_view_url(record)
    if not url:
        return None
    return CoverageReference(
        title=record_title(record) or "N/A",
        display_id=record_display_id(record),
        source_type=SourceType.NCD,
        url=url,
        status=str(record.get("document_status") or ""),
        last_updated=str(record.get("last_updated") or ""),
    )


def parse_lcd(record: dict) -> CoverageReference | None:
    url = absolute_url(record.get("url"))
    if not url:
        return None
    return CoverageReference(
        title=record_title(record) or "N/A",
        display_id=record_display_id(record),
        source_type=SourceType.LCD,
        url=url,
        effective_date=record.get("effective_date"),
        contractor=str(record.get("contractor_name_type") or ""),
        last_updated=str(record.get("updated_on") or ""),
    )


def parse_article(record: dict) -> CoverageReference | None:
    url = article_view_url(record)
    if not url:
        return None
    return CoverageReference(
        title=record_title(record) or "N/A",
        display_id=record_display_id(record),
        source_type=SourceType.ARTICLE,
        url=url,
        contractor=str(record.get("contractor_name_type") or record.get("contractor") or ""),
        last_updated=str(record.get("updated_on") or record.get("last_updated") or ""),
    )
