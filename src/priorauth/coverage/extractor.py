"""Policy Content Extractor: policy URL -> ExtractedPolicyDetails JSON.

Pipeline: fetch markup, drop page chrome, pick the main content node,
collapse whitespace, then ask the extraction model for JSON constrained to
the ExtractedPolicyDetails schema. Every failure returns an
ExtractionFailure envelope instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Protocol

import structlog
from bs4 import BeautifulSoup
from pydantic import ValidationError

from priorauth.coverage.schema import ExtractedPolicyDetails, ExtractionFailure
from priorauth.errors import ToolError
from priorauth.models.base import ModelAdapter

logger = structlog.get_logger()

STRIP_TAGS = ("script", "style", "nav", "footer", "header", "iframe")
CONTENT_SELECTORS = ("pre", "#lcdContent", "main", "article", "#content", ".content")
MIN_CONTENT_CHARS = 100
MAX_CONTENT_CHARS = 10000

_WHITESPACE = re.compile(r"\s+")
_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```", re.IGNORECASE)

EXTRACTION_PROMPT = """You are an expert in healthcare coverage policy extraction.
Extract the following from the policy text and return JSON only:

- priorAuthRequired: YES, NO, CONDITIONAL or UNKNOWN. Use UNKNOWN unless the
  text states the requirement.
- medicalNecessityCriteria: precise clinical criteria for coverage.
- icd10Codes / cptCodes: objects with code, description, and context
  (covered, excluded or unspecified).
- requiredDocumentation: documentation the provider must submit.
- limitationsExclusions: non-covered scenarios and limits.
- summary: two or three sentences.

Policy text:
{content}
"""


class PageFetcher(Protocol):
    async def fetch_page(self, url: str) -> str: ...


def html_to_text(html: str) -> str:
    """Return the main readable text of a policy page."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(STRIP_TAGS)):
        tag.decompose()

    text = ""
    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        text = node.get_text(" ", strip=True)
        if text:
            break
    if not text:
        text = soup.get_text(" ", strip=True)
    return _WHITESPACE.sub(" ", text).strip()


def strip_code_fences(raw: str) -> str:
    match = _CODE_FENCE.search(raw)
    if match:
        return match.group(1).strip()
    return raw.strip()


def parse_extraction(raw: str) -> ExtractedPolicyDetails:
    """Parse model output into ExtractedPolicyDetails.

    Raises ValueError (json.JSONDecodeError or pydantic ValidationError) on
    malformed output.
    """
    data = json.loads(strip_code_fences(raw))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return ExtractedPolicyDetails.model_validate(data)


class PolicyContentExtractor:
    def __init__(
        self,
        fetcher: PageFetcher,
        adapter: ModelAdapter,
        timeout_seconds: float = 60.0,
        max_tokens: int = 4096,
    ):
        self._fetcher = fetcher
        self._adapter = adapter
        self._timeout = timeout_seconds
        self._max_tokens = max_tokens

    async def extract(self, url: str) -> ExtractedPolicyDetails | ExtractionFailure:
        try:
            html = await self._fetcher.fetch_page(url)
        except ToolError as exc:
            logger.warning("policy_fetch_failed", url=url, error=exc.observation)
            return ExtractionFailure(error="Failed to fetch policy content", details=exc.observation)

        text = html_to_text(html)
        if len(text) < MIN_CONTENT_CHARS:
            logger.info("policy_content_too_short", url=url, chars=len(text))
            return ExtractionFailure(
                error="Insufficient policy content",
                details=(
                    f"Only {len(text)} characters of text were found at {url}; "
                    f"at least {MIN_CONTENT_CHARS} are needed for extraction."
                ),
            )

        text = text[:MAX_CONTENT_CHARS]
        try:
            response = await asyncio.wait_for(
                self._adapter.generate(
                    EXTRACTION_PROMPT.format(content=text),
                    max_tokens=self._max_tokens,
                    response_schema=ExtractedPolicyDetails,
                ),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning("policy_extraction_timeout", url=url, timeout=self._timeout)
            return ExtractionFailure(
                error="Policy extraction timed out",
                details=f"No response from the extraction model within {self._timeout:.0f}s.",
            )
        except Exception as exc:
            logger.warning("policy_extraction_model_failed", url=url, error=str(exc)[:200])
            return ExtractionFailure(error="Policy extraction failed", details=str(exc))

        try:
            details = parse_extraction(response.text)
        except (ValueError, ValidationError) as exc:
            logger.warning("policy_extraction_unparseable", url=url, error=str(exc)[:200])
            return ExtractionFailure(error="Failed to parse policy data", details=str(exc)[:500])

        logger.info(
            "policy_extracted",
            url=url,
            prior_auth=str(details.prior_auth_required),
            icd10=len(details.icd10_codes),
            cpt=len(details.cpt_codes),
            latency_ms=round(response.latency_ms),
        )
        return details
