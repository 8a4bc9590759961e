"""Runtime wiring for the CLI and HTTP server.

This module centralizes:
1. Factories that build adapters, clients, the shared cache and the tool
   catalog from Settings.
2. Health preflight checks for the model endpoint and the CMS Coverage API.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from priorauth.agent.cache import ResultCache
from priorauth.agent.catalog import ToolCatalog
from priorauth.agent.loop import AgentLoop
from priorauth.coverage.cms_client import CMSCoverageClient
from priorauth.coverage.extractor import PolicyContentExtractor
from priorauth.coverage.guidelines_client import GuidelinesClient
from priorauth.coverage.search_tools import (
    CarelonSearchTool,
    EvolentSearchTool,
    LocalArticleSearchTool,
    LocalLcdSearchTool,
    MedicareSearchTool,
    NcdSearchTool,
    PolicyContentExtractorTool,
)
from priorauth.coverage.summarizer import DocumentSummarizer
from priorauth.models.gemini import GeminiAdapter
from priorauth.usage.reporter import HttpUsageReporter, NullUsageReporter, UsageReporter

if TYPE_CHECKING:
    from priorauth.config import Settings
    from priorauth.models.base import ModelAdapter

logger = structlog.get_logger()


@dataclass(slots=True)
class HealthCheckResult:
    """Result of one preflight check."""

    name: str
    ok: bool
    latency_ms: float
    detail: str


@dataclass(slots=True)
class Runtime:
    """Everything one process needs to serve agent requests."""

    settings: Settings
    engine: GeminiAdapter
    extraction_adapter: GeminiAdapter
    cms: CMSCoverageClient
    guidelines: GuidelinesClient
    cache: ResultCache
    catalog: ToolCatalog
    loop: AgentLoop
    usage: UsageReporter

    async def aclose(self) -> None:
        await asyncio.gather(self.cms.aclose(), self.guidelines.aclose(), self.usage.aclose())


def create_engine(settings: Settings) -> GeminiAdapter:
    """Create the Gemini reasoning engine for the agent loop."""
    if not settings.google_api_key:
        msg = "GOOGLE_API_KEY not set. Required for the Gemini reasoning engine."
        raise ValueError(msg)
    return GeminiAdapter(api_key=settings.google_api_key, model=settings.agent_model)


def create_extraction_adapter(settings: Settings) -> GeminiAdapter:
    """Create the adapter used for summaries and structured extraction."""
    if not settings.google_api_key:
        msg = "GOOGLE_API_KEY not set. Required for policy summaries and extraction."
        raise ValueError(msg)
    return GeminiAdapter(api_key=settings.google_api_key, model=settings.extraction_model)


def create_usage_reporter(settings: Settings) -> UsageReporter:
    if settings.usage_url:
        return HttpUsageReporter(settings.usage_url)
    return NullUsageReporter()


def create_catalog(
    cms: CMSCoverageClient,
    guidelines: GuidelinesClient,
    adapter: ModelAdapter,
    cache: ResultCache,
    llm_timeout: float = 60.0,
) -> ToolCatalog:
    """Register every coverage tool against the shared clients and cache."""
    summarizer = DocumentSummarizer(adapter, timeout_seconds=llm_timeout)
    extractor = PolicyContentExtractor(cms, adapter, timeout_seconds=llm_timeout)

    ncd = NcdSearchTool(cms, cache)
    lcd = LocalLcdSearchTool(cms, summarizer, cache)
    article = LocalArticleSearchTool(cms, cache)
    return ToolCatalog(
        [
            ncd,
            lcd,
            article,
            MedicareSearchTool(ncd, lcd, article),
            CarelonSearchTool(guidelines, summarizer, cache),
            EvolentSearchTool(guidelines, summarizer, cache),
            PolicyContentExtractorTool(extractor, cache),
        ]
    )


def build_runtime(settings: Settings) -> Runtime:
    engine = create_engine(settings)
    extraction_adapter = create_extraction_adapter(settings)
    cms = CMSCoverageClient(base_url=settings.cms_base_url, timeout_seconds=settings.search_timeout)
    guidelines = GuidelinesClient(
        base_url=settings.guidelines_base_url, timeout_seconds=settings.search_timeout
    )
    cache = ResultCache(ttl_seconds=settings.cache_ttl_seconds)
    catalog = create_catalog(cms, guidelines, extraction_adapter, cache, settings.llm_timeout)
    loop = AgentLoop(engine, catalog, max_tool_calls=settings.max_tool_calls)

    logger.info(
        "runtime_ready",
        agent_model=engine.name,
        extraction_model=extraction_adapter.name,
        tools=catalog.names(),
        cache_ttl_seconds=settings.cache_ttl_seconds,
        usage_reporting=bool(settings.usage_url),
    )
    return Runtime(
        settings=settings,
        engine=engine,
        extraction_adapter=extraction_adapter,
        cms=cms,
        guidelines=guidelines,
        cache=cache,
        catalog=catalog,
        loop=loop,
        usage=create_usage_reporter(settings),
    )


def _truncate_detail(raw: str, max_len: int = 200) -> str:
    if len(raw) <= max_len:
        return raw
    return raw[:max_len].rstrip() + "..."


async def check_model_health(name: str, adapter: ModelAdapter) -> HealthCheckResult:
    """Run model adapter health check without raising."""
    start = time.perf_counter()
    try:
        ok = await adapter.health_check()
        latency_ms = (time.perf_counter() - start) * 1000
        detail = "ok" if ok else "health check returned False"
        log_fn = logger.info if ok else logger.warning
        log_fn(
            "preflight_model_ok" if ok else "preflight_model_failed",
            check=name,
            model=adapter.name,
            latency_ms=f"{latency_ms:.0f}",
        )
        return HealthCheckResult(name=name, ok=ok, latency_ms=latency_ms, detail=detail)
    except Exception as exc:
        latency_ms = (time.perf_counter() - start) * 1000
        detail = _truncate_detail(f"{type(exc).__name__}: {exc}")
        logger.warning("preflight_model_exception", check=name, model=adapter.name, error=detail)
        return HealthCheckResult(name=name, ok=False, latency_ms=latency_ms, detail=detail)


async def check_cms_health(client: CMSCoverageClient) -> HealthCheckResult:
    """Check CMS Coverage API connectivity without raising."""
    start = time.perf_counter()
    try:
        ok = await client.health_check()
        detail = "ok" if ok else "NCD report endpoint returned an error status"
    except Exception as exc:
        ok = False
        detail = _truncate_detail(f"{type(exc).__name__}: {exc}")
    latency_ms = (time.perf_counter() - start) * 1000
    log_fn = logger.info if ok else logger.warning
    log_fn("preflight_cms_ok" if ok else "preflight_cms_failed", latency_ms=f"{latency_ms:.0f}", detail=detail)
    return HealthCheckResult(name="CMS Coverage API", ok=ok, latency_ms=latency_ms, detail=detail)


async def run_preflight(
    engine: ModelAdapter,
    cms: CMSCoverageClient,
    include_cms: bool = True,
) -> list[HealthCheckResult]:
    """Run all preflight checks. Never raises for individual failed checks."""
    coroutines = [check_model_health("Gemini", engine)]
    if include_cms:
        coroutines.append(check_cms_health(cms))

    raw_results = await asyncio.gather(*coroutines, return_exceptions=True)
    results: list[HealthCheckResult] = []
    for idx, item in enumerate(raw_results):
        if isinstance(item, Exception):
            detail = _truncate_detail(f"{type(item).__name__}: {item}")
            logger.warning("preflight_unexpected_exception", check_index=idx, error=detail)
            results.append(HealthCheckResult(name=f"check-{idx}", ok=False, latency_ms=0.0, detail=detail))
            continue
        results.append(item)

    failed = [r.name for r in results if not r.ok]
    logger.info("preflight_complete", total_checks=len(results), failed_checks=failed)
    return results


def failed_preflight_checks(results: list[HealthCheckResult]) -> list[HealthCheckResult]:
    """Return preflight checks that failed."""
    return [r for r in results if not r.ok]
