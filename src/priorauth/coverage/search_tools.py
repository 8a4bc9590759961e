"""Coverage search tools exposed to the reasoning engine.

Each tool returns a formatted, truncated reference listing or a "no results"
sentinel naming the query. Upstream failures are raised as SourceError and
become the observation text at the catalog boundary.
"""

from __future__ import annotations

import asyncio

import structlog

from priorauth.agent.cache import ResultCache, cache_key
from priorauth.agent.catalog import CoverageTool
from priorauth.coverage.cms_client import (
    CMSCoverageClient,
    parse_article,
    parse_lcd,
    parse_ncd,
    record_display_id,
    record_title,
)
from priorauth.coverage.extractor import PolicyContentExtractor, html_to_text
from priorauth.coverage.guidelines_client import GuidelinesClient, guideline_title, parse_guideline
from priorauth.coverage.matching import rank_matches
from priorauth.coverage.schema import (
    CoverageReference,
    ExtractionFailure,
    GuidelineQuery,
    PolicyUrlInput,
    SearchQuery,
    SourceType,
    StateRef,
    StateScopedQuery,
)
from priorauth.coverage.states import resolve_state_id
from priorauth.coverage.summarizer import (
    FAILED_SUMMARY,
    GUIDELINE_WINDOW_CHARS,
    LCD_WINDOW_CHARS,
    DocumentSummarizer,
    clean_guideline_text,
)
from priorauth.errors import SourceError, ToolError

logger = structlog.get_logger()

NCD_LIMIT = 10
LCD_LIMIT = 5
ARTICLE_LIMIT = 5
CARELON_LIMIT = 5
EVOLENT_LIMIT = 5


def resolve_state(state: StateRef) -> int:
    """Return the CMS state id, raising ToolError when the name is unknown."""
    if state.state_id is not None:
        return state.state_id
    state_id = resolve_state_id(state.description)
    if state_id is None:
        raise ToolError(
            f"Error: Could not find a valid state ID for '{state.description}'. "
            "Please provide a full, valid U.S. state name."
        )
    return state_id


def format_reference(ref: CoverageReference, url_label: str = "URL") -> str:
    lines = [f"- Title: {ref.title}", f"  ID: {ref.display_id or 'N/A'}"]
    if ref.contractor:
        lines.append(f"  MAC: {ref.contractor}")
    if ref.status:
        lines.append(f"  Status: {ref.status}")
    if ref.last_updated:
        lines.append(f"  Last Updated: {ref.last_updated}")
    if ref.effective_date:
        lines.append(f"  Effective: {ref.effective_date.isoformat()}")
    lines.append(f"  {url_label}: {ref.url}")
    return "\n".join(lines)


def _top_references(ranked, parse, limit: int) -> list[CoverageReference]:
    refs: list[CoverageReference] = []
    for record, _score in ranked:
        ref = parse(record)
        if ref is not None:
            refs.append(ref)
        if len(refs) >= limit:
            break
    return refs


# ---------------------------------------------------------------------------
# Medicare (CMS Coverage API)
# ---------------------------------------------------------------------------


class NcdSearchTool(CoverageTool):
    name = "ncd_coverage_search"
    description = (
        "Searches Medicare National Coverage Determinations (NCDs) for a disease, "
        "treatment, or NCD number (e.g. '220.3'). Returns up to 10 NCDs ordered by "
        "relevance with title, NCD ID, status, last updated date and CMS URL."
    )
    input_model = SearchQuery

    def __init__(self, client: CMSCoverageClient, cache: ResultCache | None = None):
        super().__init__(cache)
        self._client = client

    async def run(self, args: SearchQuery) -> str:
        query = args.query
        try:
            records = await self._client.national_ncds()
        except SourceError as exc:
            raise SourceError(
                f"Error searching NCD coverage for '{query}': {exc.observation}",
                status_code=exc.status_code,
            ) from exc

        ranked = rank_matches(records, query, record_title, record_display_id)
        refs = _top_references(ranked, parse_ncd, NCD_LIMIT)
        logger.info("ncd_search_complete", query=query, matches=len(ranked))
        if not refs:
            return (
                f"No National Coverage Determination (NCD) found for '{query}'. "
                "Try a simpler phrase, a key word from the NCD title, or the NCD "
                'number (for example, "220.3").'
            )

        listing = "\n".join(
            f"{format_reference(ref)}\n  [POLICY_URL:{ref.url}]" for ref in refs
        )
        guidance = (
            "\n\nTo view the complete NCD text in the Medicare Coverage Database:\n"
            f"1. Open: {refs[0].url}\n"
            "2. Review the full policy, including coverage indications, limitations, "
            "and any coding details.\n"
        )
        return (
            f"Found {len(ranked)} potentially relevant National Coverage Determination(s) "
            f"for '{query}'. Displaying top {len(refs)} by relevance:\n\n{listing}{guidance}"
        )


class LocalLcdSearchTool(CoverageTool):
    name = "local_lcd_search"
    description = (
        "Searches Local Coverage Determinations (LCDs) for a disease or treatment within "
        "a specific U.S. state. LCDs define coverage criteria for a Medicare Administrative "
        "Contractor (MAC) region. Returns up to 5 LCDs with MAC, URL and a short summary "
        "of each policy page."
    )
    input_model = StateScopedQuery

    def __init__(
        self,
        client: CMSCoverageClient,
        summarizer: DocumentSummarizer,
        cache: ResultCache | None = None,
    ):
        super().__init__(cache)
        self._client = client
        self._summarizer = summarizer

    async def _summary(self, ref: CoverageReference, query: str) -> str:
        key = cache_key("lcd_summary", {"url": ref.url, "query": query})
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        try:
            page = await self._client.fetch_page(ref.url)
        except ToolError as exc:
            logger.warning("lcd_page_fetch_failed", url=ref.url, error=exc.observation)
            return FAILED_SUMMARY

        summary = await self._summarizer.summarize(
            html_to_text(page), query, window=LCD_WINDOW_CHARS, label="Local Coverage Determination"
        )
        if self._cache is not None and summary != FAILED_SUMMARY:
            self._cache.set(key, summary)
        return summary

    async def run(self, args: StateScopedQuery) -> str:
        query, state = args.query, args.state
        state_id = resolve_state(state)
        try:
            records = await self._client.local_lcds(state_id)
        except SourceError as exc:
            raise SourceError(
                f"Failed to fetch local LCDs for {state.description} (state id {state_id}): "
                f"{exc.observation}",
                status_code=exc.status_code,
            ) from exc

        ranked = rank_matches(records, query, record_title, record_display_id)
        refs = _top_references(ranked, parse_lcd, LCD_LIMIT)
        logger.info("lcd_search_complete", query=query, state_id=state_id, matches=len(ranked))
        if not refs:
            return f"No Local Coverage Determination (LCD) found for '{query}' in {state.description}."

        summaries = await asyncio.gather(*(self._summary(ref, query) for ref in refs))
        listing = "\n\n".join(
            f"{format_reference(ref, 'Direct URL (check for coverage criteria here)')}\n"
            f"  Summary: {summary}"
            for ref, summary in zip(refs, summaries, strict=True)
        )
        return (
            f"Found {len(ranked)} Local Coverage Determination(s) for '{query}' in "
            f"{state.description}. Displaying top {len(refs)}:\n\n{listing}"
        )


class LocalArticleSearchTool(CoverageTool):
    name = "local_coverage_article_search"
    description = (
        "Searches Local Coverage Articles (LCAs) for a disease or treatment within a "
        "specific U.S. state. Articles carry billing, ICD-10/CPT coding and documentation "
        "requirements that support LCDs. Returns up to 5 articles with MAC and URL."
    )
    input_model = StateScopedQuery

    def __init__(self, client: CMSCoverageClient, cache: ResultCache | None = None):
        super().__init__(cache)
        self._client = client

    async def run(self, args: StateScopedQuery) -> str:
        query, state = args.query, args.state
        state_id = resolve_state(state)
        try:
            records = await self._client.local_articles(state_id)
        except SourceError as exc:
            raise SourceError(
                f"Failed to fetch local coverage articles for {state.description} "
                f"(state id {state_id}): {exc.observation}",
                status_code=exc.status_code,
            ) from exc

        ranked = rank_matches(records, query, record_title, record_display_id)
        refs = _top_references(ranked, parse_article, ARTICLE_LIMIT)
        logger.info("article_search_complete", query=query, state_id=state_id, matches=len(ranked))
        if not refs:
            return f"No Local Coverage Article found for '{query}' in {state.description}."

        listing = "\n".join(
            format_reference(ref, "Direct URL (check for ICD-10/CPT codes here)") for ref in refs
        )
        return (
            f"Found {len(ranked)} Local Coverage Article(s) for '{query}' in "
            f"{state.description}. Displaying top {len(refs)}:\n{listing}"
        )


class MedicareSearchTool(CoverageTool):
    """Runs the NCD, LCD and Article searches concurrently and joins their sections.

    Each sub-search is settled independently; one failing source shows up as
    an error section while the others still report.
    """

    name = "medicare_search"
    description = (
        "Searches Medicare NCDs, LCDs and Local Coverage Articles in parallel for a "
        "disease or treatment and the patient's state. Use this for Medicare questions."
    )
    input_model = SearchQuery
    cacheable = False

    def __init__(
        self,
        ncd: NcdSearchTool,
        lcd: LocalLcdSearchTool,
        article: LocalArticleSearchTool,
    ):
        super().__init__(None)
        self._ncd = ncd
        self._lcd = lcd
        self._article = article

    async def run(self, args: SearchQuery) -> str:
        ncd_args = SearchQuery(query=args.query)
        jobs = [(self._ncd.name, self._ncd(ncd_args))]
        if args.state is not None:
            local_args = StateScopedQuery(query=args.query, state=args.state)
            jobs.append((self._lcd.name, self._lcd(local_args)))
            jobs.append((self._article.name, self._article(local_args)))

        results = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)

        sections = []
        for (tool_name, _), result in zip(jobs, results, strict=True):
            if isinstance(result, ToolError):
                sections.append(f"--- Error from {tool_name} ---\n{result.observation}")
            elif isinstance(result, BaseException):
                logger.error("medicare_subsearch_crashed", tool=tool_name, error=str(result))
                sections.append(f"--- Error from {tool_name} ---\n{result}")
            else:
                sections.append(f"--- Results from {tool_name} ---\n{result}")
        if args.state is None:
            sections.append(
                "--- Local coverage skipped ---\n"
                "No patient state was given; LCDs and Local Coverage Articles are "
                "published per state. Ask for the state to search local coverage."
            )
        return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Commercial guideline providers
# ---------------------------------------------------------------------------


class CarelonSearchTool(CoverageTool):
    name = "carelon_guidelines_search"
    description = (
        "Searches Carelon clinical guidelines for a disease or treatment and returns a "
        "summary of the matching guidelines. Use only when the patient's plan uses Carelon."
    )
    input_model = GuidelineQuery

    def __init__(
        self,
        client: GuidelinesClient,
        summarizer: DocumentSummarizer,
        cache: ResultCache | None = None,
    ):
        super().__init__(cache)
        self._client = client
        self._summarizer = summarizer

    async def run(self, args: GuidelineQuery) -> str:
        query = args.query
        try:
            records = await self._client.search_index(SourceType.CARELON)
        except SourceError as exc:
            raise SourceError(
                f"An error occurred while searching Carelon guidelines: {exc.observation}",
                status_code=exc.status_code,
            ) from exc

        matches = [r for r, _ in rank_matches(records, query, guideline_title)][:CARELON_LIMIT]
        logger.info("carelon_search_complete", query=query, matches=len(matches))
        if not matches:
            return f"No relevant Carelon guidelines found for '{query}'."

        combined = " ".join(clean_guideline_text(str(r.get("content") or "")) for r in matches)
        summary = await self._summarizer.summarize(
            combined, query, window=GUIDELINE_WINDOW_CHARS, label="Carelon guideline"
        )
        refs = [parse_guideline(self._client, SourceType.CARELON, r) for r in matches]
        listing = "\n".join(format_reference(ref) for ref in refs)
        return (
            f"Found {len(matches)} Carelon Coverage Guideline(s) for '{query}'. "
            f"Summary of the most relevant information:\n\n{summary}\n\nSources:\n{listing}"
        )


class EvolentSearchTool(CoverageTool):
    name = "evolent_guidelines_search"
    description = (
        "Searches Evolent clinical guidelines for a disease or treatment and returns a "
        "summary of the best-matching guideline. Use only when the patient's plan uses Evolent."
    )
    input_model = GuidelineQuery

    def __init__(
        self,
        client: GuidelinesClient,
        summarizer: DocumentSummarizer,
        cache: ResultCache | None = None,
    ):
        super().__init__(cache)
        self._client = client
        self._summarizer = summarizer

    async def run(self, args: GuidelineQuery) -> str:
        query = args.query
        try:
            records = await self._client.search_index(SourceType.EVOLENT)
        except SourceError as exc:
            raise SourceError(
                f"Error calling Evolent API or processing data: {exc.observation}",
                status_code=exc.status_code,
            ) from exc

        matches = [r for r, _ in rank_matches(records, query, guideline_title)][:EVOLENT_LIMIT]
        logger.info("evolent_search_complete", query=query, matches=len(matches))
        if not matches:
            return f"No Evolent guidelines found for '{query}'."

        best = matches[0]
        content = clean_guideline_text(str(best.get("content") or ""))
        if not content:
            return f"No substantial Evolent guideline content found for '{query}'."

        summary = await self._summarizer.map_reduce(content, query, label="Evolent guideline")
        refs = [parse_guideline(self._client, SourceType.EVOLENT, r) for r in matches]
        listing = "\n".join(format_reference(ref) for ref in refs)
        return (
            f"Evolent Coverage Guideline(s) for '{query}':\n\n{summary}\n\n"
            f"Matching guidelines:\n{listing}"
        )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class PolicyContentExtractorTool(CoverageTool):
    name = "policy_content_extractor"
    description = (
        "Fetches a policy document (NCD, LCD, Article or guideline page) from its URL and "
        "returns structured JSON: priorAuthRequired, medicalNecessityCriteria, icd10Codes, "
        "cptCodes, requiredDocumentation, limitationsExclusions and summary. Call it for "
        "each relevant policy URL before answering."
    )
    input_model = PolicyUrlInput

    def __init__(self, extractor: PolicyContentExtractor, cache: ResultCache | None = None):
        super().__init__(cache)
        self._extractor = extractor

    async def run(self, args: PolicyUrlInput) -> str:
        result = await self._extractor.extract(args.policy_url)
        if isinstance(result, ExtractionFailure):
            raise ToolError(result.to_json())
        return result.to_json()
