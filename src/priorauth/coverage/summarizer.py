"""Secondary-model summaries of fetched coverage documents.

Summaries never fail the calling tool: a model error or timeout yields the
FAILED_SUMMARY placeholder in place of the summary text.
"""

from __future__ import annotations

import asyncio
import re

import structlog

from priorauth.models.base import ModelAdapter

logger = structlog.get_logger()

FAILED_SUMMARY = "[Summary unavailable: failed to summarize this document.]"

LCD_WINDOW_CHARS = 8000
GUIDELINE_WINDOW_CHARS = 16000
CHUNK_CHARS = 4000
CHUNK_OVERLAP_CHARS = 200

SUMMARY_PROMPT = """Summarize the following {label} content for a healthcare provider.
The summary should be concise, factual, and directly address the query. Keep
coverage criteria, prior authorization statements, ICD-10 and CPT codes, and
documentation requirements when present.

Query: {query}

Document content:
{content}
"""

REDUCE_PROMPT = """The following are partial summaries of one {label} document.
Combine them into a single concise summary that addresses the query. Do not
repeat points.

Query: {query}

Partial summaries:
{content}
"""

# Table-of-contents dot leaders, running headers and disclaimer blocks that
# survive the guideline PDF-to-text conversion.
_DOT_LEADER_BLOCK = re.compile(r"\.{25}[\s\S]*?\.{25}")
_STATEMENT_TOC = re.compile(r"\\nSTATEMENT[\s\S]*?\.\{4\} 4")
_TOC_HEADER = re.compile(r"TABLE OF CONTENTS STATEMENT[\s\S]*?CODING \.\. 2")
_SECTION_LEADERS = re.compile(r"[A-Z\s]+\.{9}[\s\S]*?[A-Z\s]+\.{9}")
_EVOLENT_PAGE_HEADER = re.compile(
    r"\s*Page \d+ of \d+ Evolent Clinical Guideline[\s\S]*?"
    r"Implementation Date: \w+ \d+\.\.\. \d+[\s\S]*?DISCLAIMER\s*\.{5}\s*\d+"
)
_LINE_BREAKS = re.compile(r"[\r\n]+")
_SPACES = re.compile(r"[ \t]{2,}")


def clean_guideline_text(text: str) -> str:
    """Strip dot-leader and table-of-contents boilerplate, flatten line breaks."""
    for pattern in (
        _EVOLENT_PAGE_HEADER,
        _DOT_LEADER_BLOCK,
        _STATEMENT_TOC,
        _TOC_HEADER,
        _SECTION_LEADERS,
    ):
        text = pattern.sub("", text)
    text = _LINE_BREAKS.sub(" ", text)
    return _SPACES.sub(" ", text).strip()


def split_text(text: str, chunk_size: int = CHUNK_CHARS, overlap: int = CHUNK_OVERLAP_CHARS) -> list[str]:
    """Split into chunks of at most chunk_size chars with `overlap` chars shared.

    Chunk ends are pulled back to the last whitespace when one exists in the
    second half of the chunk, so words are not cut.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    text = text.strip()
    if not text:
        return []

    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            cut = text.rfind(" ", start + chunk_size // 2, end)
            if cut != -1:
                end = cut
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return chunks


class DocumentSummarizer:
    """Summarizes document text with a ModelAdapter under a per-call timeout."""

    def __init__(self, adapter: ModelAdapter, timeout_seconds: float = 60.0, max_tokens: int = 1024):
        self._adapter = adapter
        self._timeout = timeout_seconds
        self._max_tokens = max_tokens

    async def _generate(self, prompt: str) -> str:
        response = await asyncio.wait_for(
            self._adapter.generate(prompt, max_tokens=self._max_tokens),
            timeout=self._timeout,
        )
        return response.text.strip()

    async def summarize(
        self,
        content: str,
        query: str,
        window: int = LCD_WINDOW_CHARS,
        label: str = "coverage policy",
    ) -> str:
        """Summarize the first `window` chars of content."""
        prompt = SUMMARY_PROMPT.format(label=label, query=query, content=content[:window])
        try:
            text = await self._generate(prompt)
        except Exception as exc:
            logger.warning("summary_failed", label=label, error=str(exc)[:200])
            return FAILED_SUMMARY
        return text or FAILED_SUMMARY

    async def map_reduce(
        self,
        content: str,
        query: str,
        chunk_size: int = CHUNK_CHARS,
        overlap: int = CHUNK_OVERLAP_CHARS,
        label: str = "clinical guideline",
    ) -> str:
        """Summarize every chunk concurrently, then combine the partial summaries."""
        chunks = split_text(content, chunk_size, overlap)
        if not chunks:
            return FAILED_SUMMARY

        prompts = [SUMMARY_PROMPT.format(label=label, query=query, content=c) for c in chunks]
        results = await asyncio.gather(
            *(self._generate(p) for p in prompts), return_exceptions=True
        )
        partials = [r for r in results if isinstance(r, str) and r]
        failures = len(results) - len(partials)
        if failures:
            logger.warning("map_summary_partial_failure", chunks=len(chunks), failed=failures)
        if not partials:
            return FAILED_SUMMARY
        if len(partials) == 1:
            return partials[0]

        combined = "\n\n".join(partials)
        prompt = REDUCE_PROMPT.format(label=label, query=query, content=combined)
        try:
            return await self._generate(prompt) or combined
        except Exception as exc:
            logger.warning("reduce_summary_failed", error=str(exc)[:200])
            return combined
