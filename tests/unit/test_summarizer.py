"""Unit tests for document summarization and guideline text cleanup."""

from __future__ import annotations

import asyncio

import pytest

from priorauth.coverage.summarizer import (
    FAILED_SUMMARY,
    DocumentSummarizer,
    clean_guideline_text,
    split_text,
)
from priorauth.models.base import ModelAdapter
from priorauth.models.schema import ModelResponse


class ScriptedAdapter(ModelAdapter):
    """Answers map prompts with "partial" and reduce prompts with "combined"."""

    def __init__(self, fail_map: bool = False, fail_reduce: bool = False, delay: float = 0.0):
        self.fail_map = fail_map
        self.fail_reduce = fail_reduce
        self.delay = delay
        self.prompts: list[str] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def generate(self, prompt, max_tokens=2048, response_schema=None):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        is_reduce = "Partial summaries:" in prompt
        if (is_reduce and self.fail_reduce) or (not is_reduce and self.fail_map):
            raise RuntimeError("model unavailable")
        text = "combined" if is_reduce else "partial"
        return ModelResponse(text=text, input_tokens=1, output_tokens=1, latency_ms=1.0, estimated_cost=0.0)

    async def health_check(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


class TestSplitText:
    def test_chunks_bounded_and_cover_every_word(self):
        words = [f"w{i}" for i in range(100)]
        chunks = split_text(" ".join(words), chunk_size=50, overlap=10)

        assert len(chunks) > 1
        assert all(len(c) <= 50 for c in chunks)
        seen = set(" ".join(chunks).split())
        assert set(words) <= seen

    def test_short_text_is_one_chunk(self):
        assert split_text("short text", chunk_size=50, overlap=10) == ["short text"]

    def test_empty_text(self):
        assert split_text("   ") == []

    def test_overlap_must_be_smaller_than_chunk(self):
        with pytest.raises(ValueError):
            split_text("abc", chunk_size=10, overlap=10)


def test_clean_guideline_text_strips_dot_leaders():
    raw = "Intro " + "." * 25 + " TOC stuff " + "." * 25 + " Body\nline"
    assert clean_guideline_text(raw) == "Intro Body line"


# ---------------------------------------------------------------------------
# DocumentSummarizer
# ---------------------------------------------------------------------------


class TestSummarize:
    def test_truncates_to_window(self):
        adapter = ScriptedAdapter()
        summary = asyncio.run(
            DocumentSummarizer(adapter).summarize("x" * 100 + "ZZZZ", "query", window=100)
        )
        assert summary == "partial"
        assert "x" * 100 in adapter.prompts[0]
        assert "ZZZZ" not in adapter.prompts[0]

    def test_failure_yields_placeholder(self):
        summary = asyncio.run(
            DocumentSummarizer(ScriptedAdapter(fail_map=True)).summarize("text", "query")
        )
        assert summary == FAILED_SUMMARY

    def test_timeout_yields_placeholder(self):
        summarizer = DocumentSummarizer(ScriptedAdapter(delay=1.0), timeout_seconds=0.01)
        assert asyncio.run(summarizer.summarize("text", "query")) == FAILED_SUMMARY


class TestMapReduce:
    CONTENT = " ".join(f"criterion{i}" for i in range(40))

    def test_map_then_reduce(self):
        adapter = ScriptedAdapter()
        summary = asyncio.run(
            DocumentSummarizer(adapter).map_reduce(self.CONTENT, "q", chunk_size=100, overlap=10)
        )
        chunks = split_text(self.CONTENT, 100, 10)
        assert summary == "combined"
        assert len(adapter.prompts) == len(chunks) + 1

    def test_single_chunk_skips_reduce(self):
        adapter = ScriptedAdapter()
        summary = asyncio.run(DocumentSummarizer(adapter).map_reduce("one short chunk", "q"))
        assert summary == "partial"
        assert len(adapter.prompts) == 1

    def test_all_chunks_fail(self):
        summary = asyncio.run(
            DocumentSummarizer(ScriptedAdapter(fail_map=True)).map_reduce(
                self.CONTENT, "q", chunk_size=100, overlap=10
            )
        )
        assert summary == FAILED_SUMMARY

    def test_reduce_failure_falls_back_to_partials(self):
        chunks = split_text(self.CONTENT, 100, 10)
        summary = asyncio.run(
            DocumentSummarizer(ScriptedAdapter(fail_reduce=True)).map_reduce(
                self.CONTENT, "q", chunk_size=100, overlap=10
            )
        )
        assert summary == "\n\n".join(["partial"] * len(chunks))
