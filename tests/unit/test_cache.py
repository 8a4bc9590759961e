"""Unit tests for the tool result cache."""

from __future__ import annotations

from priorauth.agent.cache import ResultCache, cache_key


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCacheKey:
    def test_normalizes_case_whitespace_and_key_order(self):
        a = cache_key("local_lcd_search", {"query": " Knee MRI ", "state": {"description": "Florida"}})
        b = cache_key("local_lcd_search", {"state": {"description": "florida"}, "query": "knee mri"})
        assert a == b

    def test_tool_name_is_part_of_key(self):
        args = {"query": "knee"}
        assert cache_key("carelon_guidelines_search", args) != cache_key("evolent_guidelines_search", args)

    def test_url_case_preserved(self):
        upper = cache_key("policy_content_extractor", {"policy_url": "https://guides.example.com/Docs/Knee_MRI.pdf"})
        lower = cache_key("policy_content_extractor", {"policy_url": "https://guides.example.com/docs/knee_mri.pdf"})
        assert upper != lower
        assert "Docs/Knee_MRI.pdf" in upper

    def test_url_whitespace_stripped(self):
        a = cache_key("lcd_summary", {"url": " https://www.cms.gov/X ", "query": "CPAP"})
        b = cache_key("lcd_summary", {"url": "https://www.cms.gov/X", "query": "cpap"})
        assert a == b

    def test_prefix(self):
        assert cache_key("ncd_coverage_search", {"query": "MRI"}) == 'ncd_coverage_search:{"query":"mri"}'


class TestResultCache:
    def test_hit_and_miss_counters(self):
        cache = ResultCache()
        assert cache.get("k") is None
        cache.set("k", "value")
        assert cache.get("k") == "value"
        assert (cache.hits, cache.misses) == (1, 1)

    def test_no_expiry_by_default(self):
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        cache.set("k", "value")
        clock.now = 1e9
        assert cache.get("k") == "value"

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=60, clock=clock)
        cache.set("k", "value")

        clock.now = 59
        assert "k" in cache
        clock.now = 61
        assert "k" not in cache
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_clear(self):
        cache = ResultCache()
        cache.set("a", "1")
        cache.get("a")
        cache.clear()
        assert len(cache) == 0
        assert cache.hits == 0
