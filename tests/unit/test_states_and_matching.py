"""Unit tests for the state directory and local query matching."""

from __future__ import annotations

from priorauth.coverage.matching import (
    SCORE_FULL_QUERY,
    SCORE_ID_EXACT,
    SCORE_PARENTHETICAL,
    SCORE_STRIPPED_QUERY,
    match_score,
    query_variants,
    rank_matches,
)
from priorauth.coverage.states import STATES, resolve_state_id, state_names

# ---------------------------------------------------------------------------
# State directory
# ---------------------------------------------------------------------------


class TestResolveStateId:
    def test_exact_name(self):
        assert resolve_state_id("Florida") == 12
        assert resolve_state_id("Illinois") == 19

    def test_case_and_whitespace_insensitive(self):
        assert resolve_state_id("  fLoRiDa ") == 12

    def test_split_state_bare_name_resolves_to_entire_state(self):
        assert resolve_state_id("New York") == 41
        assert resolve_state_id("California") == 6

    def test_split_state_region(self):
        assert resolve_state_id("California - Northern") == 66

    def test_unknown_returns_none(self):
        assert resolve_state_id("Atlantis") is None
        assert resolve_state_id("") is None

    def test_directory_is_unique(self):
        names = state_names()
        assert len(names) == len(set(names)) == len(STATES)
        assert len({entry.state_id for entry in STATES}) == len(STATES)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestQueryVariants:
    def test_parenthetical_split(self):
        assert query_variants("Diabetes (Type 2)") == ("diabetes (type 2)", "diabetes", ["type 2"])

    def test_no_parenthetical(self):
        assert query_variants("Knee replacement") == ("knee replacement", None, [])

    def test_short_parenthetical_ignored(self):
        _, stripped, inner = query_variants("MRI (a)")
        assert stripped == "mri"
        assert inner == []

    def test_unclosed_parenthesis(self):
        assert query_variants("Diabetes (Type 2") == ("diabetes (type 2", "diabetes", ["type 2"])


class TestMatchScore:
    def test_parenthetical_query_matches_title(self):
        assert match_score("diabetes (type 2)", "Diabetes Type 2 Screening") > 0

    def test_display_id_exact(self):
        assert match_score("220.3", "Magnetic Resonance Imaging", "220.3") == SCORE_ID_EXACT

    def test_full_query_in_title(self):
        assert match_score("sleep apnea", "Outpatient Sleep Apnea Testing") == SCORE_FULL_QUERY

    def test_stripped_variant(self):
        assert match_score("diabetes (type 2)", "Diabetes Self-Management") == SCORE_STRIPPED_QUERY

    def test_parenthetical_content_only(self):
        assert match_score("ulcers (pressure)", "Pressure Reducing Support Surfaces") == SCORE_PARENTHETICAL

    def test_unclosed_parenthesis_still_matches(self):
        assert match_score("diabetes (type 2", "Diabetes Type 2 Screening") == SCORE_STRIPPED_QUERY
        assert match_score("ulcers (pressure", "Pressure Reducing Support Surfaces") == SCORE_PARENTHETICAL

    def test_no_fuzzy_matching(self):
        assert match_score("diabetis", "Diabetes Screening") == 0


class TestRankMatches:
    def test_orders_by_strength_then_upstream_order(self):
        records = [
            {"title": "Foot care for diabetes patients", "id": "A"},
            {"title": "Unrelated policy", "id": "B"},
            {"title": "Diabetes (Type 2) self-management training", "id": "C"},
            {"title": "Diabetes screening", "id": "D"},
        ]
        ranked = rank_matches(records, "diabetes (type 2)", lambda r: r["title"])
        assert [r["id"] for r, _ in ranked] == ["C", "A", "D"]

    def test_display_id_outranks_title(self):
        records = [
            {"title": "Policy mentioning 220.3 in title", "display_id": "100.1"},
            {"title": "Magnetic Resonance Imaging", "display_id": "220.3"},
        ]
        ranked = rank_matches(
            records, "220.3", lambda r: r["title"], lambda r: r["display_id"]
        )
        assert ranked[0][0]["display_id"] == "220.3"
        assert ranked[0][1] == SCORE_ID_EXACT

    def test_no_matches(self):
        assert rank_matches([{"title": "Cardiac rehab"}], "dialysis", lambda r: r["title"]) == []
