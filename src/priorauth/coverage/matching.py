"""Local query matching for coverage listings.

The coverage APIs return whole listings; the treatment/diagnosis phrase is
never sent upstream. Matching is case-insensitive substring only, against
the query, its parenthetical-stripped form, and the parenthetical content:

    "diabetes (type 2)" -> ["diabetes (type 2)", "diabetes", "type 2"]
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import Any

_PARENTHETICAL = re.compile(r"\(([^)]*)\)")
_WHITESPACE = re.compile(r"\s+")

MIN_VARIANT_CHARS = 3

# Match strength, strongest first.
SCORE_ID_EXACT = 4
SCORE_FULL_QUERY = 3
SCORE_STRIPPED_QUERY = 2
SCORE_PARENTHETICAL = 1


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def query_variants(query: str) -> tuple[str, str | None, list[str]]:
    """Return (full, parenthetical-stripped or None, parenthetical contents).

    An unclosed "(" ends the stripped form and its tail counts as a
    parenthetical: "diabetes (type 2" -> ("diabetes (type 2", "diabetes", ["type 2"]).
    """
    full = _collapse(query.lower())
    closed_removed = _PARENTHETICAL.sub(" ", full)
    head, _, unclosed = closed_removed.partition("(")
    stripped = _collapse(head)
    contents = _PARENTHETICAL.findall(full)
    if unclosed:
        contents.append(unclosed.replace("(", " ").replace(")", " "))
    inner = [_collapse(m) for m in contents if len(_collapse(m)) >= MIN_VARIANT_CHARS]
    if not stripped or stripped == full:
        stripped_variant = None
    else:
        stripped_variant = stripped
    return full, stripped_variant, inner


def match_score(query: str, title: str, display_id: str = "") -> int:
    """Score one candidate; 0 means no match."""
    full, stripped, inner = query_variants(query)
    title_l = title.lower()
    id_l = display_id.lower().strip()

    if id_l and full == id_l:
        return SCORE_ID_EXACT
    if full and (full in title_l or (id_l and full in id_l)):
        return SCORE_FULL_QUERY
    if stripped and (stripped in title_l or (id_l and stripped in id_l)):
        return SCORE_STRIPPED_QUERY
    if any(variant in title_l for variant in inner):
        return SCORE_PARENTHETICAL
    return 0


def rank_matches(
    records: Iterable[dict[str, Any]],
    query: str,
    title_of: Callable[[dict[str, Any]], str],
    id_of: Callable[[dict[str, Any]], str] = lambda _r: "",
) -> list[tuple[dict[str, Any], int]]:
    """Filter records to matches, strongest first; ties keep upstream order."""
    scored = []
    for record in records:
        score = match_score(query, title_of(record) or "", str(id_of(record) or ""))
        if score > 0:
            scored.append((record, score))
    scored.sort(key=lambda item: -item[1])
    return scored
