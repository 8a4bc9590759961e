"""Process-wide result cache for tool observations.

Keys are `tool_name:` plus the normalized JSON of the tool arguments
(search text is case-folded, URLs are not), so repeated identical
invocations (across turns and across requests) are served without an
outbound call. Entries never expire unless a TTL is
configured. Concurrent misses on the same key may both compute; the last
write wins.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: str
    created_at: float


# Free-text fields compared case-insensitively. Everything else (URLs in
# particular) keeps its case.
CASE_INSENSITIVE_FIELDS = frozenset({"query", "description"})


def _normalize(value: Any, fold_case: bool = False) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value.lower() if fold_case else value
    if isinstance(value, dict):
        return {str(k): _normalize(v, str(k) in CASE_INSENSITIVE_FIELDS) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v, fold_case) for v in value]
    return value


def cache_key(tool_name: str, args: dict[str, Any]) -> str:
    """`tool_name:` + key-sorted JSON of args, stripped, with search text lower-cased."""
    payload = json.dumps(_normalize(args), sort_keys=True, separators=(",", ":"), default=str)
    return f"{tool_name}:{payload}"


class ResultCache:
    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._ttl = ttl_seconds
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def _expired(self, entry: CacheEntry) -> bool:
        return self._ttl is not None and self._clock() - entry.created_at > self._ttl

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None or self._expired(entry):
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: str, value: str) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key) if isinstance(key, str) else None
        return entry is not None and not self._expired(entry)

    def __len__(self) -> int:
        return len(self._entries)
