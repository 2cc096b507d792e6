from __future__ import annotations

import time
from dataclasses import dataclass

from .models import AnyAnalysis


def identity_key(kind: str, identity: str) -> str:
    # URLs are matched exactly; addresses ignore EIP-55 checksum casing.
    if kind == "website":
        return identity
    return identity.strip().lower()


@dataclass(frozen=True)
class CacheEntry:
    result: AnyAnalysis
    stored_at: float

    def age_s(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.stored_at

    def is_fresh(self, max_age_s: float, now: float | None = None) -> bool:
        if max_age_s <= 0:
            return False
        return self.age_s(now) <= max_age_s


class ResultCache:
    """Identity-indexed store of analysis results.

    Freshness is decided by the caller. Nothing is evicted on its own; call
    evict_older_than() to bound memory.
    """

    def __init__(self):
        self._entries: dict[tuple[str, str], CacheEntry] = {}

    def get(self, kind: str, identity: str) -> CacheEntry | None:
        entry = self._entries.get((kind, identity_key(kind, identity)))
        if entry is None:
            return None
        return CacheEntry(result=entry.result.model_copy(deep=True), stored_at=entry.stored_at)

    def put(self, kind: str, identity: str, result: AnyAnalysis, timestamp: float | None = None) -> CacheEntry:
        entry = CacheEntry(
            result=result.model_copy(deep=True),
            stored_at=time.time() if timestamp is None else timestamp,
        )
        self._entries[(kind, identity_key(kind, identity))] = entry
        return entry

    def evict_older_than(self, max_age_s: float, now: float | None = None, kind: str | None = None) -> int:
        now = time.time() if now is None else now
        stale = [
            key for key, entry in self._entries.items()
            if (kind is None or key[0] == kind) and entry.age_s(now) > max_age_s
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    # Lookups by address, as the dashboard pages use them.

    def get_contract_analysis_by_address(self, address: str) -> AnyAnalysis | None:
        entry = self.get("contract", address)
        return entry.result if entry else None

    def get_token_analysis_by_address(self, address: str) -> AnyAnalysis | None:
        entry = self.get("token", address)
        return entry.result if entry else None

    def get_website_scan_by_url(self, url: str) -> AnyAnalysis | None:
        entry = self.get("website", url)
        return entry.result if entry else None
