"""
ZK-PRET Composed Proofs - Proof Cache
Version: 1.0
Purpose: Content-addressed cache of component results

Features:
- TTL per entry with lazy expiry on lookup
- Hit counting per entry
- Lock striping so different keys do not serialise on one lock
- Cache key interpolation from component parameters
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import ComponentResult

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^}]+)\}")


def interpolate_cache_key(template: str, parameters: Mapping[str, Any]) -> str:
    """
    Replace {name} placeholders with parameter values.

    Placeholders without a matching (non-empty) parameter are left as-is.
    """

    def _sub(match: "re.Match[str]") -> str:
        value = parameters.get(match.group(1))
        if value is None or value == "":
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_sub, template)


# ============================================================================
# CACHE ENTRY
# ============================================================================


@dataclass
class ProofCacheEntry:
    """A cached component result with TTL and hit count."""

    cache_key: str
    result: ComponentResult
    created_at: float = field(default_factory=time.time)
    ttl_seconds: float = 86400.0
    hits: int = 0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache_key": self.cache_key,
            "component_id": self.result.component_id,
            "hits": self.hits,
            "timestamp": datetime.fromtimestamp(self.created_at, tz=timezone.utc).isoformat(),
            "expires_at": datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat(),
        }


# ============================================================================
# PROOF CACHE
# ============================================================================


class ProofCache:
    """
    Thread-safe result cache keyed by interpolated cache key.

    Each key maps to one of ``stripes`` locks, and the lookup counters live
    with their stripe, so get/put take exactly one stripe lock and keys in
    different stripes never contend. For the same key the last put wins.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 86400.0,
        stripes: int = 16,
        clock=time.time,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._stripes = max(1, stripes)
        self._locks = [threading.Lock() for _ in range(self._stripes)]
        self._shards: List[Dict[str, ProofCacheEntry]] = [{} for _ in range(self._stripes)]
        # Lookup counters per stripe, guarded by that stripe's lock
        self._lookup_hits = [0] * self._stripes
        self._lookup_misses = [0] * self._stripes

    def _shard(self, key: str) -> int:
        return hash(key) % self._stripes

    def get(self, key: str) -> Optional[ComponentResult]:
        """Return the cached result, or None on a miss or an expired entry."""
        result: Optional[ComponentResult] = None
        idx = self._shard(key)
        with self._locks[idx]:
            entry = self._shards[idx].get(key)
            if entry is not None and entry.is_expired(self._clock()):
                del self._shards[idx][key]
                logger.debug(f"Cache entry expired: {key}")
            elif entry is not None:
                entry.hits += 1
                result = entry.result

            if result is None:
                self._lookup_misses[idx] += 1
            else:
                self._lookup_hits[idx] += 1
        return result

    def put(self, key: str, result: ComponentResult, ttl_seconds: Optional[float] = None) -> None:
        """Store a result, overwriting any existing entry for the key."""
        entry = ProofCacheEntry(
            cache_key=key,
            result=result,
            created_at=self._clock(),
            ttl_seconds=ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds,
        )
        idx = self._shard(key)
        with self._locks[idx]:
            self._shards[idx][key] = entry
        logger.debug(f"Cached result for {result.component_id} under key: {key}")

    def get_entry(self, key: str) -> Optional[ProofCacheEntry]:
        """Inspect an entry without counting a hit."""
        idx = self._shard(key)
        with self._locks[idx]:
            return self._shards[idx].get(key)

    def invalidate(self, key: str) -> bool:
        idx = self._shard(key)
        with self._locks[idx]:
            return self._shards[idx].pop(key, None) is not None

    def clear(self) -> None:
        for idx in range(self._stripes):
            with self._locks[idx]:
                self._shards[idx].clear()
        logger.info("Cleared composed proof cache")

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        removed = 0
        for idx in range(self._stripes):
            with self._locks[idx]:
                expired = [k for k, e in self._shards[idx].items() if e.is_expired(now)]
                for key in expired:
                    del self._shards[idx][key]
                removed += len(expired)
        if removed:
            logger.info(f"Cleaned up {removed} expired cache entries")
        return removed

    def _entries(self) -> List[ProofCacheEntry]:
        entries: List[ProofCacheEntry] = []
        for idx in range(self._stripes):
            with self._locks[idx]:
                entries.extend(self._shards[idx].values())
        return entries

    def _lookup_counts(self) -> Tuple[int, int]:
        hits = misses = 0
        for idx in range(self._stripes):
            with self._locks[idx]:
                hits += self._lookup_hits[idx]
                misses += self._lookup_misses[idx]
        return hits, misses

    @property
    def size(self) -> int:
        return len(self._entries())

    def get_stats(self) -> Dict[str, Any]:
        entries = self._entries()
        lookups_hit, lookups_miss = self._lookup_counts()
        return {
            "size": len(entries),
            "hits": sum(e.hits for e in entries),
            "lookup_hits": lookups_hit,
            "lookup_misses": lookups_miss,
            "entries": [e.to_dict() for e in entries],
        }
