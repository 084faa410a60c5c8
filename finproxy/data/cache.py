"""
In-process cache for provider responses
Memory-resident key/value store with per-entry TTL and lazy expiry
"""

import copy
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from ..utils import get_logger
from .base import DataKind

logger = get_logger(__name__)

@dataclass(frozen=True)
class CacheEntry:
    """Represents a cached value; replaced wholesale, never mutated"""
    key: str
    value: Any
    stored_at: float
    ttl_seconds: float

    def age_seconds(self, now: float) -> float:
        """Get age of cache entry in seconds"""
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        """An entry is readable only while its age is strictly below the TTL"""
        return self.age_seconds(now) >= self.ttl_seconds

def _normalize_param(name: str, value: Any) -> Any:
    if name == "modules" and isinstance(value, (list, tuple, set, frozenset)):
        return sorted({str(v) for v in value})
    if name == "symbol" and isinstance(value, str):
        return value.strip().upper()
    if name == "symbols" and isinstance(value, (list, tuple)):
        return [str(v).strip().upper() for v in value]
    if name in ("region",) and isinstance(value, str):
        return value.upper()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value

def make_cache_key(kind: Union[DataKind, str], **params: Any) -> str:
    """
    Generate a deterministic cache key from a data kind and its parameters

    Module lists are de-duplicated and sorted, symbols upper-cased and None
    parameters dropped, so semantically equal requests share one key.
    """
    prefix = kind.value if isinstance(kind, DataKind) else str(kind)
    normalized = {
        name: _normalize_param(name, value)
        for name, value in params.items()
        if value is not None
    }
    param_str = json.dumps(normalized, sort_keys=True, default=str)
    raw_key = f"{prefix}:{param_str}"

    # Use first 16 chars of hash for readability
    hash_key = hashlib.md5(raw_key.encode()).hexdigest()[:16]

    # Include kind for clarity
    return f"{prefix}_{hash_key}"

class CacheStore:
    """
    Memory cache with TTL support

    Reads past expiry evict the entry and report a miss; there is no
    background sweep. `get_entry` is the one read that ignores expiry: it
    lets callers fall back to the last known value when a refresh fails.
    """

    def __init__(self, default_ttl: float = 60, clock: Callable[[], float] = time.time):
        self.default_ttl = default_ttl
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

        logger.debug(f"Initialized cache store (default TTL {default_ttl}s)")

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            del self._entries[key]
            logger.debug(f"Cache expired for {key}")
            return None
        return entry

    def has(self, key: str) -> bool:
        """True if a live entry exists"""
        return self._live_entry(key) is not None

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a value from cache

        Returns:
            A copy of the cached value if present and not expired, None otherwise
        """
        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            logger.debug(f"Cache miss for {key}")
            return None

        self._hits += 1
        logger.debug(f"Cache hit for {key} (age: {entry.age_seconds(self.clock()):.1f}s)")
        return copy.deepcopy(entry.value)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Last stored entry for key, expired or not; never evicts

        The stored entry itself is returned. Copy its value before mutating it.
        """
        return self._entries.get(key)

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None):
        """
        Store a value, replacing any previous entry

        Args:
            key: Cache key (see make_cache_key)
            value: Data to cache; a deep copy is stored
            ttl_seconds: Time to live in seconds (default: store default)
        """
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(
            key=key,
            value=copy.deepcopy(value),
            stored_at=self.clock(),
            ttl_seconds=ttl
        )
        logger.debug(f"Cached {key} with TTL {ttl}s")

    def delete(self, key: str):
        """Remove an entry if present"""
        if self._entries.pop(key, None) is not None:
            logger.debug(f"Invalidated {key}")

    def clear(self, kind: Optional[Union[DataKind, str]] = None):
        """
        Clear cache entries

        Args:
            kind: Clear only this kind's entries (None = all)
        """
        if kind is None:
            self._entries.clear()
            logger.info("Cleared all cache")
            return

        prefix = (kind.value if isinstance(kind, DataKind) else kind) + "_"
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]
        logger.info(f"Cleared {prefix.rstrip('_')} cache")

    def cleanup_expired(self) -> int:
        """Remove all expired cache entries"""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        now = self.clock()
        expired_entries = sum(1 for e in self._entries.values() if e.is_expired(now))
        kinds = sorted({k.rsplit("_", 1)[0] for k in self._entries})

        return {
            'total_entries': len(self._entries),
            'expired_entries': expired_entries,
            'active_entries': len(self._entries) - expired_entries,
            'hits': self._hits,
            'misses': self._misses,
            'kinds': kinds
        }

    def __len__(self) -> int:
        return len(self._entries)
