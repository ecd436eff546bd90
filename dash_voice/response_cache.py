"""
Exact-match response cache keyed by normalized utterance text.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from .interfaces.response_store import ResponseStoreInterface
from .utils.text import normalize_for_cache
from .utils.logging_config import get_logger


logger = get_logger("response_cache")


class InMemoryResponseStore(ResponseStoreInterface):
    """Process-lifetime store bounded by entry count (LRU) and TTL."""

    def __init__(self, max_entries: int = 256, ttl: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def put(self, key: str, value: str) -> None:
        self._entries[key] = (value, self._clock() + self.ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)


class ResponseCache:
    """
    Maps a normalized utterance to a previously generated response.

    Lookups are exact-match on normalized text, optionally namespaced by
    language. Values that are not non-empty strings are treated as misses
    and evicted.
    """

    def __init__(self, store: Optional[ResponseStoreInterface] = None, enabled: bool = True):
        self.store = store if store is not None else InMemoryResponseStore()
        self.enabled = enabled
        self._metrics = {'hits': 0, 'misses': 0, 'invalid': 0, 'stored': 0}

    @staticmethod
    def make_key(text: str, language: Optional[str] = None) -> str:
        normalized = normalize_for_cache(text)
        if not normalized or not language:
            return normalized
        return f"{language.lower()}|{normalized}"

    def lookup(self, text: str, language: Optional[str] = None) -> Optional[str]:
        """
        Look up a cached response.

        Args:
            text: Raw utterance text
            language: Optional language namespace (BCP-47)

        Returns:
            Cached response text, or None on a miss
        """
        if not self.enabled:
            return None
        key = self.make_key(text, language)
        if not key:
            return None

        value = self.store.get(key)
        if value is not None and (not isinstance(value, str) or not value.strip()):
            self._metrics['invalid'] += 1
            logger.warning(f"Evicting invalid cache entry for {key!r}")
            self.store.delete(key)
            value = None

        if value is None:
            self._metrics['misses'] += 1
            return None

        self._metrics['hits'] += 1
        logger.debug(f"Cache hit: {key!r}")
        return value

    def store_response(self, text: str, response: str, language: Optional[str] = None) -> bool:
        """Store a response. Returns False when the entry was not cacheable."""
        if not self.enabled or not isinstance(response, str) or not response.strip():
            return False
        key = self.make_key(text, language)
        if not key:
            return False
        self.store.put(key, response.strip())
        self._metrics['stored'] += 1
        return True

    def clear(self):
        self.store.clear()

    def get_metrics(self) -> Dict[str, Any]:
        """Get hit/miss metrics."""
        lookups = self._metrics['hits'] + self._metrics['misses']
        return {
            **self._metrics,
            'hit_rate': (self._metrics['hits'] / lookups) if lookups else 0.0,
        }
