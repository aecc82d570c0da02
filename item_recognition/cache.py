"""
Content-addressed result cache.

Recognition results are keyed by the SHA-256 of the raw image bytes.
Each entry also remembers the RecognitionConfig it was computed under;
a lookup with a different config is a miss, so a per-call override can
never be answered with results filtered by another threshold.

Eviction is LRU by entry count, with an optional TTL on top.
"""

import os
import time
import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Optional, Sequence, Tuple

from .errors import CacheUnavailable

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = int(os.environ.get("RESULT_CACHE_SIZE", "128"))
DEFAULT_CACHE_TTL = float(os.environ.get("RESULT_CACHE_TTL_S", "0")) or None


class ContentHasher:
    """Deterministic digest of input bytes."""

    def digest(self, data: bytes) -> str:
        raise NotImplementedError


class Sha256Hasher(ContentHasher):

    def digest(self, data: bytes) -> str:
        try:
            return hashlib.sha256(data).hexdigest()
        except TypeError as e:
            raise CacheUnavailable(f"Cannot hash {type(data).__name__}: {e}") from e


class ResultCache:
    """
    Thread-safe LRU map from content hash to an ordered match tuple.

    Args:
        max_entries: Capacity; the least recently used entry is evicted first.
        ttl_seconds: Optional lifetime of an entry. None disables expiry.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(self, max_entries: int = DEFAULT_CACHE_SIZE,
                 ttl_seconds: Optional[float] = DEFAULT_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, Tuple[float, Any, tuple]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, config: Any = None) -> Optional[tuple]:
        """Cached matches for key, or None on a miss, expiry or config change."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            stored_at, stored_config, matches = entry
            if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            if stored_config != config:
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return matches

    def put(self, key: str, matches: Sequence, config: Any = None):
        with self._lock:
            self._entries[key] = (self._clock(), config, tuple(matches))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted[:12]}")

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
