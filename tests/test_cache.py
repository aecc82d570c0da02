"""Tests for the content-addressed result cache."""

import pytest

from item_recognition.cache import ResultCache, Sha256Hasher
from item_recognition.config import RecognitionConfig
from item_recognition.errors import CacheUnavailable


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSha256Hasher:
    """Tests for content hashing."""

    def test_deterministic(self):
        hasher = Sha256Hasher()
        assert hasher.digest(b"abc") == hasher.digest(b"abc")
        assert hasher.digest(b"abc") != hasher.digest(b"abd")

    def test_known_digest(self):
        assert Sha256Hasher().digest(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_unhashable_input(self):
        with pytest.raises(CacheUnavailable):
            Sha256Hasher().digest("not bytes")


class TestResultCache:
    """Tests for LRU, TTL and config-aware lookups."""

    def test_miss_then_hit(self):
        cache = ResultCache(max_entries=4)
        assert cache.get("k") is None
        cache.put("k", ["a", "b"])
        assert cache.get("k") == ("a", "b")
        assert (cache.hits, cache.misses) == (1, 1)

    def test_lru_eviction(self):
        cache = ResultCache(max_entries=2)
        cache.put("a", [1])
        cache.put("b", [2])
        cache.get("a")
        cache.put("c", [3])
        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = ResultCache(max_entries=2, ttl_seconds=10, clock=clock)
        cache.put("k", [1])
        clock.now = 5.0
        assert cache.get("k") == (1,)
        clock.now = 11.0
        assert cache.get("k") is None
        assert "k" not in cache

    def test_config_mismatch_is_miss(self):
        cache = ResultCache()
        cache.put("k", [1], RecognitionConfig(confidence_threshold=0.6))
        assert cache.get("k", RecognitionConfig(confidence_threshold=0.8)) is None
        assert cache.get("k", RecognitionConfig(confidence_threshold=0.6)) == (1,)

    def test_stored_matches_are_immutable(self):
        cache = ResultCache()
        matches = [1, 2]
        cache.put("k", matches)
        matches.append(3)
        assert cache.get("k") == (1, 2)

    def test_clear(self):
        cache = ResultCache()
        cache.put("k", [1])
        cache.clear()
        assert len(cache) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)
