"""
Tests for the exact-match response cache and its in-memory store.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dash_voice.response_cache import InMemoryResponseStore, ResponseCache

from conftest import FakeClock


class TestResponseCache:
    """Lookup, store and metrics."""

    def test_lookup_matches_normalized_text(self):
        cache = ResponseCache()
        assert cache.store_response("What is your name?", "I am Dash.")

        assert cache.lookup("what is your   name") == "I am Dash."
        assert cache.lookup("WHAT IS YOUR NAME!") == "I am Dash."
        assert cache.lookup("what is my name") is None

    def test_language_namespace(self):
        cache = ResponseCache()
        cache.store_response("Good morning", "Good morning to you.", language="en-ZA")

        assert cache.lookup("good morning", language="en-ZA") == "Good morning to you."
        assert cache.lookup("good morning", language="zu-ZA") is None
        assert cache.lookup("good morning") is None

    def test_make_key(self):
        assert ResponseCache.make_key("Hello?", "EN-za") == "en-za|hello"
        assert ResponseCache.make_key("Hello?") == "hello"
        assert ResponseCache.make_key("  ?  ", "en-ZA") == ""

    def test_empty_responses_are_not_stored(self):
        cache = ResponseCache()

        assert not cache.store_response("hello there", "   ")
        assert not cache.store_response("   ", "Something.")
        assert cache.get_metrics()['stored'] == 0

    def test_invalid_entries_are_evicted(self):
        store = InMemoryResponseStore()
        cache = ResponseCache(store)
        store.put(ResponseCache.make_key("hello there"), "   ")
        store.put(ResponseCache.make_key("bad value"), 42)

        assert cache.lookup("hello there") is None
        assert cache.lookup("bad value") is None
        assert cache.get_metrics()['invalid'] == 2
        assert len(store) == 0

    def test_disabled_cache(self):
        cache = ResponseCache(enabled=False)

        assert not cache.store_response("hello there", "Hi.")
        assert cache.lookup("hello there") is None

    def test_metrics(self):
        cache = ResponseCache()
        cache.store_response("one two three", "Four.")
        cache.lookup("one two three")
        cache.lookup("one two three")
        cache.lookup("five six seven")

        metrics = cache.get_metrics()
        assert metrics['hits'] == 2
        assert metrics['misses'] == 1
        assert metrics['stored'] == 1
        assert abs(metrics['hit_rate'] - 2 / 3) < 1e-9

    def test_clear(self):
        cache = ResponseCache()
        cache.store_response("hello there", "Hi.")
        cache.clear()

        assert cache.lookup("hello there") is None


class TestInMemoryResponseStore:
    """TTL and LRU bounds."""

    def test_entries_expire(self):
        clock = FakeClock()
        store = InMemoryResponseStore(ttl=10.0, clock=clock)
        cache = ResponseCache(store)
        cache.store_response("hello there", "Hi.")

        clock.advance(9.0)
        assert cache.lookup("hello there") == "Hi."

        clock.advance(2.0)
        assert cache.lookup("hello there") is None
        assert len(store) == 0

    def test_least_recently_used_is_evicted(self):
        store = InMemoryResponseStore(max_entries=2)
        store.put("a", "A")
        store.put("b", "B")
        assert store.get("a") == "A"

        store.put("c", "C")

        assert store.get("b") is None
        assert store.get("a") == "A"
        assert store.get("c") == "C"

    def test_purge_expired(self):
        clock = FakeClock()
        store = InMemoryResponseStore(ttl=5.0, clock=clock)
        store.put("a", "A")
        clock.advance(3.0)
        store.put("b", "B")
        clock.advance(3.0)

        assert store.purge_expired() == 1
        assert store.get("b") == "B"
