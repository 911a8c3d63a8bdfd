"""Tests for the TTL artifact cache."""

from __future__ import annotations

import pytest

from cypherscan.scanner.cache import ArtifactCache


def test_hit_within_ttl_returns_same_payload(cache, clock):
    payload = ("a", "b")
    cache.set("k", payload, ttl=60)
    clock.advance(60)

    assert cache.get("k") is payload


def test_entry_gone_after_ttl(cache, clock):
    cache.set("k", "v", ttl=60)
    clock.advance(60.5)

    assert cache.get("k") is None
    assert cache.has("k") is False
    assert len(cache) == 0


def test_default_ttl_applies_when_none_given(clock):
    cache = ArtifactCache(default_ttl=10, clock=clock)
    cache.set("k", "v")
    clock.advance(11)

    assert cache.get("k") is None


def test_capacity_evicts_least_used(clock):
    cache = ArtifactCache(max_entries=2, clock=clock)
    cache.set("a", 1)
    clock.advance(1)
    cache.set("b", 2)
    cache.get("a")

    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert cache.stats()["evictions"] == 1


def test_eviction_tie_goes_to_oldest(clock):
    cache = ArtifactCache(max_entries=2, clock=clock)
    cache.set("a", 1)
    clock.advance(1)
    cache.set("b", 2)
    clock.advance(1)

    cache.set("c", 3)

    assert not cache.has("a")
    assert cache.has("b") and cache.has("c")


def test_overwriting_existing_key_does_not_evict(clock):
    cache = ArtifactCache(max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("b", 20)

    assert len(cache) == 2
    assert cache.get("a") == 1
    assert cache.get("b") == 20


def test_sweep_removes_only_expired(cache, clock):
    cache.set("short", 1, ttl=5)
    cache.set("long", 2, ttl=500)
    clock.advance(10)

    assert cache.sweep_expired() == 1
    assert len(cache) == 1
    assert cache.get("long") == 2


def test_get_or_set_computes_once(cache):
    calls = []

    def compute():
        calls.append(1)
        return ("file",)

    first = cache.get_or_set("k", compute)
    second = cache.get_or_set("k", compute)

    assert first == second == ("file",)
    assert len(calls) == 1


def test_get_or_set_does_not_cache_failures(cache):
    def boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        cache.get_or_set("k", boom)

    assert cache.has("k") is False
    assert cache.get_or_set("k", lambda: "ok") == "ok"


def test_stats_track_hits_and_misses(cache):
    cache.set("k", "v")
    cache.get("k")
    cache.get("k")
    cache.get("missing")

    stats = cache.stats()
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["size"] == 1
    assert stats["maxSize"] == 100
    assert stats["hitRate"] == round(2 / 3 * 100, 2)


def test_delete_and_clear(cache):
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.clear()
    assert len(cache) == 0


def test_start_and_stop_background_sweep(clock):
    cache = ArtifactCache(sweep_interval=60, clock=clock)
    cache.start()
    try:
        assert cache.running
        cache.start()
        assert cache.running
    finally:
        cache.stop()
    assert not cache.running


def test_make_key_keeps_case():
    assert ArtifactCache.make_key("github", "acme/vault", " Contracts/Token ") == "github:acme/vault:Contracts/Token"
    assert ArtifactCache.make_key("github", "acme/vault", None) == "github:acme/vault:"


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        ArtifactCache(max_entries=0)
