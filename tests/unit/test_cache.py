from __future__ import annotations

import logging

import pytest

from genorch.jobs.cache import CacheEntry, ContentCache
from genorch.storage.session_cache_store import SqlSessionCacheStore


class DictStore:
  """Durable tier stand-in with switchable failures."""

  def __init__(self) -> None:
    self.entries: dict[str, CacheEntry] = {}
    self.fail_writes = False
    self.fail_reads = False

  def load(self, key: str) -> CacheEntry | None:
    if self.fail_reads:
      raise OSError("disk unavailable")
    return self.entries.get(key)

  def save(self, entry: CacheEntry) -> None:
    if self.fail_writes:
      raise OSError("quota exceeded")
    self.entries[entry.key] = entry

  def delete(self, key: str) -> None:
    self.entries.pop(key, None)


class FakeClock:
  def __init__(self, now: float = 1000.0) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now


def test_memory_tier_serves_writes() -> None:
  cache = ContentCache()
  cache.set("image:s1:fp", "https://cdn.test/s1.png")
  assert cache.get("image:s1:fp") == "https://cdn.test/s1.png"
  assert cache.get("image:s2:fp") is None


def test_durable_hit_is_promoted_to_memory() -> None:
  store = DictStore()
  store.entries["k"] = CacheEntry(key="k", value="v")
  cache = ContentCache(store)

  assert cache.get("k") == "v"
  store.entries.clear()
  assert cache.get("k") == "v"


def test_expired_entries_are_evicted_from_both_tiers() -> None:
  clock = FakeClock()
  store = DictStore()
  cache = ContentCache(store, default_ttl_seconds=10, clock=clock)
  cache.set("k", "v")

  clock.now += 11
  assert cache.get("k") is None
  assert "k" not in store.entries


def test_durable_write_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
  store = DictStore()
  store.fail_writes = True
  cache = ContentCache(store)

  with caplog.at_level(logging.WARNING, logger="genorch.jobs.cache"):
    cache.set("k", "v")

  assert cache.get("k") == "v"
  assert "Durable cache write failed" in caplog.text


def test_durable_read_failure_is_a_miss() -> None:
  store = DictStore()
  store.fail_reads = True
  assert ContentCache(store).get("k") is None


def test_invalidate_clears_both_tiers() -> None:
  store = DictStore()
  cache = ContentCache(store)
  cache.set("k", "v")

  cache.invalidate("k")

  assert cache.get("k") is None
  assert store.entries == {}


def test_session_store_round_trip_and_purge(tmp_path) -> None:
  url = f"sqlite:///{tmp_path / 'cache.db'}"
  old = SqlSessionCacheStore(url, "session-old")
  old.save(CacheEntry(key="podcast_audio:l1:fp", value="https://cdn.test/l1.mp3"))
  old.close()

  current = SqlSessionCacheStore(url, "session-new")
  assert current.load("podcast_audio:l1:fp") is None

  current.save(CacheEntry(key="image:s1:fp", value="https://cdn.test/s1.png", expires_at=2000.0))
  current.save(CacheEntry(key="image:s1:fp", value="https://cdn.test/s1-v2.png", expires_at=2000.0))
  assert current.load("image:s1:fp") == CacheEntry(key="image:s1:fp", value="https://cdn.test/s1-v2.png", expires_at=2000.0)

  assert current.purge_other_sessions() == 1
  current.delete("image:s1:fp")
  assert current.load("image:s1:fp") is None
  current.close()


def test_cache_survives_restart_within_session(tmp_path) -> None:
  url = f"sqlite:///{tmp_path / 'cache.db'}"
  first = ContentCache(SqlSessionCacheStore(url, "s1"))
  first.set("step_content:st1:fp", "content-ref")

  restarted = ContentCache(SqlSessionCacheStore(url, "s1"))
  assert restarted.get("step_content:st1:fp") == "content-ref"
