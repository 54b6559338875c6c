"""Two-tier content cache for completed generation results."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from genorch.jobs.errors import CacheWriteFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
  """Cached result reference for one target key."""

  key: str
  value: str
  expires_at: float | None = None

  def is_expired(self, now: float) -> bool:
    return self.expires_at is not None and self.expires_at <= now


class DurableCacheStore(Protocol):
  """Session-scoped durable tier (survives restarts within one session)."""

  def load(self, key: str) -> CacheEntry | None:
    """Return the stored entry for ``key`` in the active session."""

  def save(self, entry: CacheEntry) -> None:
    """Persist an entry for the active session."""

  def delete(self, key: str) -> None:
    """Remove an entry from the active session."""


class ContentCache:
  """Memory tier in front of an optional durable session tier.

  Reads check memory first, then the durable tier, promoting durable hits.
  Writes land in memory synchronously; durable writes are best-effort.
  """

  def __init__(self, durable: DurableCacheStore | None = None, *, default_ttl_seconds: float | None = None, clock: Callable[[], float] = time.time) -> None:
    self._memory: dict[str, CacheEntry] = {}
    self._durable = durable
    self._default_ttl = default_ttl_seconds
    self._clock = clock

  def get(self, key: str) -> str | None:
    now = self._clock()
    entry = self._memory.get(key)
    if entry is not None:
      if not entry.is_expired(now):
        return entry.value
      del self._memory[key]

    if self._durable is None:
      return None

    try:
      entry = self._durable.load(key)
    except Exception:  # noqa: BLE001
      logger.warning("Durable cache read failed for key=%s", key, exc_info=True)
      return None

    if entry is None:
      return None
    if entry.is_expired(now):
      self._delete_durable(key)
      return None

    # Promote durable hits so later reads stay in memory.
    self._memory[key] = entry
    return entry.value

  def set(self, key: str, value: str, ttl: float | None = None) -> None:
    ttl_seconds = ttl if ttl is not None else self._default_ttl
    expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
    entry = CacheEntry(key=key, value=value, expires_at=expires_at)
    self._memory[key] = entry

    if self._durable is None:
      return
    try:
      self._durable.save(entry)
    except Exception as exc:  # noqa: BLE001
      failure = CacheWriteFailure(f"Durable cache write failed for key={key}: {exc}")
      logger.warning("%s", failure, exc_info=True)

  def invalidate(self, key: str) -> None:
    self._memory.pop(key, None)
    self._delete_durable(key)

  def _delete_durable(self, key: str) -> None:
    if self._durable is None:
      return
    try:
      self._durable.delete(key)
    except Exception:  # noqa: BLE001
      logger.warning("Durable cache delete failed for key=%s", key, exc_info=True)
