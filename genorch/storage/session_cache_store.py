"""Durable session-scoped cache tier stored through SQLAlchemy Core."""

from __future__ import annotations

import logging

import msgspec
from sqlalchemy import Column, Index, LargeBinary, MetaData, String, Table, create_engine, delete, select
from sqlalchemy.engine import Engine

from genorch.jobs.cache import CacheEntry, DurableCacheStore

logger = logging.getLogger(__name__)

_metadata = MetaData()

session_cache = Table(
  "session_cache",
  _metadata,
  Column("session_id", String, primary_key=True),
  Column("cache_key", String, primary_key=True),
  Column("entry", LargeBinary, nullable=False),
  Index("ix_session_cache_session", "session_id"),
)

_ENCODER = msgspec.json.Encoder()
_DECODER = msgspec.json.Decoder(CacheEntry)


class SqlSessionCacheStore(DurableCacheStore):
  """Keeps cache entries for one client session in a local database.

  Entries written under other session ids are stale by definition and are
  removed by :meth:`purge_other_sessions` at startup.
  """

  def __init__(self, url: str, session_id: str, *, engine: Engine | None = None) -> None:
    if not session_id:
      raise ValueError("session_id must be a non-empty string.")
    self._session_id = session_id
    self._engine = engine or create_engine(url, future=True)
    _metadata.create_all(self._engine)

  @property
  def session_id(self) -> str:
    return self._session_id

  def load(self, key: str) -> CacheEntry | None:
    stmt = select(session_cache.c.entry).where(session_cache.c.session_id == self._session_id, session_cache.c.cache_key == key)
    with self._engine.connect() as conn:
      blob = conn.execute(stmt).scalar_one_or_none()
    if blob is None:
      return None
    try:
      return _DECODER.decode(blob)
    except msgspec.DecodeError:
      logger.warning("Discarding undecodable cache entry key=%s", key)
      self.delete(key)
      return None

  def save(self, entry: CacheEntry) -> None:
    blob = _ENCODER.encode(entry)
    with self._engine.begin() as conn:
      conn.execute(delete(session_cache).where(session_cache.c.session_id == self._session_id, session_cache.c.cache_key == entry.key))
      conn.execute(session_cache.insert().values(session_id=self._session_id, cache_key=entry.key, entry=blob))

  def delete(self, key: str) -> None:
    with self._engine.begin() as conn:
      conn.execute(delete(session_cache).where(session_cache.c.session_id == self._session_id, session_cache.c.cache_key == key))

  def purge_other_sessions(self) -> int:
    """Drop entries left by earlier sessions; returns the number removed."""
    with self._engine.begin() as conn:
      result = conn.execute(delete(session_cache).where(session_cache.c.session_id != self._session_id))
    removed = result.rowcount or 0
    if removed:
      logger.info("Purged %d cache entries from earlier sessions", removed)
    return removed

  def close(self) -> None:
    self._engine.dispose()
