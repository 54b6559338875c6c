"""Idempotency guard preventing duplicate submissions per target."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from genorch.jobs.cache import ContentCache
from genorch.jobs.errors import GenerationError
from genorch.jobs.models import GenerationTarget
from genorch.jobs.synchronizer import StatusSynchronizer, SyncState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cached:
  """A completed result is already cached for the target."""

  result_ref: str


@dataclass(frozen=True)
class AlreadyRunning:
  """A live synchronization exists; attach to it instead of resubmitting."""

  state: SyncState


@dataclass(frozen=True)
class Start:
  """The target was reserved for the caller, who must now submit."""

  state: SyncState


AcquireResult = Cached | AlreadyRunning | Start


class IdempotencyGuard:
  """Decides whether a generation request needs a new job.

  ``acquire`` never awaits: the reservation happens in the same event loop
  step as the checks, which keeps at most one job per target even when the
  same request arrives twice in a row.
  """

  def __init__(self, cache: ContentCache, synchronizer: StatusSynchronizer) -> None:
    self._cache = cache
    self._synchronizer = synchronizer

  def acquire(self, target: GenerationTarget, *, timeout_seconds: float) -> AcquireResult:
    cached = self._cache.get(target.cache_key)
    if cached is not None:
      logger.debug("Cache hit for target=%s", target)
      return Cached(result_ref=cached)

    state = self._synchronizer.get(target)
    if state is not None and not state.last_known_status.is_terminal:
      logger.info("Target %s already running (job_id=%s); attaching", target, state.job_id)
      return AlreadyRunning(state=state)

    return Start(state=self._synchronizer.reserve(target, timeout_seconds=timeout_seconds))

  def release(self, target: GenerationTarget, error: GenerationError) -> None:
    """Give up a reservation so the target can be requested again."""
    self._synchronizer.release(target, error)
