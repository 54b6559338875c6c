from __future__ import annotations

from genorch.jobs.cache import ContentCache
from genorch.jobs.errors import SubmissionError
from genorch.jobs.guard import AlreadyRunning, Cached, IdempotencyGuard, Start
from genorch.jobs.synchronizer import StatusSynchronizer
from tests.fakes import make_target


def _guard() -> tuple[IdempotencyGuard, ContentCache, StatusSynchronizer]:
  cache = ContentCache()
  sync = StatusSynchronizer(cache)
  return IdempotencyGuard(cache, sync), cache, sync


def test_first_acquire_reserves_then_attaches() -> None:
  guard, _, sync = _guard()
  target = make_target()

  first = guard.acquire(target, timeout_seconds=60)
  second = guard.acquire(target, timeout_seconds=60)

  assert isinstance(first, Start)
  assert isinstance(second, AlreadyRunning)
  assert second.state is first.state
  assert sync.is_active(target)


def test_cache_hit_wins_over_everything() -> None:
  guard, cache, sync = _guard()
  target = make_target()
  cache.set(target.cache_key, "ref")

  outcome = guard.acquire(target, timeout_seconds=60)

  assert outcome == Cached(result_ref="ref")
  assert sync.get(target) is None


def test_release_allows_a_fresh_start() -> None:
  guard, _, _ = _guard()
  target = make_target()
  first = guard.acquire(target, timeout_seconds=60)

  guard.release(target, SubmissionError("worker down"))
  retry = guard.acquire(target, timeout_seconds=60)

  assert isinstance(retry, Start)
  assert retry.state is not first.state
  assert retry.state.attempt_count == 2


def test_targets_with_different_parameters_are_independent() -> None:
  guard, _, _ = _guard()

  assert isinstance(guard.acquire(make_target("l1", voice="nova"), timeout_seconds=60), Start)
  assert isinstance(guard.acquire(make_target("l1", voice="echo"), timeout_seconds=60), Start)
