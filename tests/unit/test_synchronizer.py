from __future__ import annotations

import time

import pytest

from genorch.jobs.cache import ContentCache
from genorch.jobs.errors import JobFailed, JobTimedOut, SubmissionError
from genorch.jobs.models import GenerationStatus, Observation, ObservationSource, StatusChange
from genorch.jobs import synchronizer as synchronizer_module
from genorch.jobs.synchronizer import StatusSynchronizer
from tests.fakes import make_target


def _obs(status: GenerationStatus, source: ObservationSource = ObservationSource.PUSH, *, job_id: str | None = "job-1", result_ref: str | None = None, error: str | None = None) -> Observation:
  return Observation(status=status, source=source, observed_at=time.time(), job_id=job_id, result_ref=result_ref, error=error)


def _running_target(sync: StatusSynchronizer, target_id: str = "t1"):
  target = make_target(target_id)
  state = sync.reserve(target, timeout_seconds=60)
  sync.bind_job(state, "job-1")
  return target, state


def test_terminal_wins_over_late_non_terminal_signals() -> None:
  cache = ContentCache()
  sync = StatusSynchronizer(cache)
  target, _ = _running_target(sync)
  subscription = sync.attach(target)
  changes: list[StatusChange] = []
  subscription.on_status_change(changes.append)

  sync.observe(target, _obs(GenerationStatus.SUCCEEDED, result_ref="ref-1"))
  sync.observe(target, _obs(GenerationStatus.RUNNING, ObservationSource.POLL))
  sync.observe(target, _obs(GenerationStatus.FAILED, ObservationSource.POLL, error="late"))

  assert [change.status for change in changes] == [GenerationStatus.SUCCEEDED]
  assert subscription.current_status() == GenerationStatus.SUCCEEDED
  assert cache.get(target.cache_key) == "ref-1"
  assert sync.get(target) is None


def test_duplicate_and_regressing_statuses_are_not_redelivered() -> None:
  sync = StatusSynchronizer(ContentCache())
  target, _ = _running_target(sync)
  changes: list[StatusChange] = []
  sync.attach(target).on_status_change(changes.append)

  sync.observe(target, _obs(GenerationStatus.QUEUED))
  sync.observe(target, _obs(GenerationStatus.RUNNING))
  sync.observe(target, _obs(GenerationStatus.RUNNING, ObservationSource.POLL))
  sync.observe(target, _obs(GenerationStatus.QUEUED, ObservationSource.POLL))

  assert [change.status for change in changes] == [GenerationStatus.RUNNING]


def test_observations_for_another_job_are_discarded() -> None:
  sync = StatusSynchronizer(ContentCache())
  target, _ = _running_target(sync)
  changes: list[StatusChange] = []
  sync.attach(target).on_status_change(changes.append)

  sync.observe(target, _obs(GenerationStatus.SUCCEEDED, job_id="job-old", result_ref="stale"))

  assert changes == []
  assert sync.is_active(target)


def test_failed_and_timed_out_carry_errors() -> None:
  timed_out: list[tuple] = []
  sync = StatusSynchronizer(ContentCache(), on_timed_out=lambda target, job_id: timed_out.append((target, job_id)))
  failing, _ = _running_target(sync, "a")
  slow, _ = _running_target(sync, "b")
  failing_sub = sync.attach(failing)
  slow_sub = sync.attach(slow)

  sync.observe(failing, _obs(GenerationStatus.FAILED, error="provider refused"))
  sync.observe(slow, _obs(GenerationStatus.TIMED_OUT, ObservationSource.POLL))

  assert isinstance(failing_sub.last_change.error, JobFailed)
  assert "provider refused" in str(failing_sub.last_change.error)
  assert isinstance(slow_sub.last_change.error, JobTimedOut)
  assert timed_out == [(slow, "job-1")]


def test_succeeded_without_reference_falls_back_to_job_id() -> None:
  cache = ContentCache()
  sync = StatusSynchronizer(cache)
  target, _ = _running_target(sync)

  sync.observe(target, _obs(GenerationStatus.SUCCEEDED))

  assert cache.get(target.cache_key) == "job-1"


def test_release_fails_attached_callers() -> None:
  sync = StatusSynchronizer(ContentCache())
  target = make_target()
  sync.reserve(target, timeout_seconds=60)
  subscription = sync.attach(target)

  sync.release(target, SubmissionError("worker down"))

  assert subscription.current_status() == GenerationStatus.FAILED
  assert isinstance(subscription.last_change.error, SubmissionError)
  assert sync.get(target) is None


def test_last_subscriber_leaving_cancels_target() -> None:
  sync = StatusSynchronizer(ContentCache())
  target, _ = _running_target(sync)
  first = sync.attach(target)
  second = sync.attach(target)

  first.cancel()
  assert sync.is_active(target)

  second.cancel()
  assert sync.get(target) is None
  assert second.cancelled


def test_terminal_state_is_replayed_to_late_callbacks() -> None:
  sync = StatusSynchronizer(ContentCache())
  target, _ = _running_target(sync)
  subscription = sync.attach(target)
  sync.observe(target, _obs(GenerationStatus.SUCCEEDED, result_ref="ref"))

  late: list[StatusChange] = []
  subscription.on_status_change(late.append)

  assert [change.result_ref for change in late] == ["ref"]


def test_callback_errors_do_not_break_delivery() -> None:
  sync = StatusSynchronizer(ContentCache())
  target, _ = _running_target(sync)
  subscription = sync.attach(target)
  seen: list[StatusChange] = []

  def _boom(change: StatusChange) -> None:
    raise RuntimeError("subscriber bug")

  subscription.on_status_change(_boom)
  subscription.on_status_change(seen.append)
  sync.observe(target, _obs(GenerationStatus.RUNNING))

  assert [change.status for change in seen] == [GenerationStatus.RUNNING]


def test_reserve_twice_is_rejected() -> None:
  sync = StatusSynchronizer(ContentCache())
  target = make_target()
  sync.reserve(target, timeout_seconds=60)
  with pytest.raises(RuntimeError):
    sync.reserve(target, timeout_seconds=60)


def test_attempt_counters_are_pruned(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setattr(synchronizer_module, "_MAX_TRACKED_ATTEMPTS", 2)
  sync = StatusSynchronizer(ContentCache())

  done, _ = _running_target(sync, "done")
  sync.observe(done, _obs(GenerationStatus.SUCCEEDED, result_ref="ref"))
  cancelled, _ = _running_target(sync, "cancelled")
  sync.cancel(cancelled)
  assert sync._attempts == {}

  failed, _ = _running_target(sync, "failed")
  sync.observe(failed, _obs(GenerationStatus.FAILED, error="boom"))
  assert sync.reserve(failed, timeout_seconds=60).attempt_count == 2

  # Older counters fall off once the bound is reached.
  for target_id in ("x", "y"):
    _running_target(sync, target_id)
  assert failed not in sync._attempts
  assert len(sync._attempts) == 2
