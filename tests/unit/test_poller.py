from __future__ import annotations

import asyncio

import pytest

from genorch.jobs.models import GenerationStatus, Observation, ObservationSource
from genorch.jobs.poller import PollFallbackLoop
from tests.fakes import InMemoryJobsRepo, make_target


@pytest.mark.anyio
async def test_poll_emits_until_terminal_then_stops() -> None:
  repo = InMemoryJobsRepo()
  target = make_target()
  await repo.create_job(target, {}, job_id="job-1", status=GenerationStatus.RUNNING)
  seen: list[Observation] = []

  handle = PollFallbackLoop(repo).start(target, "job-1", interval_seconds=0.01, timeout_seconds=1.0, on_status=seen.append)
  await asyncio.sleep(0.035)
  repo.set_status("job-1", GenerationStatus.SUCCEEDED, result_ref="https://cdn.test/img.png")
  await asyncio.wait_for(handle.wait(), 1.0)

  assert handle.done
  assert seen[-1].status == GenerationStatus.SUCCEEDED
  assert seen[-1].result_ref == "https://cdn.test/img.png"
  assert all(obs.source == ObservationSource.POLL for obs in seen)
  assert all(obs.status == GenerationStatus.RUNNING for obs in seen[:-1])


@pytest.mark.anyio
async def test_read_failures_do_not_stop_polling() -> None:
  repo = InMemoryJobsRepo()
  target = make_target()
  await repo.create_job(target, {}, job_id="job-1", status=GenerationStatus.FAILED, error="provider refused")
  repo.fail_reads = 2
  seen: list[Observation] = []

  handle = PollFallbackLoop(repo).start(target, "job-1", interval_seconds=0.01, timeout_seconds=1.0, on_status=seen.append)
  await asyncio.wait_for(handle.wait(), 1.0)

  assert repo.read_calls == 3
  assert [obs.status for obs in seen] == [GenerationStatus.FAILED]
  assert seen[0].error == "provider refused"


@pytest.mark.anyio
async def test_deadline_reports_timed_out() -> None:
  repo = InMemoryJobsRepo()
  target = make_target()
  seen: list[Observation] = []
  loop = asyncio.get_running_loop()
  started = loop.time()

  handle = PollFallbackLoop(repo).start(target, "missing-job", interval_seconds=0.02, timeout_seconds=0.1, on_status=seen.append)
  await asyncio.wait_for(handle.wait(), 1.0)

  assert [obs.status for obs in seen] == [GenerationStatus.TIMED_OUT]
  assert seen[0].job_id == "missing-job"
  assert loop.time() - started < 0.1 + 0.02 + 0.05


@pytest.mark.anyio
async def test_cancel_stops_without_status() -> None:
  repo = InMemoryJobsRepo()
  target = make_target()
  await repo.create_job(target, {}, job_id="job-1", status=GenerationStatus.QUEUED)
  seen: list[Observation] = []

  handle = PollFallbackLoop(repo).start(target, "job-1", interval_seconds=0.01, timeout_seconds=0.05, on_status=seen.append)
  handle.cancel()
  handle.cancel()
  await handle.wait()
  await asyncio.sleep(0.08)

  assert handle.cancelled
  assert seen == []


def test_rejects_non_positive_interval() -> None:
  with pytest.raises(ValueError):
    PollFallbackLoop(InMemoryJobsRepo()).start(make_target(), "job-1", interval_seconds=0, timeout_seconds=1, on_status=lambda _: None)
