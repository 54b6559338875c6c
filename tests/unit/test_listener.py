from __future__ import annotations

import asyncio

import pytest

from genorch.jobs.listener import PushListener
from genorch.jobs.models import GenerationStatus, Observation, ObservationSource
from genorch.notifications.contracts import ChannelState
from genorch.notifications.pg_listen import PostgresNotifyTransport
from tests.fakes import FakeTransport, make_target


class Recorder:
  def __init__(self) -> None:
    self.observations: list[Observation] = []
    self.degraded = 0

  def on_change(self, observation: Observation) -> None:
    self.observations.append(observation)

  def on_degraded(self) -> None:
    self.degraded += 1


@pytest.mark.anyio
async def test_events_become_throttled_push_observations() -> None:
  transport = FakeTransport()
  target = make_target("lesson-1")
  recorder = Recorder()
  PushListener(transport, throttle_seconds=0.05).listen(target, recorder.on_change, recorder.on_degraded)

  transport.emit(target, "PROCESSING", job_id="job-1")
  transport.emit(target, "PROCESSING", job_id="job-1")
  transport.emit(target, "COMPLETED", job_id="job-1", result_ref="https://cdn.test/a.mp3")
  await asyncio.sleep(0.12)

  assert [obs.status for obs in recorder.observations] == [GenerationStatus.RUNNING, GenerationStatus.SUCCEEDED]
  assert recorder.observations[-1].result_ref == "https://cdn.test/a.mp3"
  assert all(obs.source == ObservationSource.PUSH for obs in recorder.observations)


@pytest.mark.anyio
async def test_events_for_other_parameters_or_unknown_status_are_ignored() -> None:
  transport = FakeTransport()
  target = make_target("lesson-1", voice="nova")
  other = make_target("lesson-1", voice="echo")
  recorder = Recorder()
  PushListener(transport, throttle_seconds=0.0).listen(target, recorder.on_change, recorder.on_degraded)

  # Same scope, different parameter fingerprint.
  transport.emit(other, "completed", result_ref="x")
  transport.emit(target, "paused")

  assert recorder.observations == []


@pytest.mark.anyio
async def test_channel_error_degrades_and_reconnects_once() -> None:
  transport = FakeTransport()
  target = make_target()
  recorder = Recorder()
  handle = PushListener(transport, throttle_seconds=0.0, reconnect_attempts=1, reconnect_delay_seconds=0.0).listen(target, recorder.on_change, recorder.on_degraded)
  await asyncio.sleep(0)

  transport.report(target, ChannelState.CHANNEL_ERROR)
  assert handle.degraded
  assert recorder.degraded == 1
  assert transport.active(target.scope) == 0

  await asyncio.sleep(0.01)
  assert transport.subscribe_calls == 2
  assert transport.active(target.scope) == 1
  assert not handle.degraded

  # The budget is spent; a second failure leaves the target on polling alone.
  transport.report(target, ChannelState.CLOSED)
  await asyncio.sleep(0.01)
  assert recorder.degraded == 2
  assert transport.subscribe_calls == 2
  assert transport.active(target.scope) == 0


@pytest.mark.anyio
async def test_subscribe_failure_counts_as_channel_error() -> None:
  transport = FakeTransport()
  transport.fail_subscribe = True
  recorder = Recorder()
  handle = PushListener(transport, reconnect_attempts=0).listen(make_target(), recorder.on_change, recorder.on_degraded)

  assert handle.degraded
  assert recorder.degraded == 1


@pytest.mark.anyio
async def test_cancel_unsubscribes_and_drops_pending_events() -> None:
  transport = FakeTransport()
  target = make_target()
  recorder = Recorder()
  handle = PushListener(transport, throttle_seconds=0.05).listen(target, recorder.on_change, recorder.on_degraded)

  transport.emit(target, "running", job_id="job-1")
  transport.emit(target, "completed", job_id="job-1", result_ref="ref")
  handle.cancel()
  handle.cancel()
  await asyncio.sleep(0.1)

  assert [obs.status for obs in recorder.observations] == [GenerationStatus.RUNNING]
  assert transport.active(target.scope) == 0
  assert transport.unsubscribe_calls == 1


@pytest.mark.anyio
async def test_terminal_event_survives_stale_event_inside_window() -> None:
  transport = FakeTransport()
  target = make_target("lesson-3")
  recorder = Recorder()
  PushListener(transport, throttle_seconds=0.3).listen(target, recorder.on_change, recorder.on_degraded)

  transport.emit(target, "running", job_id="job-1")
  transport.emit(target, "succeeded", job_id="job-1", result_ref="blob-123")
  transport.emit(target, "running", job_id="job-1")

  assert [obs.status for obs in recorder.observations] == [GenerationStatus.RUNNING, GenerationStatus.SUCCEEDED]
  assert recorder.observations[-1].result_ref == "blob-123"


@pytest.mark.anyio
async def test_reconnect_waits_for_postgres_channel_to_return() -> None:
  transport = PostgresNotifyTransport("postgresql://localhost/none")
  target = make_target("lesson-4")
  recorder = Recorder()
  handle = PushListener(transport, throttle_seconds=0.0, reconnect_attempts=1, reconnect_delay_seconds=0.1).listen(target, recorder.on_change, recorder.on_degraded)

  # Not connected yet: the first subscription is refused.
  for _ in range(5):
    await asyncio.sleep(0)
  assert handle.degraded
  assert recorder.degraded == 1

  transport._connected = True
  await asyncio.sleep(0.2)
  assert not handle.degraded

  payload = f'{{"jobId": "job-1", "targetKind": "{target.target_kind.value}", "targetId": "{target.target_id}", "paramsFingerprint": "{target.params_fingerprint}", "status": "succeeded", "resultRef": "https://cdn.test/l4.mp3"}}'
  transport._dispatch(payload)

  assert [obs.status for obs in recorder.observations] == [GenerationStatus.SUCCEEDED]
  assert recorder.observations[0].result_ref == "https://cdn.test/l4.mp3"
  handle.cancel()


@pytest.mark.anyio
async def test_cancel_stops_a_scheduled_reconnect() -> None:
  transport = FakeTransport(initial_state=ChannelState.CHANNEL_ERROR)
  target = make_target()
  recorder = Recorder()
  handle = PushListener(transport, reconnect_attempts=1, reconnect_delay_seconds=0.05).listen(target, recorder.on_change, recorder.on_degraded)
  await asyncio.sleep(0)

  handle.cancel()
  await asyncio.sleep(0.1)

  assert transport.subscribe_calls == 1
  assert transport.active(target.scope) == 0
