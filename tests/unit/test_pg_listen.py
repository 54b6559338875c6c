from __future__ import annotations

import asyncio

import pytest

from genorch.notifications.contracts import ChangeEvent, ChannelState
from genorch.notifications.pg_listen import PostgresNotifyTransport, decode_notification, libpq_dsn


def test_decode_notification_payload() -> None:
  raw = '{"jobId": "job-1", "targetKind": "image", "targetId": "s1", "paramsFingerprint": "fp", "status": "completed", "resultRef": "https://cdn.test/s1.png", "error": null}'

  event = decode_notification(raw)

  assert event == ChangeEvent(target_id="s1", new_status="completed", result_ref="https://cdn.test/s1.png", error=None, job_id="job-1", target_kind="image", params_fingerprint="fp")


@pytest.mark.parametrize(
  ("dsn", "expected"),
  [
    ("postgresql+psycopg://u:p@db:5432/app", "postgresql://u:p@db:5432/app"),
    ("postgresql://u@db/app", "postgresql://u@db/app"),
    ("host=db dbname=app", "host=db dbname=app"),
  ],
)
def test_libpq_dsn_strips_driver(dsn: str, expected: str) -> None:
  assert libpq_dsn(dsn) == expected


@pytest.mark.anyio
async def test_subscribe_before_connection_reports_channel_error() -> None:
  transport = PostgresNotifyTransport("postgresql://localhost/none")
  states: list[ChannelState] = []

  transport.subscribe("image:s1", lambda event: None, states.append)
  await asyncio.sleep(0)

  assert states == [ChannelState.CHANNEL_ERROR]


@pytest.mark.anyio
async def test_dispatch_routes_by_scope_and_drops_garbage() -> None:
  transport = PostgresNotifyTransport("postgresql://localhost/none")
  received: list[ChangeEvent] = []
  other: list[ChangeEvent] = []
  unsubscribe = transport.subscribe("image:s1", received.append, lambda state: None)
  transport.subscribe("image:s2", other.append, lambda state: None)

  transport._dispatch('{"jobId": "j", "targetKind": "image", "targetId": "s1", "paramsFingerprint": "fp", "status": "running"}')
  transport._dispatch("not json")
  unsubscribe()
  transport._dispatch('{"jobId": "j", "targetKind": "image", "targetId": "s1", "paramsFingerprint": "fp", "status": "completed"}')

  assert [event.new_status for event in received] == ["running"]
  assert other == []


@pytest.mark.anyio
async def test_lost_connection_is_broadcast_to_subscribers() -> None:
  transport = PostgresNotifyTransport("postgresql://localhost/none")
  states: list[ChannelState] = []
  transport.subscribe("podcast_audio:l1", lambda event: None, states.append)
  await asyncio.sleep(0)
  states.clear()

  transport._connected = True
  transport._set_disconnected()

  assert states == [ChannelState.CHANNEL_ERROR]
  assert not transport.connected
