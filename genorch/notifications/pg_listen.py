"""Change-notification transport backed by Postgres LISTEN/NOTIFY."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

import msgspec
import psycopg
from psycopg import sql

from genorch.notifications.contracts import ChangeEvent, ChangeHandler, ChangeTransport, ChannelState, StateHandler, Unsubscribe

logger = logging.getLogger(__name__)


class NotifyPayload(msgspec.Struct, rename="camel"):
  """JSON body emitted by the generation_jobs trigger."""

  job_id: str
  target_kind: str
  target_id: str
  params_fingerprint: str
  status: str
  result_ref: str | None = None
  error: str | None = None


_PAYLOAD_DECODER = msgspec.json.Decoder(NotifyPayload)


def decode_notification(raw: str | bytes) -> ChangeEvent:
  """Decode a NOTIFY payload into a change event."""
  payload = _PAYLOAD_DECODER.decode(raw)
  return ChangeEvent(
    target_id=payload.target_id,
    new_status=payload.status,
    result_ref=payload.result_ref,
    error=payload.error,
    job_id=payload.job_id,
    target_kind=payload.target_kind,
    params_fingerprint=payload.params_fingerprint,
  )


def libpq_dsn(dsn: str) -> str:
  """Strip a SQLAlchemy driver suffix so psycopg accepts the DSN."""
  scheme, sep, rest = dsn.partition("://")
  if not sep:
    return dsn
  return f"{scheme.split('+', 1)[0]}://{rest}"


class _Subscriber:
  __slots__ = ("handler", "on_state")

  def __init__(self, handler: ChangeHandler, on_state: StateHandler) -> None:
    self.handler = handler
    self.on_state = on_state


class PostgresNotifyTransport(ChangeTransport):
  """Fans NOTIFY payloads on one channel out to target-scoped subscribers.

  A single background connection listens for every scope. When it drops,
  every subscriber is told ``channel_error`` and the transport keeps
  reconnecting on its own schedule.
  """

  def __init__(self, dsn: str, *, channel: str = "generation_jobs", connect_timeout: int = 5, reconnect_delay_seconds: float = 5.0) -> None:
    self._dsn = libpq_dsn(dsn)
    self._channel = channel
    self._connect_timeout = connect_timeout
    self._reconnect_delay = reconnect_delay_seconds
    self._subscribers: dict[str, list[_Subscriber]] = defaultdict(list)
    self._connected = False
    self._task: asyncio.Task[None] | None = None
    self._ready: asyncio.Event | None = None

  @property
  def connected(self) -> bool:
    return self._connected

  async def start(self, *, wait_seconds: float | None = None) -> None:
    """Start the listener task, optionally waiting for the first connection."""
    if self._task is None:
      self._ready = asyncio.Event()
      self._task = asyncio.create_task(self._run(), name=f"pg-listen:{self._channel}")
    if wait_seconds is not None and self._ready is not None:
      try:
        await asyncio.wait_for(self._ready.wait(), wait_seconds)
      except TimeoutError:
        logger.warning("LISTEN connection not ready after %.1fs; push updates degraded", wait_seconds)

  async def close(self) -> None:
    task, self._task = self._task, None
    if task is None:
      return
    task.cancel()
    try:
      await task
    except asyncio.CancelledError:
      pass
    self._connected = False

  def subscribe(self, scope: str, handler: ChangeHandler, on_state: StateHandler) -> Unsubscribe:
    subscriber = _Subscriber(handler, on_state)
    self._subscribers[scope].append(subscriber)
    state = ChannelState.SUBSCRIBED if self._connected else ChannelState.CHANNEL_ERROR
    asyncio.get_running_loop().call_soon(self._report, subscriber, state)

    def _unsubscribe() -> None:
      subscribers = self._subscribers.get(scope)
      if subscribers and subscriber in subscribers:
        subscribers.remove(subscriber)
        if not subscribers:
          del self._subscribers[scope]

    return _unsubscribe

  def _report(self, subscriber: _Subscriber, state: ChannelState) -> None:
    try:
      subscriber.on_state(state)
    except Exception:  # noqa: BLE001
      logger.exception("Subscriber state handler raised for state=%s", state.value)

  def _broadcast_state(self, state: ChannelState) -> None:
    for subscribers in list(self._subscribers.values()):
      for subscriber in list(subscribers):
        self._report(subscriber, state)

  def _dispatch(self, raw: str) -> None:
    try:
      event = decode_notification(raw)
    except msgspec.DecodeError:
      logger.warning("Dropping malformed notification on channel=%s", self._channel, exc_info=True)
      return

    scope = f"{event.target_kind}:{event.target_id}"
    for subscriber in list(self._subscribers.get(scope, ())):
      try:
        subscriber.handler(event)
      except Exception:  # noqa: BLE001
        logger.exception("Change handler raised for scope=%s", scope)

  async def _run(self) -> None:
    while True:
      try:
        await self._listen_once()
      except asyncio.CancelledError:
        raise
      except (psycopg.Error, OSError) as exc:
        logger.warning("LISTEN connection on channel=%s failed: %s", self._channel, exc)
      self._set_disconnected()
      await asyncio.sleep(self._reconnect_delay)

  async def _listen_once(self) -> None:
    async with await psycopg.AsyncConnection.connect(self._dsn, autocommit=True, connect_timeout=self._connect_timeout) as conn:
      await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self._channel)))
      self._connected = True
      if self._ready is not None:
        self._ready.set()
      logger.info("Listening for job changes on channel=%s", self._channel)
      self._broadcast_state(ChannelState.SUBSCRIBED)
      async for notify in conn.notifies():
        self._dispatch(notify.payload)

  def _set_disconnected(self) -> None:
    was_connected = self._connected
    self._connected = False
    if was_connected:
      self._broadcast_state(ChannelState.CHANNEL_ERROR)
