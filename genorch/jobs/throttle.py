"""Time-windowed coalescing of bursty event streams."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class Throttle(Generic[T]):
  """Deliver at most one value per interval, always keeping the latest.

  The first value after a quiet period is delivered immediately. Values that
  arrive inside the window replace each other and the most recent one is
  delivered once the window elapses, so the final state is never dropped.
  Values matching ``urgent`` skip the window and discard anything pending.
  """

  def __init__(self, deliver: Callable[[T], None], *, interval_seconds: float, urgent: Callable[[T], bool] | None = None, loop: asyncio.AbstractEventLoop | None = None) -> None:
    self._deliver = deliver
    self._urgent = urgent
    self._interval = interval_seconds
    self._loop = loop
    self._last_delivery: float | None = None
    self._pending: T | None = None
    self._has_pending = False
    self._timer: asyncio.TimerHandle | None = None
    self._closed = False

  def _event_loop(self) -> asyncio.AbstractEventLoop:
    if self._loop is None:
      self._loop = asyncio.get_running_loop()
    return self._loop

  @property
  def has_pending(self) -> bool:
    return self._has_pending

  def push(self, value: T) -> None:
    """Offer a value for delivery."""
    if self._closed:
      return

    loop = self._event_loop()
    now = loop.time()
    if self._urgent is not None and self._urgent(value):
      self._cancel_pending()
      self._emit(value, now)
      return

    if self._timer is None and (self._last_delivery is None or now - self._last_delivery >= self._interval):
      self._emit(value, now)
      return

    self._pending = value
    self._has_pending = True
    if self._timer is None:
      # _last_delivery is set here: a timer only exists after a delivery.
      due = (self._last_delivery or now) + self._interval
      self._timer = loop.call_at(due, self._flush)

  def _flush(self) -> None:
    self._timer = None
    if self._closed or not self._has_pending:
      return
    value = self._pending
    self._pending = None
    self._has_pending = False
    self._emit(value, self._event_loop().time())  # type: ignore[arg-type]

  def _emit(self, value: T, now: float) -> None:
    self._last_delivery = now
    self._deliver(value)

  def _cancel_pending(self) -> None:
    self._pending = None
    self._has_pending = False
    if self._timer is not None:
      self._timer.cancel()
      self._timer = None

  def close(self) -> None:
    """Drop any pending value and stop delivering."""
    self._closed = True
    self._cancel_pending()
