"""Push listener that forwards throttled job change events."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from genorch.jobs.models import GenerationStatus, GenerationTarget, Observation, ObservationSource
from genorch.jobs.throttle import Throttle
from genorch.notifications.contracts import ChangeEvent, ChangeTransport, ChannelState, Unsubscribe

logger = logging.getLogger(__name__)


class ListenerHandle:
  """Cancellable subscription for a single target."""

  def __init__(self, *, target: GenerationTarget, transport: ChangeTransport, on_change: Callable[[Observation], None], on_degraded: Callable[[], None], throttle_seconds: float, reconnect_attempts: int, reconnect_delay_seconds: float) -> None:
    self.target = target
    self._transport = transport
    self._on_degraded = on_degraded
    self._reconnects_left = reconnect_attempts
    self._reconnect_delay = reconnect_delay_seconds
    # Terminal statuses bypass the window so a stale event cannot displace them.
    self._throttle: Throttle[Observation] = Throttle(on_change, interval_seconds=throttle_seconds, urgent=_is_terminal)
    self._unsubscribe: Unsubscribe | None = None
    self._reconnect_timer: asyncio.TimerHandle | None = None
    self._cancelled = False
    self.degraded = False

  @property
  def cancelled(self) -> bool:
    return self._cancelled

  def start(self) -> None:
    try:
      self._unsubscribe = self._transport.subscribe(self.target.scope, self._handle_event, self._handle_state)
    except Exception:  # noqa: BLE001
      logger.warning("Push subscription failed for target=%s", self.target, exc_info=True)
      self._handle_state(ChannelState.CHANNEL_ERROR)

  def _handle_event(self, event: ChangeEvent) -> None:
    if self._cancelled:
      return

    # Scopes cover every job of the target; drop events for other parameter sets.
    if event.target_kind is not None and event.target_kind != self.target.target_kind.value:
      return
    if event.params_fingerprint is not None and event.params_fingerprint != self.target.params_fingerprint:
      return

    status = GenerationStatus.parse(event.new_status)
    if status is None:
      logger.info("Ignoring push event with unknown status=%r for target=%s", event.new_status, self.target)
      return

    observation = Observation(status=status, source=ObservationSource.PUSH, observed_at=time.time(), job_id=event.job_id, result_ref=event.result_ref, error=event.error)
    self._throttle.push(observation)

  def _handle_state(self, state: ChannelState) -> None:
    if self._cancelled:
      return

    if state == ChannelState.SUBSCRIBED:
      if self.degraded:
        logger.info("Push subscription restored for target=%s", self.target)
      self.degraded = False
      return

    if not state.is_degraded or self.degraded:
      return

    self.degraded = True
    logger.warning("Push subscription degraded for target=%s state=%s; relying on polling", self.target, state.value)
    self._drop_subscription()
    self._on_degraded()

    if self._reconnects_left > 0 and not self._cancelled:
      self._reconnects_left -= 1
      # Give the transport time to re-establish its channel before resubscribing.
      self._reconnect_timer = asyncio.get_running_loop().call_later(self._reconnect_delay, self._reconnect)

  def _reconnect(self) -> None:
    self._reconnect_timer = None
    if self._cancelled:
      return
    logger.info("Attempting push reconnect for target=%s", self.target)
    # Clear the flag so a failure of the new subscription is reported again.
    self.degraded = False
    self.start()

  def _drop_subscription(self) -> None:
    unsubscribe = self._unsubscribe
    self._unsubscribe = None
    if unsubscribe is None:
      return
    try:
      unsubscribe()
    except Exception:  # noqa: BLE001
      logger.debug("Unsubscribe raised for target=%s", self.target, exc_info=True)

  def cancel(self) -> None:
    """Tear down the subscription; idempotent."""
    if self._cancelled:
      return
    self._cancelled = True
    self._throttle.close()
    if self._reconnect_timer is not None:
      self._reconnect_timer.cancel()
      self._reconnect_timer = None
    self._drop_subscription()


class PushListener:
  """Creates throttled, target-scoped subscriptions on a change transport."""

  def __init__(self, transport: ChangeTransport, *, throttle_seconds: float = 2.0, reconnect_attempts: int = 1, reconnect_delay_seconds: float = 6.0) -> None:
    self._transport = transport
    self._throttle_seconds = throttle_seconds
    self._reconnect_attempts = reconnect_attempts
    self._reconnect_delay = reconnect_delay_seconds

  def listen(self, target: GenerationTarget, on_change: Callable[[Observation], None], on_degraded: Callable[[], None]) -> ListenerHandle:
    handle = ListenerHandle(target=target, transport=self._transport, on_change=on_change, on_degraded=on_degraded, throttle_seconds=self._throttle_seconds, reconnect_attempts=self._reconnect_attempts, reconnect_delay_seconds=self._reconnect_delay)
    handle.start()
    return handle


def _is_terminal(observation: Observation) -> bool:
  return observation.status.is_terminal
