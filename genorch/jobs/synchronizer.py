"""Status synchronizer merging push and poll signals per target."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from genorch.jobs.cache import ContentCache
from genorch.jobs.errors import GenerationError, JobFailed, JobTimedOut
from genorch.jobs.listener import ListenerHandle
from genorch.jobs.models import GenerationStatus, GenerationTarget, Observation, StatusChange
from genorch.jobs.poller import PollHandle

logger = logging.getLogger(__name__)

StatusCallback = Callable[[StatusChange], None]

# Non-terminal progress only moves forward; older readings are stale.
_PROGRESS_RANK = {GenerationStatus.QUEUED: 0, GenerationStatus.RUNNING: 1}

# Attempt counters kept for targets that ended without a result.
_MAX_TRACKED_ATTEMPTS = 1024


class Subscription:
  """Caller-facing view of one target's synchronization."""

  def __init__(self, target: GenerationTarget, *, initial: StatusChange | None = None, detach: Callable[[Subscription], None] | None = None) -> None:
    self.target = target
    self._detach = detach
    self._callbacks: list[StatusCallback] = []
    self._last: StatusChange | None = initial
    self._terminal: asyncio.Future[StatusChange] | None = None
    self._cancelled = False

  @classmethod
  def resolved(cls, target: GenerationTarget, change: StatusChange) -> Subscription:
    """Build a subscription that is already in a terminal state."""
    return cls(target, initial=change)

  @property
  def last_change(self) -> StatusChange | None:
    return self._last

  @property
  def cancelled(self) -> bool:
    return self._cancelled

  def current_status(self) -> GenerationStatus | None:
    """Return the latest delivered status, or None once cancelled before any."""
    if self._last is None:
      return None
    return self._last.status

  def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
    """Register a callback; terminal states are replayed to late registrations."""
    self._callbacks.append(callback)
    if self._last is not None and self._last.is_terminal:
      self._invoke(callback, self._last)

    def _remove() -> None:
      if callback in self._callbacks:
        self._callbacks.remove(callback)

    return _remove

  async def wait(self, timeout: float | None = None) -> StatusChange:
    """Wait until a terminal status is delivered."""
    if self._last is not None and self._last.is_terminal:
      return self._last
    if self._cancelled:
      raise asyncio.CancelledError("Subscription was cancelled.")
    if self._terminal is None:
      self._terminal = asyncio.get_running_loop().create_future()
    return await asyncio.wait_for(asyncio.shield(self._terminal), timeout)

  def cancel(self) -> None:
    """Stop receiving updates; idempotent."""
    if self._cancelled:
      return
    self._cancelled = True
    self._callbacks.clear()
    if self._terminal is not None and not self._terminal.done():
      self._terminal.cancel()
    if self._detach is not None:
      detach, self._detach = self._detach, None
      detach(self)

  def _seed(self, change: StatusChange) -> None:
    self._last = change

  def _deliver(self, change: StatusChange) -> None:
    if self._cancelled:
      return
    self._last = change
    for callback in list(self._callbacks):
      self._invoke(callback, change)
    if change.is_terminal:
      self._detach = None
      if self._terminal is not None and not self._terminal.done():
        self._terminal.set_result(change)

  def _invoke(self, callback: StatusCallback, change: StatusChange) -> None:
    try:
      callback(change)
    except Exception:  # noqa: BLE001
      logger.exception("Status subscriber raised for target=%s status=%s", self.target, change.status.value)


@dataclass
class SyncState:
  """In-memory synchronization state for one target."""

  target: GenerationTarget
  last_known_status: GenerationStatus
  last_observed_at: float
  timeout_seconds: float
  attempt_count: int = 1
  job_id: str | None = None
  listener_handle: ListenerHandle | None = None
  poll_handle: PollHandle | None = None
  push_degraded: bool = False
  subscriptions: list[Subscription] = field(default_factory=list)

  def teardown(self) -> None:
    if self.listener_handle is not None:
      self.listener_handle.cancel()
    if self.poll_handle is not None:
      self.poll_handle.cancel()


class StatusSynchronizer:
  """Owns the SyncState registry and applies the terminal-wins merge rule."""

  def __init__(self, cache: ContentCache, *, clock: Callable[[], float] = time.time, on_timed_out: Callable[[GenerationTarget, str | None], None] | None = None) -> None:
    self._cache = cache
    self._clock = clock
    self._on_timed_out = on_timed_out
    self._states: dict[GenerationTarget, SyncState] = {}
    self._attempts: OrderedDict[GenerationTarget, int] = OrderedDict()

  def get(self, target: GenerationTarget) -> SyncState | None:
    return self._states.get(target)

  def is_active(self, target: GenerationTarget) -> bool:
    state = self._states.get(target)
    return state is not None and not state.last_known_status.is_terminal

  @property
  def active_targets(self) -> list[GenerationTarget]:
    return list(self._states)

  def reserve(self, target: GenerationTarget, *, timeout_seconds: float) -> SyncState:
    """Create the queued reservation for a target; must not await before this."""
    if target in self._states:
      raise RuntimeError(f"Target {target} already has an active synchronization.")
    attempt = self._attempts.pop(target, 0) + 1
    self._attempts[target] = attempt
    while len(self._attempts) > _MAX_TRACKED_ATTEMPTS:
      self._attempts.popitem(last=False)
    state = SyncState(target=target, last_known_status=GenerationStatus.QUEUED, last_observed_at=self._clock(), timeout_seconds=timeout_seconds, attempt_count=attempt)
    self._states[target] = state
    logger.debug("Reserved target=%s attempt=%d", target, attempt)
    return state

  def attach(self, target: GenerationTarget) -> Subscription:
    state = self._states.get(target)
    if state is None:
      raise RuntimeError(f"Target {target} has no active synchronization.")
    subscription = Subscription(target, detach=self._detach)
    subscription._seed(StatusChange(status=state.last_known_status))
    state.subscriptions.append(subscription)
    return subscription

  def bind_job(self, state: SyncState, job_id: str) -> bool:
    """Record the job being synchronized; False when the reservation is gone."""
    if self._states.get(state.target) is not state:
      return False
    state.job_id = job_id
    return True

  def attach_handles(self, state: SyncState, *, listener_handle: ListenerHandle | None, poll_handle: PollHandle | None) -> bool:
    """Store loop handles; tears them down immediately when the state already ended."""
    if self._states.get(state.target) is not state:
      if listener_handle is not None:
        listener_handle.cancel()
      if poll_handle is not None:
        poll_handle.cancel()
      return False
    state.listener_handle = listener_handle
    state.poll_handle = poll_handle
    return True

  def mark_degraded(self, target: GenerationTarget) -> None:
    state = self._states.get(target)
    if state is None:
      return
    state.push_degraded = True
    logger.info("Target %s now relies on polling only", target)

  def observe(self, target: GenerationTarget, observation: Observation) -> None:
    """Single entry point for every status signal of a target."""
    state = self._states.get(target)
    if state is None:
      logger.debug("Discarding %s observation for idle target=%s status=%s", observation.source.value, target, observation.status.value)
      return

    if observation.job_id is not None and state.job_id is not None and observation.job_id != state.job_id:
      logger.debug("Discarding observation for stale job_id=%s (current=%s) target=%s", observation.job_id, state.job_id, target)
      return

    if observation.status.is_terminal:
      self._apply_terminal(state, observation)
      return

    state.last_observed_at = observation.observed_at
    current_rank = _PROGRESS_RANK.get(state.last_known_status, 0)
    if observation.status == state.last_known_status or _PROGRESS_RANK[observation.status] < current_rank:
      return

    state.last_known_status = observation.status
    logger.info("Target %s -> %s (source=%s)", target, observation.status.value, observation.source.value)
    self._notify(state, StatusChange(status=observation.status))

  def _apply_terminal(self, state: SyncState, observation: Observation) -> None:
    target = state.target
    job_id = observation.job_id or state.job_id
    change = self._terminal_change(state, observation, job_id)

    state.last_known_status = change.status
    state.last_observed_at = observation.observed_at

    # Cache before notifying so subscribers can read the result synchronously.
    if change.status == GenerationStatus.SUCCEEDED and change.result_ref is not None:
      self._cache.set(target.cache_key, change.result_ref)
    if change.status == GenerationStatus.SUCCEEDED:
      self._attempts.pop(target, None)

    self._remove(state)
    logger.info("Target %s reached %s (source=%s job_id=%s)", target, change.status.value, observation.source.value, job_id)
    self._notify(state, change)

    if change.status == GenerationStatus.TIMED_OUT and self._on_timed_out is not None:
      self._on_timed_out(target, job_id)

  def _terminal_change(self, state: SyncState, observation: Observation, job_id: str | None) -> StatusChange:
    if observation.status == GenerationStatus.SUCCEEDED:
      result_ref = observation.result_ref
      if result_ref is None:
        # Some workers write the artifact onto the target row itself.
        result_ref = job_id or state.target.target_id
        logger.warning("Succeeded observation without result reference for target=%s; using %s", state.target, result_ref)
      return StatusChange(status=GenerationStatus.SUCCEEDED, result_ref=result_ref)

    if observation.status == GenerationStatus.FAILED:
      return StatusChange(status=GenerationStatus.FAILED, error=JobFailed(observation.error or "Generation failed.", job_id=job_id))

    return StatusChange(status=GenerationStatus.TIMED_OUT, error=JobTimedOut(timeout_seconds=state.timeout_seconds, job_id=job_id))

  def release(self, target: GenerationTarget, error: GenerationError) -> None:
    """Drop a reservation whose submission failed, failing any attached callers."""
    state = self._states.get(target)
    if state is None:
      return
    self._remove(state)
    logger.info("Released reservation for target=%s after submission failure: %s", target, error)
    self._notify(state, StatusChange(status=GenerationStatus.FAILED, error=error))

  def cancel(self, target: GenerationTarget) -> bool:
    """Tear down a target without reporting a status; idempotent."""
    state = self._states.get(target)
    if state is None:
      return False
    self._remove(state)
    for subscription in list(state.subscriptions):
      subscription.cancel()
    self._attempts.pop(target, None)
    logger.info("Cancelled synchronization for target=%s", target)
    return True

  def cancel_all(self) -> None:
    for target in list(self._states):
      self.cancel(target)

  def _detach(self, subscription: Subscription) -> None:
    state = self._states.get(subscription.target)
    if state is None or subscription not in state.subscriptions:
      return
    state.subscriptions.remove(subscription)
    # The last interested caller leaving ends the synchronization.
    if not state.subscriptions:
      self.cancel(subscription.target)

  def _remove(self, state: SyncState) -> None:
    if self._states.get(state.target) is state:
      del self._states[state.target]
    state.teardown()

  def _notify(self, state: SyncState, change: StatusChange) -> None:
    for subscription in list(state.subscriptions):
      subscription._deliver(change)
