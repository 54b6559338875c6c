"""Generation orchestrator: the public entry point for callers."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any

from genorch.config import Settings
from genorch.jobs.backoff import RetryController, RetryPolicy
from genorch.jobs.cache import ContentCache
from genorch.jobs.errors import GenerationError, SubmissionError
from genorch.jobs.guard import AlreadyRunning, Cached, IdempotencyGuard, Start
from genorch.jobs.listener import PushListener
from genorch.jobs.models import GenerationStatus, GenerationTarget, JobRecord, Observation, ObservationSource, StatusChange
from genorch.jobs.poller import PollFallbackLoop
from genorch.jobs.submitter import JobSubmitter
from genorch.jobs.synchronizer import StatusSynchronizer, Subscription, SyncState
from genorch.notifications.contracts import ChangeTransport
from genorch.storage.jobs_repo import JobsRepository
from genorch.worker.contracts import GenerationWorker

logger = logging.getLogger(__name__)

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(frozen=True)
class OrchestratorConfig:
  """Timing and policy knobs for the orchestrator."""

  poll_interval_seconds: float = 4.0
  job_timeout_seconds: float = 120.0
  push_throttle_seconds: float = 2.0
  push_reconnect_attempts: int = 1
  push_reconnect_delay_seconds: float = 6.0
  retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
  submission_spacing_seconds: float = 1.5
  cache_ttl_seconds: float | None = None
  adopt_live_jobs: bool = True

  @classmethod
  def from_settings(cls, settings: Settings) -> OrchestratorConfig:
    policy = RetryPolicy(max_attempts=settings.retry_max_attempts, base_delay_seconds=settings.retry_base_delay_seconds, backoff=settings.retry_backoff)  # type: ignore[arg-type]
    return cls(
      poll_interval_seconds=settings.poll_interval_seconds,
      job_timeout_seconds=settings.job_timeout_seconds,
      push_throttle_seconds=settings.push_throttle_seconds,
      push_reconnect_attempts=settings.push_reconnect_attempts,
      push_reconnect_delay_seconds=settings.push_reconnect_delay_seconds,
      retry_policy=policy,
      submission_spacing_seconds=settings.submission_spacing_seconds,
      cache_ttl_seconds=settings.cache_ttl_seconds,
      adopt_live_jobs=settings.adopt_live_jobs,
    )


@dataclass(frozen=True)
class GenerationRequest:
  """One entry of a batch submission."""

  target: GenerationTarget
  payload: dict[str, Any] = field(default_factory=dict)


class GenerationOrchestrator:
  """Coordinates submission, push/poll synchronization and caching.

  One instance owns the SyncState registry; callers hold it by reference
  instead of reaching for module-level state.
  """

  def __init__(
    self,
    *,
    repository: JobsRepository,
    transport: ChangeTransport,
    worker: GenerationWorker,
    cache: ContentCache | None = None,
    config: OrchestratorConfig | None = None,
    retry: RetryController | None = None,
  ) -> None:
    self.config = config or OrchestratorConfig()
    self._repository = repository
    self.cache = cache or ContentCache(default_ttl_seconds=self.config.cache_ttl_seconds)
    self.synchronizer = StatusSynchronizer(self.cache, on_timed_out=self._persist_timeout)
    self._guard = IdempotencyGuard(self.cache, self.synchronizer)
    self._listener = PushListener(transport, throttle_seconds=self.config.push_throttle_seconds, reconnect_attempts=self.config.push_reconnect_attempts, reconnect_delay_seconds=self.config.push_reconnect_delay_seconds)
    self._poller = PollFallbackLoop(repository)
    self._submitter = JobSubmitter(worker=worker, repository=repository, guard=self._guard, retry=retry or RetryController(), policy=self.config.retry_policy, spacing_seconds=self.config.submission_spacing_seconds)
    self._background: set[asyncio.Task[Any]] = set()

  async def request_generation(self, target: GenerationTarget, payload: dict[str, Any] | None = None, *, paced: bool = False) -> Subscription:
    """Request generation for a target; repeated calls attach to the same job."""
    outcome = self._guard.acquire(target, timeout_seconds=self.config.job_timeout_seconds)

    match outcome:
      case Cached(result_ref=result_ref):
        return Subscription.resolved(target, StatusChange(status=GenerationStatus.SUCCEEDED, result_ref=result_ref))
      case AlreadyRunning():
        return self.synchronizer.attach(target)
      case Start(state=state):
        subscription = self.synchronizer.attach(target)
        await self._start(state, dict(payload or {}), paced=paced)
        return subscription

    raise AssertionError(f"Unhandled acquire outcome: {outcome!r}")

  async def request_generation_batch(self, requests: Iterable[GenerationRequest]) -> list[Subscription | GenerationError]:
    """Submit several targets one after another, spaced to respect provider rate limits."""
    results: list[Subscription | GenerationError] = []
    for request in requests:
      try:
        results.append(await self.request_generation(request.target, request.payload, paced=True))
      except GenerationError as exc:
        logger.warning("Batch submission failed for target=%s: %s", request.target, exc)
        results.append(exc)
    return results

  @property
  def repository(self) -> JobsRepository:
    return self._repository

  def apply_job_update(self, record: JobRecord) -> bool:
    """Feed a job row written in this process straight into synchronization.

    Returns False when no live synchronization is tracking the record's target.
    """
    if not self.synchronizer.is_active(record.target):
      return False
    observation = Observation(status=record.status, source=ObservationSource.PUSH, observed_at=time.time(), job_id=record.job_id, result_ref=record.result_ref, error=record.error)
    self.synchronizer.observe(record.target, observation)
    return True

  def get_cached(self, target: GenerationTarget) -> str | None:
    """Synchronous cache lookup without side effects on jobs."""
    return self.cache.get(target.cache_key)

  def invalidate(self, target: GenerationTarget) -> None:
    """Forget a cached result so the next request generates afresh."""
    self.cache.invalidate(target.cache_key)

  def current_status(self, target: GenerationTarget) -> GenerationStatus | None:
    state = self.synchronizer.get(target)
    if state is None:
      return None
    return state.last_known_status

  def cancel(self, target: GenerationTarget) -> bool:
    """Tear down a target's loops and subscriptions; idempotent."""
    return self.synchronizer.cancel(target)

  async def shutdown(self) -> None:
    self.synchronizer.cancel_all()
    if self._background:
      await asyncio.gather(*self._background, return_exceptions=True)

  async def _start(self, state: SyncState, payload: dict[str, Any], *, paced: bool) -> None:
    target = state.target
    record = None
    timeout_seconds = self.config.job_timeout_seconds
    if self.config.adopt_live_jobs:
      try:
        adopted = await self._adopt_live_job(target)
      except asyncio.CancelledError:
        self._guard.release(target, SubmissionError(f"Submission for {target} was cancelled."))
        raise
      if adopted is not None:
        record, remaining = adopted
        # An adopted job keeps the deadline it started with.
        timeout_seconds = remaining
        state.timeout_seconds = remaining
    if record is None:
      record = await self._submitter.submit(target, payload, paced=paced)

    if not self.synchronizer.bind_job(state, record.job_id):
      logger.info("Target %s was cancelled while job %s was being submitted", target, record.job_id)
      return

    submitted = Observation(status=record.status, source=ObservationSource.SUBMIT, observed_at=time.time(), job_id=record.job_id, result_ref=record.result_ref, error=record.error)
    if record.status.is_terminal:
      self.synchronizer.observe(target, submitted)
      return

    on_change = partial(self.synchronizer.observe, target)
    listener_handle = self._listener.listen(target, on_change=on_change, on_degraded=partial(self.synchronizer.mark_degraded, target))
    poll_handle = self._poller.start(target, record.job_id, interval_seconds=self.config.poll_interval_seconds, timeout_seconds=timeout_seconds, on_status=on_change)
    if self.synchronizer.attach_handles(state, listener_handle=listener_handle, poll_handle=poll_handle):
      self.synchronizer.observe(target, submitted)

  async def _adopt_live_job(self, target: GenerationTarget) -> tuple[JobRecord, float] | None:
    """Return an in-flight job left by an earlier session with its remaining time, if any."""
    try:
      record = await self._repository.read_job_by_target(target)
    except Exception:  # noqa: BLE001
      logger.warning("Live job lookup failed for target=%s; submitting a new job", target, exc_info=True)
      return None

    if record is None or record.status.is_terminal:
      return None

    age = _age_seconds(record.created_at)
    if age is None or age >= self.config.job_timeout_seconds:
      return None

    logger.info("Adopting live job %s for target=%s (age=%.1fs)", record.job_id, target, age)
    return record, self.config.job_timeout_seconds - age

  def _persist_timeout(self, target: GenerationTarget, job_id: str | None) -> None:
    if job_id is None:
      return
    task = asyncio.get_running_loop().create_task(self._write_timeout(target, job_id))
    self._background.add(task)
    task.add_done_callback(self._background.discard)

  async def _write_timeout(self, target: GenerationTarget, job_id: str) -> None:
    try:
      await self._repository.update_job_status(job_id, status=GenerationStatus.TIMED_OUT, error="Timed out waiting for the worker.")
    except Exception:  # noqa: BLE001
      logger.warning("Failed to persist timeout for job %s target=%s", job_id, target, exc_info=True)


def _age_seconds(created_at: str) -> float | None:
  try:
    created = datetime.strptime(created_at, _DATE_FORMAT).replace(tzinfo=UTC)
  except (TypeError, ValueError):
    return None
  return (datetime.now(UTC) - created).total_seconds()
