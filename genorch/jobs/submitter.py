"""Job submission with retries and rate-limit pacing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from genorch.jobs.backoff import RetryController, RetryPolicy
from genorch.jobs.errors import GenerationError, RetryExhaustedError, SubmissionError, SubmissionRejected
from genorch.jobs.guard import IdempotencyGuard
from genorch.jobs.models import GenerationStatus, GenerationTarget, JobRecord
from genorch.storage.jobs_repo import JobsRepository
from genorch.utils.ids import generate_job_id
from genorch.worker.contracts import GenerationWorker, WorkerAck

logger = logging.getLogger(__name__)


class JobSubmitter:
  """Sends generation requests to the worker and records the resulting job."""

  def __init__(
    self,
    *,
    worker: GenerationWorker,
    repository: JobsRepository,
    guard: IdempotencyGuard,
    retry: RetryController,
    policy: RetryPolicy,
    spacing_seconds: float = 1.5,
    sleep: Callable[[float], Awaitable[None]] | None = None,
  ) -> None:
    self._worker = worker
    self._repository = repository
    self._guard = guard
    self._retry = retry
    self._policy = policy
    self._spacing_seconds = spacing_seconds
    self._sleep = sleep or asyncio.sleep
    self._pace_lock = asyncio.Lock()
    self._last_paced_at: float | None = None

  async def submit(self, target: GenerationTarget, payload: dict[str, Any], *, paced: bool = False) -> JobRecord:
    """Submit a reserved target; the reservation is released on any failure."""
    try:
      if paced:
        await self._wait_for_slot()
      ack = await self._invoke(target, payload)
      return await self._record(target, payload, ack)
    except GenerationError as exc:
      self._guard.release(target, exc)
      raise
    except asyncio.CancelledError:
      self._guard.release(target, SubmissionError(f"Submission for {target} was cancelled."))
      raise

  async def _invoke(self, target: GenerationTarget, payload: dict[str, Any]) -> WorkerAck:
    async def _call() -> WorkerAck:
      return await self._worker.invoke(target.target_kind, payload)

    try:
      return await self._retry.execute(_call, self._policy, operation_name=f"submit:{target.target_kind.value}")
    except SubmissionRejected:
      logger.warning("Worker rejected submission for target=%s", target)
      raise
    except RetryExhaustedError as exc:
      raise SubmissionError(f"Submission for {target} failed after {exc.attempts} attempts: {exc.last_error}") from exc
    except GenerationError:
      raise
    except Exception as exc:
      raise SubmissionRejected(f"Submission for {target} failed: {exc}") from exc

  async def _record(self, target: GenerationTarget, payload: dict[str, Any], ack: WorkerAck) -> JobRecord:
    status = GenerationStatus.parse(ack.status) or GenerationStatus.QUEUED
    if status == GenerationStatus.SUCCEEDED and not ack.result_ref:
      logger.warning("Worker reported completion without a result for target=%s; tracking as running", target)
      status = GenerationStatus.RUNNING
    if status == GenerationStatus.TIMED_OUT:
      status = GenerationStatus.RUNNING

    job_id = ack.job_id or generate_job_id()
    try:
      record = await self._repository.create_job(target, payload, job_id=job_id, status=status, result_ref=ack.result_ref if status == GenerationStatus.SUCCEEDED else None, error=ack.error if status == GenerationStatus.FAILED else None)
    except Exception as exc:
      logger.error("Failed to persist job %s for target=%s", job_id, target, exc_info=True)
      raise SubmissionError(f"Job {job_id} was submitted but could not be recorded: {exc}") from exc

    logger.info("Submitted job %s for target=%s status=%s", record.job_id, target, record.status.value)
    return record

  async def _wait_for_slot(self) -> None:
    """Space sequential background submissions to stay under provider rate limits."""
    async with self._pace_lock:
      loop = asyncio.get_running_loop()
      if self._last_paced_at is not None:
        remaining = self._spacing_seconds - (loop.time() - self._last_paced_at)
        if remaining > 0:
          await self._sleep(remaining)
      self._last_paced_at = loop.time()
