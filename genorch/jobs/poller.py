"""Interval polling fallback for job status."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from genorch.jobs.models import GenerationStatus, GenerationTarget, Observation, ObservationSource
from genorch.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


class PollHandle:
  """Cancellable handle around one polling task."""

  def __init__(self, task: asyncio.Task[None], target: GenerationTarget) -> None:
    self._task = task
    self.target = target
    self._cancelled = False

  @property
  def cancelled(self) -> bool:
    return self._cancelled

  @property
  def done(self) -> bool:
    return self._task.done()

  def cancel(self) -> None:
    """Stop polling without reporting a status; idempotent."""
    self._cancelled = True
    # A loop that tears itself down from its own callback just exits after it returns.
    if self._task is not asyncio.current_task() and not self._task.done():
      self._task.cancel()

  async def wait(self) -> None:
    """Wait for the loop to finish, swallowing its cancellation."""
    try:
      await self._task
    except asyncio.CancelledError:
      if not self._task.cancelled():
        raise


class PollFallbackLoop:
  """Re-reads a job record on a fixed interval until terminal or timed out."""

  def __init__(self, repository: JobsRepository) -> None:
    self._repository = repository

  def start(self, target: GenerationTarget, job_id: str, *, interval_seconds: float, timeout_seconds: float, on_status: Callable[[Observation], None]) -> PollHandle:
    if interval_seconds <= 0:
      raise ValueError("interval_seconds must be positive.")
    if timeout_seconds <= 0:
      raise ValueError("timeout_seconds must be positive.")

    handle: PollHandle | None = None

    def _is_cancelled() -> bool:
      return handle is not None and handle.cancelled

    task = asyncio.create_task(self._run(target, job_id, interval_seconds, timeout_seconds, on_status, _is_cancelled), name=f"poll:{target}")
    handle = PollHandle(task, target)
    return handle

  async def _run(self, target: GenerationTarget, job_id: str, interval: float, timeout: float, on_status: Callable[[Observation], None], is_cancelled: Callable[[], bool]) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
      remaining = deadline - loop.time()
      await asyncio.sleep(min(interval, max(remaining, 0.0)))
      if is_cancelled():
        return

      if loop.time() >= deadline:
        logger.warning("Polling timed out after %.1fs for target=%s job_id=%s", timeout, target, job_id)
        on_status(Observation(status=GenerationStatus.TIMED_OUT, source=ObservationSource.POLL, observed_at=time.time(), job_id=job_id))
        return

      try:
        record = await self._repository.read_job(job_id)
      except Exception:  # noqa: BLE001
        # Best effort: a failed read is not a job failure.
        logger.warning("Poll read failed for target=%s job_id=%s", target, job_id, exc_info=True)
        continue

      if is_cancelled():
        return
      if record is None:
        logger.debug("Job %s not visible yet for target=%s", job_id, target)
        continue

      on_status(Observation(status=record.status, source=ObservationSource.POLL, observed_at=time.time(), job_id=record.job_id, result_ref=record.result_ref, error=record.error))
      if record.status.is_terminal:
        return
      if is_cancelled():
        return
