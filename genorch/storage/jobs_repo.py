"""Storage interfaces for generation jobs."""

from __future__ import annotations

from typing import Any, Protocol

from genorch.jobs.models import GenerationStatus, GenerationTarget, JobRecord


class JobsRepository(Protocol):
  """Repository contract for job persistence."""

  async def create_job(self, target: GenerationTarget, payload: dict[str, Any], *, job_id: str, status: GenerationStatus = GenerationStatus.QUEUED, result_ref: str | None = None, error: str | None = None) -> JobRecord:
    """Persist a new job record for ``target``."""

  async def read_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def read_job_by_target(self, target: GenerationTarget) -> JobRecord | None:
    """Return the most recent job for a target, if any."""

  async def update_job_status(self, job_id: str, *, status: GenerationStatus, result_ref: str | None = None, error: str | None = None) -> JobRecord | None:
    """Apply a status transition reported by the worker or the timeout path."""
