"""Postgres-backed repository for generation jobs using SQLAlchemy."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select

from genorch.core.database import get_session_factory
from genorch.jobs.models import GenerationStatus, GenerationTarget, JobRecord, TargetKind
from genorch.schema.jobs import GenerationJob
from genorch.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


def _now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class PostgresJobsRepository(JobsRepository):
  """Persist generation jobs to Postgres.

  Status writes go through the generation_jobs table, whose trigger emits
  the NOTIFY payloads consumed by the push listener.
  """

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, target: GenerationTarget, payload: dict[str, Any], *, job_id: str, status: GenerationStatus = GenerationStatus.QUEUED, result_ref: str | None = None, error: str | None = None) -> JobRecord:
    now = _now_iso()
    async with self._session_factory() as session:
      row = GenerationJob(
        job_id=job_id,
        target_kind=target.target_kind.value,
        target_id=target.target_id,
        params_fingerprint=target.params_fingerprint,
        status=status.value,
        payload_json=payload,
        result_ref=result_ref,
        error=error,
        created_at=now,
        updated_at=now,
        completed_at=now if status.is_terminal else None,
      )
      session.add(row)
      await session.commit()
      return self._model_to_record(row)

  async def read_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def read_job_by_target(self, target: GenerationTarget) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        select(GenerationJob)
        .where(
          GenerationJob.target_kind == target.target_kind.value,
          GenerationJob.target_id == target.target_id,
          GenerationJob.params_fingerprint == target.params_fingerprint,
        )
        .order_by(GenerationJob.created_at.desc())
        .limit(1)
      )
      row = (await session.execute(stmt)).scalars().first()
      if row is None:
        return None
      return self._model_to_record(row)

  async def update_job_status(self, job_id: str, *, status: GenerationStatus, result_ref: str | None = None, error: str | None = None) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJob, job_id, with_for_update=True)
      if row is None:
        return None
      current = GenerationStatus.parse(row.status)
      # Terminal rows are final; later writers lose.
      if current is not None and current.is_terminal:
        logger.info("Ignoring %s for job %s already in terminal status %s", status.value, job_id, current.value)
        await session.rollback()
        return self._model_to_record(row)

      now = _now_iso()
      row.status = status.value
      if result_ref is not None:
        row.result_ref = result_ref
      if error is not None:
        row.error = error
      row.updated_at = now
      if status.is_terminal:
        row.completed_at = now
      await session.commit()
      return self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: GenerationJob) -> JobRecord:
    target = GenerationTarget(target_kind=TargetKind(row.target_kind), target_id=row.target_id, params_fingerprint=row.params_fingerprint)
    return JobRecord(
      job_id=row.job_id,
      target=target,
      status=GenerationStatus.parse(row.status) or GenerationStatus.QUEUED,
      created_at=row.created_at,
      updated_at=row.updated_at,
      payload=dict(row.payload_json or {}),
      result_ref=row.result_ref,
      error=row.error,
    )
