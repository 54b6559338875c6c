from __future__ import annotations

import logging
from typing import Annotated

import msgspec
from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.responses import Response

from genorch.api.deps import get_orchestrator, require_task_secret
from genorch.api.msgspec_utils import decode_msgspec_request, encode_msgspec_response
from genorch.jobs.models import GenerationStatus
from genorch.jobs.orchestrator import GenerationOrchestrator

router = APIRouter(prefix="/jobs", dependencies=[Depends(require_task_secret)])
logger = logging.getLogger(__name__)


class JobUpdateBody(msgspec.Struct, rename="camel"):
  status: str
  result_ref: str | None = None
  error: str | None = None


class JobUpdateAck(msgspec.Struct, rename="camel"):
  job_id: str
  status: str
  tracked: bool


@router.post("/{job_id}/complete", status_code=status.HTTP_200_OK)
async def complete_job(job_id: str, request: Request, orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)]) -> Response:
  """Worker callback reporting progress or the final outcome of a job."""
  body = await decode_msgspec_request(request, JobUpdateBody)
  new_status = GenerationStatus.parse(body.status)
  if new_status is None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown job status {body.status!r}.")
  if new_status == GenerationStatus.SUCCEEDED and not body.result_ref:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="resultRef is required for a succeeded job.")

  record = await orchestrator.repository.update_job_status(job_id, status=new_status, result_ref=body.result_ref, error=body.error)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")

  tracked = orchestrator.apply_job_update(record)
  logger.info("Worker reported job %s status=%s (stored=%s tracked=%s)", job_id, new_status.value, record.status.value, tracked)
  return encode_msgspec_response(JobUpdateAck(job_id=record.job_id, status=record.status.value, tracked=tracked))
