from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from genorch.api.deps import get_orchestrator, get_target
from genorch.api.models import CachedResultResponse, GenerationRequestBody, GenerationStatusResponse
from genorch.jobs.models import GenerationStatus, GenerationTarget
from genorch.jobs.orchestrator import GenerationOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)

Orchestrator = Annotated[GenerationOrchestrator, Depends(get_orchestrator)]
Target = Annotated[GenerationTarget, Depends(get_target)]


@router.post("", response_model=GenerationStatusResponse)
async def request_generation(body: GenerationRequestBody, response: Response, orchestrator: Orchestrator) -> GenerationStatusResponse:
  """Start generation for a target, or attach to the job already producing it."""
  target = body.to_target()
  subscription = await orchestrator.request_generation(target, body.worker_payload())

  if body.wait:
    config = orchestrator.config
    timeout = body.wait_timeout_seconds or config.job_timeout_seconds + config.poll_interval_seconds
    try:
      await subscription.wait(timeout)
    except TimeoutError:
      logger.info("Wait for target=%s ended after %.1fs without a terminal status", target, timeout)

  change = subscription.last_change
  terminal = change is not None and change.is_terminal
  response.status_code = status.HTTP_200_OK if terminal else status.HTTP_202_ACCEPTED
  return GenerationStatusResponse.from_change(target, change, active=orchestrator.synchronizer.is_active(target))


@router.get("/{target_kind}/{target_id}", response_model=GenerationStatusResponse)
async def get_generation_status(target: Target, orchestrator: Orchestrator) -> GenerationStatusResponse:
  """Report live, cached or last persisted status for a target."""
  live = orchestrator.current_status(target)
  if live is not None:
    return GenerationStatusResponse.build(target, status=live, active=True)

  cached = orchestrator.get_cached(target)
  if cached is not None:
    return GenerationStatusResponse.build(target, status=GenerationStatus.SUCCEEDED, result_ref=cached)

  record = await orchestrator.repository.read_job_by_target(target)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No generation found for target.")
  return GenerationStatusResponse.build(target, status=record.status, result_ref=record.result_ref, error=record.error)


@router.get("/{target_kind}/{target_id}/cached", response_model=CachedResultResponse)
async def get_cached_result(target: Target, orchestrator: Orchestrator) -> CachedResultResponse:
  result_ref = orchestrator.get_cached(target)
  if result_ref is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No cached result for target.")
  return CachedResultResponse(cache_key=target.cache_key, result_ref=result_ref)


@router.delete("/{target_kind}/{target_id}")
async def cancel_generation(target: Target, orchestrator: Orchestrator) -> dict[str, bool]:
  """Stop synchronizing a target; the worker job itself is left alone."""
  return {"cancelled": orchestrator.cancel(target)}


@router.post("/{target_kind}/{target_id}/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_generation(target: Target, orchestrator: Orchestrator) -> Response:
  orchestrator.invalidate(target)
  return Response(status_code=status.HTTP_204_NO_CONTENT)
