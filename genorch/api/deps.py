"""Shared FastAPI dependencies for orchestrator access and internal auth."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query, Request, status

from genorch.config import Settings, get_settings
from genorch.jobs.models import GenerationTarget, TargetKind
from genorch.jobs.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> GenerationOrchestrator:
  """Return the orchestrator built during application startup."""
  orchestrator = getattr(request.app.state, "orchestrator", None)
  if orchestrator is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Generation orchestrator is not ready.")
  return orchestrator


def get_target(target_kind: TargetKind, target_id: str, fingerprint: Annotated[str, Query(min_length=1, alias="fingerprint")]) -> GenerationTarget:
  """Resolve path and query parameters into a generation target."""
  try:
    return GenerationTarget(target_kind=target_kind, target_id=target_id, params_fingerprint=fingerprint)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def require_task_secret(settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_genorch_task_secret: str | None = Header(default=None)) -> None:
  """Authenticate internal worker callbacks with the shared task secret."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  shared_secret_valid = secrets.compare_digest((x_genorch_task_secret or ""), settings.task_secret)
  bearer_valid = secrets.compare_digest((authorization or ""), f"Bearer {settings.task_secret}")
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized worker callback attempt")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
