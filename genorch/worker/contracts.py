"""Contracts for the external generation worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from genorch.jobs.models import TargetKind


@dataclass(frozen=True)
class WorkerAck:
  """Worker response to a submission.

  Providers that finish synchronously return ``status`` and ``result_ref``
  straight away; asynchronous ones only return a job id.
  """

  job_id: str | None
  status: str | None = None
  result_ref: str | None = None
  error: str | None = None


class GenerationWorker(Protocol):
  """Opaque generation service."""

  async def invoke(self, target_kind: TargetKind, payload: dict[str, Any]) -> WorkerAck:
    """Submit one generation request."""
