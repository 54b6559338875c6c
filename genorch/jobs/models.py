"""Domain models for asynchronous generation jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from genorch.jobs.errors import GenerationError

logger = logging.getLogger(__name__)


class TargetKind(StrEnum):
  """Kinds of artifacts the orchestrator knows how to generate."""

  STEP_CONTENT = "step_content"
  PODCAST_AUDIO = "podcast_audio"
  IMAGE = "image"


class GenerationStatus(StrEnum):
  """Lifecycle of one job; idle is the absence of a sync state."""

  QUEUED = "queued"
  RUNNING = "running"
  SUCCEEDED = "succeeded"
  FAILED = "failed"
  TIMED_OUT = "timed_out"

  @property
  def is_terminal(self) -> bool:
    return self in _TERMINAL_STATUSES

  @classmethod
  def parse(cls, raw: str | None) -> GenerationStatus | None:
    """Normalize a worker or database status string, returning None when unknown."""
    if raw is None:
      return None
    normalized = raw.strip().lower()
    try:
      return cls(normalized)
    except ValueError:
      pass
    alias = _STATUS_ALIASES.get(normalized)
    if alias is None:
      logger.debug("Unknown generation status %r", raw)
    return alias


_TERMINAL_STATUSES = frozenset({GenerationStatus.SUCCEEDED, GenerationStatus.FAILED, GenerationStatus.TIMED_OUT})

# Providers and storage tables report progress with their own vocabulary.
_STATUS_ALIASES = {
  "pending": GenerationStatus.QUEUED,
  "not_generated": GenerationStatus.QUEUED,
  "submitted": GenerationStatus.QUEUED,
  "processing": GenerationStatus.RUNNING,
  "in_progress": GenerationStatus.RUNNING,
  "generating": GenerationStatus.RUNNING,
  "started": GenerationStatus.RUNNING,
  "completed": GenerationStatus.SUCCEEDED,
  "complete": GenerationStatus.SUCCEEDED,
  "done": GenerationStatus.SUCCEEDED,
  "error": GenerationStatus.FAILED,
  "timeout": GenerationStatus.TIMED_OUT,
}


class ObservationSource(StrEnum):
  """Where a status observation came from."""

  PUSH = "push"
  POLL = "poll"
  SUBMIT = "submit"


@dataclass(frozen=True)
class GenerationTarget:
  """Logical unit of generation work, independent of any attempt."""

  target_kind: TargetKind
  target_id: str
  params_fingerprint: str

  def __post_init__(self) -> None:
    if not self.target_id:
      raise ValueError("target_id must be a non-empty string.")
    if not self.params_fingerprint:
      raise ValueError("params_fingerprint must be a non-empty string.")

  @property
  def cache_key(self) -> str:
    return f"{self.target_kind.value}:{self.target_id}:{self.params_fingerprint}"

  @property
  def scope(self) -> str:
    """Notification scope covering every job of this target."""
    return f"{self.target_kind.value}:{self.target_id}"

  def __str__(self) -> str:
    return self.cache_key


@dataclass
class JobRecord:
  """Represents one persisted attempt at fulfilling a target."""

  job_id: str
  target: GenerationTarget
  status: GenerationStatus
  created_at: str
  updated_at: str
  payload: dict[str, Any] = field(default_factory=dict)
  result_ref: str | None = None
  error: str | None = None


@dataclass(frozen=True)
class Observation:
  """A status reading from one signal source."""

  status: GenerationStatus
  source: ObservationSource
  observed_at: float
  job_id: str | None = None
  result_ref: str | None = None
  error: str | None = None


@dataclass(frozen=True)
class StatusChange:
  """Payload delivered to subscribers on every genuine transition."""

  status: GenerationStatus
  result_ref: str | None = None
  error: GenerationError | None = None

  def __post_init__(self) -> None:
    if self.status == GenerationStatus.SUCCEEDED and self.result_ref is None:
      raise ValueError("Succeeded status changes must carry a result reference.")
    if self.status in {GenerationStatus.FAILED, GenerationStatus.TIMED_OUT} and self.error is None:
      raise ValueError(f"{self.status.value} status changes must carry an error.")

  @property
  def is_terminal(self) -> bool:
    return self.status.is_terminal
