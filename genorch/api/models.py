from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from genorch.jobs.models import GenerationStatus, GenerationTarget, StatusChange, TargetKind
from genorch.utils.ids import fingerprint_params

MAX_WAIT_SECONDS = 300.0


class GenerationRequestBody(BaseModel):
  """Request payload for starting (or attaching to) a generation."""

  model_config = ConfigDict(populate_by_name=True)

  target_kind: TargetKind = Field(alias="targetKind")
  target_id: StrictStr = Field(alias="targetId", min_length=1)
  params: dict[str, Any] = Field(default_factory=dict, description="Generation parameters; hashed into the params fingerprint.")
  payload: dict[str, Any] | None = Field(default=None, description="Worker payload; defaults to params plus the target id.")
  wait: bool = False
  wait_timeout_seconds: float | None = Field(default=None, alias="waitTimeoutSeconds", gt=0, le=MAX_WAIT_SECONDS)

  @field_validator("target_id")
  @classmethod
  def _strip_target_id(cls, value: str) -> str:
    value = value.strip()
    if not value:
      raise ValueError("targetId must not be blank.")
    return value

  def to_target(self) -> GenerationTarget:
    return GenerationTarget(target_kind=self.target_kind, target_id=self.target_id, params_fingerprint=fingerprint_params(self.params))

  def worker_payload(self) -> dict[str, Any]:
    if self.payload is not None:
      return dict(self.payload)
    return {**self.params, "targetId": self.target_id}


class GenerationStatusResponse(BaseModel):
  """Snapshot of a target's generation state."""

  model_config = ConfigDict(populate_by_name=True)

  target_kind: TargetKind = Field(alias="targetKind")
  target_id: str = Field(alias="targetId")
  params_fingerprint: str = Field(alias="paramsFingerprint")
  status: GenerationStatus | None
  result_ref: str | None = Field(default=None, alias="resultRef")
  error: str | None = None
  active: bool = False

  @classmethod
  def build(cls, target: GenerationTarget, *, status: GenerationStatus | None, result_ref: str | None = None, error: str | None = None, active: bool = False) -> GenerationStatusResponse:
    return cls(target_kind=target.target_kind, target_id=target.target_id, params_fingerprint=target.params_fingerprint, status=status, result_ref=result_ref, error=error, active=active)

  @classmethod
  def from_change(cls, target: GenerationTarget, change: StatusChange | None, *, active: bool) -> GenerationStatusResponse:
    if change is None:
      return cls.build(target, status=None, active=active)
    error = str(change.error) if change.error is not None else None
    return cls.build(target, status=change.status, result_ref=change.result_ref, error=error, active=active)


class CachedResultResponse(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  cache_key: str = Field(alias="cacheKey")
  result_ref: str | None = Field(alias="resultRef")
