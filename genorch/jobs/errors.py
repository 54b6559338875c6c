"""Error taxonomy for generation jobs."""

from __future__ import annotations


class GenerationError(Exception):
  """Base class for all orchestrator failures."""


class TransientNetworkError(GenerationError):
  """Network failure, rate limit or 5xx response; safe to retry."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class SubmissionError(GenerationError):
  """Raised when a job could not be submitted to the worker."""


class SubmissionRejected(SubmissionError):
  """The worker refused the payload; retrying will not help."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class RetryExhaustedError(GenerationError):
  """All retry attempts failed with transient errors."""

  def __init__(self, *, operation: str, attempts: int, last_error: BaseException) -> None:
    super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")
    self.operation = operation
    self.attempts = attempts
    self.last_error = last_error


class JobFailed(GenerationError):
  """The worker reported a terminal failure for the job."""

  def __init__(self, message: str, *, job_id: str | None = None) -> None:
    super().__init__(message)
    self.job_id = job_id


class JobTimedOut(GenerationError):
  """No terminal status arrived before the client-side deadline."""

  def __init__(self, *, timeout_seconds: float, job_id: str | None = None) -> None:
    super().__init__(f"Generation did not finish within {timeout_seconds:g}s.")
    self.timeout_seconds = timeout_seconds
    self.job_id = job_id


class CacheWriteFailure(GenerationError):
  """A durable cache write failed; logged, never surfaced."""
