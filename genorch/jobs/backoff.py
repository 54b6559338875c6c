"""Retry logic with transient vs fatal error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, TypeVar

import httpx

from genorch.jobs.errors import RetryExhaustedError, SubmissionRejected, TransientNetworkError

T = TypeVar("T")
logger = logging.getLogger(__name__)

BackoffMode = Literal["fixed", "linear", "exponential"]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
  """Bounded retry configuration."""

  max_attempts: int = 3
  base_delay_seconds: float = 1.5
  backoff: BackoffMode = "exponential"
  max_delay_seconds: float = 30.0
  jitter: bool = False

  def __post_init__(self) -> None:
    if self.max_attempts < 1:
      raise ValueError("max_attempts must be at least 1.")
    if self.base_delay_seconds < 0:
      raise ValueError("base_delay_seconds must not be negative.")

  def delay_for(self, attempt: int) -> float:
    """Return the wait before retrying after the given 1-based failed attempt."""
    if self.backoff == "fixed":
      delay = self.base_delay_seconds
    elif self.backoff == "linear":
      delay = self.base_delay_seconds * attempt
    else:
      delay = self.base_delay_seconds * (2 ** (attempt - 1))
    delay = min(delay, self.max_delay_seconds)
    if self.jitter:
      # Add +/-25% jitter to avoid thundering herd
      jitter_range = delay * 0.25
      delay += random.uniform(-jitter_range, jitter_range)
    return max(delay, 0.0)


@dataclass(frozen=True)
class FailureClassification:
  """Classification result for a failed operation."""

  retryable: bool
  reason: str
  category: str


def classify_failure(exc: BaseException) -> FailureClassification:
  """
  Classify a failure as transient (retryable) or fatal.

  Retryable:
    - TransientNetworkError raised by collaborators
    - httpx transport errors and timeouts
    - HTTP 429 and 5xx responses
    - provider quota / rate limit messages

  Fatal:
    - SubmissionRejected, HTTP 4xx other than 429
    - validation and programming errors
  """
  if isinstance(exc, TransientNetworkError):
    return FailureClassification(retryable=True, reason=str(exc), category="transient_network")

  if isinstance(exc, SubmissionRejected):
    return FailureClassification(retryable=False, reason=str(exc), category="rejected")

  if isinstance(exc, httpx.HTTPStatusError):
    status_code = exc.response.status_code
    if status_code == 429:
      return FailureClassification(retryable=True, reason="Rate limited (429)", category="rate_limit")
    if status_code >= 500:
      return FailureClassification(retryable=True, reason=f"Server error ({status_code})", category="server_error")
    return FailureClassification(retryable=False, reason=f"Client error ({status_code})", category="client_error")

  if isinstance(exc, httpx.TransportError):
    return FailureClassification(retryable=True, reason=f"Transport error: {type(exc).__name__}", category="transient_network")

  if isinstance(exc, (ConnectionError, TimeoutError)):
    return FailureClassification(retryable=True, reason=f"Connection error: {type(exc).__name__}", category="transient_network")

  if isinstance(exc, (AttributeError, TypeError, ValueError, KeyError, IndexError)):
    return FailureClassification(retryable=False, reason=f"Programming error: {type(exc).__name__}", category="programming_error")

  # Fallback to message patterns used by provider SDKs.
  error_msg = str(exc)
  if "Resource Exhausted" in error_msg or "Quota Exceeded" in error_msg:
    return FailureClassification(retryable=True, reason="Provider quota exhausted", category="rate_limit")
  if "429" in error_msg or "Too Many Requests" in error_msg:
    return FailureClassification(retryable=True, reason="Rate limited", category="rate_limit")

  return FailureClassification(retryable=False, reason=f"Unknown error type: {type(exc).__name__}", category="unknown_error")


class RetryController:
  """Wrap fallible async operations with bounded, classified retries."""

  def __init__(self, *, sleep: Sleep | None = None) -> None:
    self._sleep = sleep or asyncio.sleep

  async def execute(self, op: Callable[[], Awaitable[T]], policy: RetryPolicy, *, operation_name: str = "operation") -> T:
    """Run ``op`` until it succeeds, fails fatally or exhausts the policy."""
    attempt = 0
    while True:
      attempt += 1
      try:
        result = await op()
      except Exception as exc:
        classification = classify_failure(exc)
        logger.warning(
          "Operation failed: operation=%s, attempt=%d/%d, category=%s, retryable=%s, reason=%s",
          operation_name,
          attempt,
          policy.max_attempts,
          classification.category,
          classification.retryable,
          classification.reason,
        )

        # Non-retryable error - fail fast
        if not classification.retryable:
          raise

        if attempt >= policy.max_attempts:
          logger.error("Operation failed after %d attempts: operation=%s, category=%s - giving up", attempt, operation_name, classification.category)
          raise RetryExhaustedError(operation=operation_name, attempts=attempt, last_error=exc) from exc

        delay = policy.delay_for(attempt)
        logger.info("Retrying operation after backoff: operation=%s, attempt=%d/%d, delay=%.2fs", operation_name, attempt, policy.max_attempts, delay)
        await self._sleep(delay)
        continue

      if attempt > 1:
        logger.info("Operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, policy.max_attempts)
      return result
