"""HTTP client for the external generation worker."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from genorch.config import Settings
from genorch.jobs.errors import SubmissionRejected, TransientNetworkError
from genorch.jobs.models import TargetKind
from genorch.worker.contracts import GenerationWorker, WorkerAck

logger = logging.getLogger(__name__)

# Each target kind maps to its own worker function.
_ENDPOINTS = {
  TargetKind.STEP_CONTENT: "generate-step-content",
  TargetKind.PODCAST_AUDIO: "create-podcast",
  TargetKind.IMAGE: "generate-images",
}


class HttpGenerationWorker(GenerationWorker):
  """Invokes worker functions over HTTP and classifies failures."""

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not settings.worker_base_url:
      raise RuntimeError("Worker base URL not configured (GENORCH_WORKER_BASE_URL).")
    self._base_url = settings.worker_base_url.rstrip("/")
    self._api_key = settings.worker_api_key
    self._timeout = settings.worker_timeout_seconds
    self._transport = transport

  def _headers(self) -> dict[str, str]:
    headers = {"content-type": "application/json"}
    if self._api_key:
      headers["authorization"] = f"Bearer {self._api_key}"
    return headers

  def _build_client(self) -> httpx.AsyncClient:
    # Never trust environment proxy variables for worker dispatch.
    return httpx.AsyncClient(base_url=self._base_url, transport=self._transport, timeout=self._timeout, trust_env=False)

  async def invoke(self, target_kind: TargetKind, payload: dict[str, Any]) -> WorkerAck:
    """POST the payload to the worker function for ``target_kind``."""
    endpoint = _ENDPOINTS[target_kind]
    try:
      async with self._build_client() as client:
        logger.info("Invoking worker endpoint=%s kind=%s", endpoint, target_kind.value)
        response = await client.post(f"/{endpoint}", json=payload, headers=self._headers())
    except httpx.TimeoutException as exc:
      raise TransientNetworkError(f"Worker request to {endpoint} timed out: {exc}") from exc
    except httpx.RequestError as exc:
      raise TransientNetworkError(f"Worker request to {endpoint} failed: {exc}") from exc

    status_code = response.status_code
    if status_code == 429 or status_code >= 500:
      logger.warning("Worker endpoint=%s returned transient status %s", endpoint, status_code)
      raise TransientNetworkError(f"Worker {endpoint} returned {status_code}", status_code=status_code)
    if status_code >= 400:
      logger.error("Worker endpoint=%s rejected request with %s: %s", endpoint, status_code, response.text[:500])
      raise SubmissionRejected(f"Worker {endpoint} rejected request ({status_code})", status_code=status_code)

    return _parse_ack(response, endpoint)


def _parse_ack(response: httpx.Response, endpoint: str) -> WorkerAck:
  try:
    body = response.json()
  except ValueError as exc:
    raise SubmissionRejected(f"Worker {endpoint} returned a non-JSON body") from exc

  if not isinstance(body, dict):
    raise SubmissionRejected(f"Worker {endpoint} returned an unexpected body")

  # Worker functions use camelCase keys; accept snake_case too.
  job_id = body.get("jobId") or body.get("job_id")
  status = body.get("status")
  result_ref = body.get("resultRef") or body.get("result_ref") or body.get("url")
  error = body.get("error")
  if job_id is None and status is None and result_ref is None:
    raise SubmissionRejected(f"Worker {endpoint} returned no job id")

  # A direct result without an explicit status means the provider finished synchronously.
  if status is None and result_ref is not None:
    status = "succeeded"

  return WorkerAck(job_id=str(job_id) if job_id is not None else None, status=str(status) if status is not None else None, result_ref=str(result_ref) if result_ref is not None else None, error=str(error) if error is not None else None)
