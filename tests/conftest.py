"""Shared fixtures for orchestrator tests."""

from __future__ import annotations

import os

# Required settings must exist before any module reads them.
os.environ.setdefault("GENORCH_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("GENORCH_TASK_SECRET", "test-task-secret")

import pytest  # noqa: E402

from genorch.jobs.backoff import RetryController, RetryPolicy  # noqa: E402
from genorch.jobs.orchestrator import GenerationOrchestrator, OrchestratorConfig  # noqa: E402
from tests.fakes import FakeTransport, FakeWorker, InMemoryJobsRepo, no_sleep  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def fast_config() -> OrchestratorConfig:
  return OrchestratorConfig(
    poll_interval_seconds=0.02,
    job_timeout_seconds=0.5,
    push_throttle_seconds=0.05,
    push_reconnect_attempts=1,
    push_reconnect_delay_seconds=0.0,
    retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.0),
    submission_spacing_seconds=0.0,
  )


@pytest.fixture
def repo() -> InMemoryJobsRepo:
  return InMemoryJobsRepo()


@pytest.fixture
def transport() -> FakeTransport:
  return FakeTransport()


@pytest.fixture
def worker() -> FakeWorker:
  return FakeWorker()


@pytest.fixture
async def orchestrator(repo, transport, worker, fast_config):
  instance = GenerationOrchestrator(repository=repo, transport=transport, worker=worker, config=fast_config, retry=RetryController(sleep=no_sleep))
  yield instance
  await instance.shutdown()
