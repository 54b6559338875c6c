import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import urlparse

from fastapi import FastAPI

from genorch.config import Settings, get_settings
from genorch.core.database import dispose_engine
from genorch.core.logging import initialize_logging
from genorch.jobs.cache import ContentCache
from genorch.jobs.orchestrator import GenerationOrchestrator, OrchestratorConfig
from genorch.notifications.pg_listen import PostgresNotifyTransport
from genorch.storage.postgres_jobs_repo import PostgresJobsRepository
from genorch.storage.session_cache_store import SqlSessionCacheStore
from genorch.worker.client import HttpGenerationWorker

logger = logging.getLogger("genorch.core.lifespan")


@dataclass
class Runtime:
  """Long-lived collaborators owned by the running application."""

  orchestrator: GenerationOrchestrator
  transport: PostgresNotifyTransport
  cache_store: SqlSessionCacheStore


async def build_runtime(settings: Settings) -> Runtime:
  """Wire the orchestrator against Postgres, the worker and the session cache."""
  if not settings.pg_dsn:
    raise RuntimeError("Database connection is not configured (GENORCH_PG_DSN is missing).")

  cache_store = SqlSessionCacheStore(settings.session_cache_url, settings.session_id)
  cache_store.purge_other_sessions()
  cache = ContentCache(cache_store, default_ttl_seconds=settings.cache_ttl_seconds)

  transport = PostgresNotifyTransport(settings.pg_dsn, channel=settings.notify_channel, connect_timeout=settings.pg_connect_timeout)
  await transport.start(wait_seconds=float(settings.pg_connect_timeout))

  orchestrator = GenerationOrchestrator(repository=PostgresJobsRepository(), transport=transport, worker=HttpGenerationWorker(settings), cache=cache, config=OrchestratorConfig.from_settings(settings))
  return Runtime(orchestrator=orchestrator, transport=transport, cache_store=cache_store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging and the orchestrator; tear both down on shutdown."""
  settings = get_settings()
  initialize_logging(settings)
  logger.info("Starting generation orchestrator env=%s db=%s session=%s", settings.environment, redact_dsn(settings.pg_dsn), settings.session_id)

  runtime = await build_runtime(settings)
  app.state.orchestrator = runtime.orchestrator
  logger.info("Startup complete - orchestrator ready.")
  try:
    yield
  finally:
    await runtime.orchestrator.shutdown()
    await runtime.transport.close()
    runtime.cache_store.close()
    await dispose_engine()
    app.state.orchestrator = None
    logger.info("Shutdown complete.")


def redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
