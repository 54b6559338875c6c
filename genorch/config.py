"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from functools import lru_cache

_BACKOFF_MODES = {"fixed", "linear", "exponential"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the generation orchestrator service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  notify_channel: str
  worker_base_url: str | None
  worker_api_key: str | None
  worker_timeout_seconds: float
  task_secret: str | None
  poll_interval_seconds: float
  job_timeout_seconds: float
  push_throttle_seconds: float
  push_reconnect_attempts: int
  push_reconnect_delay_seconds: float
  retry_max_attempts: int
  retry_base_delay_seconds: float
  retry_backoff: str
  submission_spacing_seconds: float
  cache_ttl_seconds: int | None
  session_cache_url: str
  session_id: str
  adopt_live_jobs: bool


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("GENORCH_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("GENORCH_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("GENORCH_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("GENORCH_ENV", "development").lower()

  # Toggle verbose diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("GENORCH_DEBUG"))

  log_max_bytes = _positive_int("GENORCH_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("GENORCH_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("GENORCH_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Timing knobs for the push/poll synchronization loops.
  poll_interval_seconds = _positive_float("GENORCH_POLL_INTERVAL_SECONDS", "4")
  job_timeout_seconds = _positive_float("GENORCH_JOB_TIMEOUT_SECONDS", "120")
  if poll_interval_seconds >= job_timeout_seconds:
    raise ValueError("GENORCH_POLL_INTERVAL_SECONDS must be lower than GENORCH_JOB_TIMEOUT_SECONDS.")

  push_throttle_seconds = float(os.getenv("GENORCH_PUSH_THROTTLE_SECONDS", "2"))
  if push_throttle_seconds < 0:
    raise ValueError("GENORCH_PUSH_THROTTLE_SECONDS must be zero or positive.")

  push_reconnect_attempts = int(os.getenv("GENORCH_PUSH_RECONNECT_ATTEMPTS", "1"))
  if push_reconnect_attempts < 0:
    raise ValueError("GENORCH_PUSH_RECONNECT_ATTEMPTS must be zero or a positive integer.")

  push_reconnect_delay_seconds = float(os.getenv("GENORCH_PUSH_RECONNECT_DELAY_SECONDS", "6"))
  if push_reconnect_delay_seconds < 0:
    raise ValueError("GENORCH_PUSH_RECONNECT_DELAY_SECONDS must be zero or positive.")

  retry_backoff = os.getenv("GENORCH_RETRY_BACKOFF", "exponential").strip().lower()
  if retry_backoff not in _BACKOFF_MODES:
    raise ValueError(f"GENORCH_RETRY_BACKOFF must be one of {sorted(_BACKOFF_MODES)}.")

  submission_spacing_seconds = float(os.getenv("GENORCH_SUBMISSION_SPACING_SECONDS", "1.5"))
  if submission_spacing_seconds < 0:
    raise ValueError("GENORCH_SUBMISSION_SPACING_SECONDS must be zero or positive.")

  # A fresh session id per process unless the operator pins one to keep the durable cache.
  session_id = _optional_str(os.getenv("GENORCH_SESSION_ID")) or uuid.uuid4().hex

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("GENORCH_ALLOWED_ORIGINS")),
    debug=debug,
    log_dir=(os.getenv("GENORCH_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("GENORCH_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("GENORCH_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("GENORCH_PG_CONNECT_TIMEOUT", "5"),
    notify_channel=(os.getenv("GENORCH_NOTIFY_CHANNEL") or "generation_jobs").strip(),
    worker_base_url=_optional_str(os.getenv("GENORCH_WORKER_BASE_URL")),
    worker_api_key=_optional_str(os.getenv("GENORCH_WORKER_API_KEY")),
    worker_timeout_seconds=_positive_float("GENORCH_WORKER_TIMEOUT_SECONDS", "30"),
    task_secret=_optional_str(os.getenv("GENORCH_TASK_SECRET")),
    poll_interval_seconds=poll_interval_seconds,
    job_timeout_seconds=job_timeout_seconds,
    push_throttle_seconds=push_throttle_seconds,
    push_reconnect_attempts=push_reconnect_attempts,
    push_reconnect_delay_seconds=push_reconnect_delay_seconds,
    retry_max_attempts=_positive_int("GENORCH_RETRY_MAX_ATTEMPTS", "3"),
    retry_base_delay_seconds=_positive_float("GENORCH_RETRY_BASE_DELAY_SECONDS", "1.5"),
    retry_backoff=retry_backoff,
    submission_spacing_seconds=submission_spacing_seconds,
    cache_ttl_seconds=_parse_optional_int(os.getenv("GENORCH_CACHE_TTL_SECONDS")),
    session_cache_url=(os.getenv("GENORCH_SESSION_CACHE_URL") or "sqlite:///./genorch_session_cache.db").strip(),
    session_id=session_id,
    adopt_live_jobs=_parse_bool(os.getenv("GENORCH_ADOPT_LIVE_JOBS"), default=True),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("GENORCH_DEBUG"))
  pg_connect_timeout = _positive_int("GENORCH_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("GENORCH_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _parse_optional_int(raw: str | None) -> int | None:
  if raw is None or raw.strip() == "":
    return None

  value = int(raw)

  if value <= 0:
    raise ValueError("Optional TTL seconds must be positive when provided.")

  return value
