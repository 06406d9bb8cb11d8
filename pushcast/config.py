"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from pushcast.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

# Upper bound for a single token-push attempt; FCM messages expire after one hour.
_TOKEN_PUSH_EXPIRY_SECONDS = 3600


@dataclass(frozen=True)
class Settings:
  """Typed settings for the pushcast service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_bodies: bool
  log_http_body_bytes: int
  pg_dsn: str | None
  pg_connect_timeout: int
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  firebase_client_email: str | None
  firebase_private_key: str | None
  token_push_enabled: bool
  token_push_timeout_seconds: float
  relay_push_enabled: bool
  relay_push_url: str
  relay_push_access_token: str | None
  relay_push_timeout_seconds: float
  dispatch_max_concurrency: int
  default_title: str
  treatment_api_base_url: str | None
  treatment_api_token: str | None
  treatment_api_timeout_seconds: float
  campaigns: tuple[str, ...]
  campaign_timezone: str
  campaign_max_concurrency: int
  campaign_status_messages: str
  campaign_skip_when_checked_in: bool
  ledger_cache_retention_hours: int
  ledger_log_retention_days: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("*",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("PUSHCAST_ALLOWED_ORIGINS must include at least one origin.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_list(raw: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
  if raw is None:
    return default

  return tuple(item.strip() for item in raw.split(",") if item.strip())


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("PUSHCAST_ENV", "development").lower()
  debug = _parse_bool(os.getenv("PUSHCAST_DEBUG"))

  log_max_bytes = _positive_int("PUSHCAST_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("PUSHCAST_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("PUSHCAST_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of HTTP request/response bodies with a size cap.
  log_http_bodies = _parse_bool(os.getenv("PUSHCAST_LOG_HTTP_BODIES"))
  log_http_body_bytes = _positive_int("PUSHCAST_LOG_HTTP_BODY_BYTES", "2048")

  token_push_timeout_seconds = _positive_float("PUSHCAST_TOKEN_PUSH_TIMEOUT_SECONDS", "30")
  if token_push_timeout_seconds > _TOKEN_PUSH_EXPIRY_SECONDS:
    raise ValueError("PUSHCAST_TOKEN_PUSH_TIMEOUT_SECONDS must not exceed the one hour message expiry.")

  relay_push_url = (os.getenv("PUSHCAST_RELAY_PUSH_URL") or "https://exp.host/--/api/v2/push/send").strip()
  if not relay_push_url.startswith(("https://", "http://")):
    raise ValueError("PUSHCAST_RELAY_PUSH_URL must be an http(s) URL.")

  campaign_status_messages = (os.getenv("PUSHCAST_CAMPAIGN_STATUS_MESSAGES") or "replace").strip().lower()
  if campaign_status_messages not in {"replace", "suppress"}:
    raise ValueError("PUSHCAST_CAMPAIGN_STATUS_MESSAGES must be 'replace' or 'suppress'.")

  ledger_cache_retention_hours = _positive_int("PUSHCAST_LEDGER_CACHE_RETENTION_HOURS", "48")
  ledger_log_retention_days = _positive_int("PUSHCAST_LEDGER_LOG_RETENTION_DAYS", "7")
  if ledger_cache_retention_hours > ledger_log_retention_days * 24:
    raise ValueError("PUSHCAST_LEDGER_CACHE_RETENTION_HOURS must not exceed the durable log retention.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("PUSHCAST_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("PUSHCAST_LOG_DIR") or "logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_bodies=log_http_bodies,
    log_http_body_bytes=log_http_body_bytes,
    pg_dsn=_optional_str(os.getenv("PUSHCAST_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_positive_int("PUSHCAST_PG_CONNECT_TIMEOUT", "5"),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    firebase_client_email=_optional_str(os.getenv("FIREBASE_CLIENT_EMAIL")),
    firebase_private_key=_optional_str(os.getenv("FIREBASE_PRIVATE_KEY")),
    token_push_enabled=_parse_bool(os.getenv("PUSHCAST_TOKEN_PUSH_ENABLED"), default=True),
    token_push_timeout_seconds=token_push_timeout_seconds,
    relay_push_enabled=_parse_bool(os.getenv("PUSHCAST_RELAY_PUSH_ENABLED"), default=True),
    relay_push_url=relay_push_url,
    relay_push_access_token=_optional_str(os.getenv("PUSHCAST_RELAY_PUSH_ACCESS_TOKEN")),
    relay_push_timeout_seconds=_positive_float("PUSHCAST_RELAY_PUSH_TIMEOUT_SECONDS", "30"),
    dispatch_max_concurrency=_positive_int("PUSHCAST_DISPATCH_MAX_CONCURRENCY", "50"),
    default_title=(os.getenv("PUSHCAST_DEFAULT_TITLE") or "Cxlus").strip(),
    treatment_api_base_url=_optional_str(os.getenv("PUSHCAST_TREATMENT_API_BASE_URL")),
    treatment_api_token=_optional_str(os.getenv("PUSHCAST_TREATMENT_API_TOKEN")),
    treatment_api_timeout_seconds=_positive_float("PUSHCAST_TREATMENT_API_TIMEOUT_SECONDS", "10"),
    campaigns=_parse_list(os.getenv("PUSHCAST_CAMPAIGNS"), ("hourly_reminder",)),
    campaign_timezone=(os.getenv("PUSHCAST_CAMPAIGN_TIMEZONE") or "Europe/London").strip(),
    campaign_max_concurrency=_positive_int("PUSHCAST_CAMPAIGN_MAX_CONCURRENCY", "10"),
    campaign_status_messages=campaign_status_messages,
    campaign_skip_when_checked_in=_parse_bool(os.getenv("PUSHCAST_CAMPAIGN_SKIP_WHEN_CHECKED_IN"), default=True),
    ledger_cache_retention_hours=ledger_cache_retention_hours,
    ledger_log_retention_days=ledger_log_retention_days,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("PUSHCAST_DEBUG"))
  pg_connect_timeout = _positive_int("PUSHCAST_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = _optional_str(os.getenv("PUSHCAST_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
