import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from pushcast.config import get_settings
from pushcast.core.database import dispose_engine
from pushcast.core.firebase import StartupConfigurationError, initialize_firebase
from pushcast.core.logging import initialize_logging
from pushcast.notifications.factory import build_campaign_scheduler, build_notification_service, build_send_ledger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Wire transports, storage and the campaign scheduler for the lifetime of the app."""
  settings = get_settings()
  logger = logging.getLogger("pushcast.core.lifespan")

  initialize_logging(settings)
  logger.info("Starting pushcast environment=%s database=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  try:
    firebase_app = initialize_firebase(settings)
  except StartupConfigurationError:
    # Fail fast: token push was requested but cannot work.
    logger.error("Firebase configuration failed; refusing to start the service.", exc_info=True)
    raise

  service = build_notification_service(settings, firebase_app=firebase_app)
  ledger = build_send_ledger(settings)
  scheduler = build_campaign_scheduler(settings, service=service, ledger=ledger)
  app.state.notification_service = service
  app.state.send_ledger = ledger
  app.state.campaign_scheduler = scheduler

  await ledger.rehydrate()
  await scheduler.start()
  logger.info("Startup complete.")

  try:
    yield
  finally:
    await scheduler.stop()
    await service.dispatcher.drain()
    await ledger.close()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
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
