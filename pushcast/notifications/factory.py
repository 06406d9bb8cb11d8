"""Factory helpers for notification and campaign services."""

from __future__ import annotations

import datetime
import logging
from zoneinfo import ZoneInfo

import firebase_admin

from pushcast.campaigns.content import ContentPolicy
from pushcast.campaigns.jobs import build_jobs
from pushcast.campaigns.ledger import SendLedger, SendLogStore
from pushcast.campaigns.scheduler import CampaignScheduler
from pushcast.campaigns.treatment_client import TreatmentStateClient
from pushcast.config import Settings
from pushcast.notifications.contracts import RelayPushSender, TokenPushSender
from pushcast.notifications.device_repo import DeviceRegistrationRepository, DeviceRegistry, InMemoryDeviceRegistrationRepository
from pushcast.notifications.dispatcher import DispatchOrchestrator
from pushcast.notifications.relay_push import ExpoRelayPushSender, NullRelayPushSender
from pushcast.notifications.send_log_repo import InMemorySendLogRepository, SendLogRepository
from pushcast.notifications.service import NotificationService
from pushcast.notifications.token_push import FirebaseTokenPushSender, NullTokenPushSender

logger = logging.getLogger(__name__)


def build_device_registry(settings: Settings) -> DeviceRegistry:
  # Registrations only survive restarts when Postgres is configured.
  if settings.pg_dsn:
    return DeviceRegistrationRepository()
  logger.warning("PUSHCAST_PG_DSN is not set; device registrations are kept in memory only.")
  return InMemoryDeviceRegistrationRepository()


def build_notification_service(settings: Settings, *, firebase_app: firebase_admin.App | None = None, registry: DeviceRegistry | None = None) -> NotificationService:
  """Construct the notification service based on environment configuration."""
  if settings.token_push_enabled and firebase_app is not None:
    token_sender: TokenPushSender = FirebaseTokenPushSender(app=firebase_app, timeout_seconds=settings.token_push_timeout_seconds)
  else:
    token_sender = NullTokenPushSender()

  if settings.relay_push_enabled:
    relay_sender: RelayPushSender = ExpoRelayPushSender(url=settings.relay_push_url, access_token=settings.relay_push_access_token, timeout_seconds=settings.relay_push_timeout_seconds)
  else:
    relay_sender = NullRelayPushSender()

  registry = registry or build_device_registry(settings)
  dispatcher = DispatchOrchestrator(registry=registry, token_sender=token_sender, relay_sender=relay_sender, max_concurrency=settings.dispatch_max_concurrency)
  return NotificationService(registry=registry, dispatcher=dispatcher)


def build_send_ledger(settings: Settings) -> SendLedger:
  store: SendLogStore = SendLogRepository() if settings.pg_dsn else InMemorySendLogRepository()
  return SendLedger(
    store=store,
    timezone=ZoneInfo(settings.campaign_timezone),
    cache_retention=datetime.timedelta(hours=settings.ledger_cache_retention_hours),
    log_retention=datetime.timedelta(days=settings.ledger_log_retention_days),
  )


def build_campaign_scheduler(settings: Settings, *, service: NotificationService, ledger: SendLedger) -> CampaignScheduler:
  """Build the scheduler for the enabled campaigns."""
  policy = ContentPolicy(skip_when_checked_in=settings.campaign_skip_when_checked_in, status_messages=settings.campaign_status_messages)
  jobs = build_jobs(settings.campaigns, timezone=settings.campaign_timezone, policy=policy)

  state_source = None
  if settings.treatment_api_base_url:
    state_source = TreatmentStateClient(base_url=settings.treatment_api_base_url, api_token=settings.treatment_api_token, timeout_seconds=settings.treatment_api_timeout_seconds)
  else:
    logger.warning("PUSHCAST_TREATMENT_API_BASE_URL is not set; campaigns only send state-independent reminders.")

  return CampaignScheduler(jobs=jobs, registry=service.registry, dispatcher=service.dispatcher, ledger=ledger, state_source=state_source, max_concurrency=settings.campaign_max_concurrency)
