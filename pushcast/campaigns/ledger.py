"""Two-tier record of campaign sends used to avoid duplicate reminders."""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable
from typing import Protocol
from zoneinfo import ZoneInfo

from pushcast.notifications.send_log_repo import SendKey, SendRecord

logger = logging.getLogger(__name__)


class SendLogStore(Protocol):
  async def exists(self, key: SendKey) -> bool: ...

  async def insert_if_absent(self, record: SendRecord) -> bool: ...

  async def list_since(self, since: datetime.datetime) -> list[SendRecord]: ...

  async def delete_older_than(self, cutoff: datetime.datetime) -> int: ...


def daily_period_key(moment: datetime.datetime, timezone: datetime.tzinfo | None = None) -> str:
  """Return the `YYYY-MM-DD` period for a moment, in the given timezone when provided."""
  local = moment.astimezone(timezone) if timezone is not None else moment
  return local.strftime("%Y-%m-%d")


def hourly_period_key(moment: datetime.datetime, timezone: datetime.tzinfo | None = None) -> str:
  """Return the `YYYY-MM-DD_HH` period for a moment, in the given timezone when provided."""
  local = moment.astimezone(timezone) if timezone is not None else moment
  return local.strftime("%Y-%m-%d_%H")


class SendLedger:
  """Process-local cache in front of a durable send log.

  The cache is authoritative for "already sent" within this process; the durable log
  survives restarts and is consulted on cache misses. Durable failures are logged and
  never roll back the cache.
  """

  def __init__(
    self,
    *,
    store: SendLogStore,
    timezone: datetime.tzinfo | None = None,
    cache_retention: datetime.timedelta = datetime.timedelta(hours=48),
    log_retention: datetime.timedelta = datetime.timedelta(days=7),
    clock: Callable[[], datetime.datetime] | None = None,
  ) -> None:
    self._store = store
    self._timezone = timezone or ZoneInfo("UTC")
    self._cache_retention = cache_retention
    self._log_retention = log_retention
    self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))
    self._cache: dict[SendKey, datetime.datetime] = {}
    self._sweep_task: asyncio.Task[None] | None = None

  def __contains__(self, key: object) -> bool:
    return key in self._cache

  async def was_sent(self, recipient_id: str, kind: str, period_key: str) -> bool:
    """Check the cache, then the durable log; durable hits are back-filled into the cache."""
    key = SendKey(recipient_id=recipient_id, kind=kind, period_key=period_key)
    if key in self._cache:
      return True

    try:
      exists = await self._store.exists(key)
    except Exception as exc:  # noqa: BLE001
      logger.error("Send log lookup failed recipient=%s kind=%s period=%s: %s", recipient_id, kind, period_key, exc)
      return False

    if exists:
      self._cache.setdefault(key, self._clock())
    return exists

  async def mark_sent(self, recipient_id: str, kind: str, period_key: str) -> bool:
    """Claim a key; returns False when it was already recorded in the cache or durably."""
    key = SendKey(recipient_id=recipient_id, kind=kind, period_key=period_key)
    if key in self._cache:
      return False

    # The cache write happens before any await so concurrent claims in this process cannot both win.
    now = self._clock()
    self._cache[key] = now
    try:
      inserted = await self._store.insert_if_absent(SendRecord(key=key, sent_at=now))
    except Exception as exc:  # noqa: BLE001
      logger.error("Send log insert failed recipient=%s kind=%s period=%s: %s", recipient_id, kind, period_key, exc)
      inserted = True

    self._sweep(now)
    if not inserted:
      logger.info("Send already recorded durably recipient=%s kind=%s period=%s", recipient_id, kind, period_key)
    return inserted

  async def rehydrate(self, now: datetime.datetime | None = None) -> int:
    """Load records sent since the start of today so a restart does not resend them."""
    moment = (now or self._clock()).astimezone(self._timezone)
    start_of_day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    try:
      records = await self._store.list_since(start_of_day)
    except Exception as exc:  # noqa: BLE001
      logger.error("Send log rehydration failed: %s", exc, exc_info=True)
      return 0

    for record in records:
      self._cache[record.key] = record.sent_at
    logger.info("Rehydrated %s send records since %s", len(records), start_of_day.isoformat())
    return len(records)

  def _sweep(self, now: datetime.datetime) -> None:
    cache_cutoff = now - self._cache_retention
    expired = [key for key, sent_at in self._cache.items() if sent_at < cache_cutoff]
    for key in expired:
      del self._cache[key]

    if self._sweep_task is None or self._sweep_task.done():
      self._sweep_task = asyncio.create_task(self._sweep_durable(now - self._log_retention))
      self._sweep_task.add_done_callback(self._log_sweep_error)

  async def _sweep_durable(self, cutoff: datetime.datetime) -> None:
    removed = await self._store.delete_older_than(cutoff)
    if removed:
      logger.info("Removed %s send log rows older than %s", removed, cutoff.isoformat())

  @staticmethod
  def _log_sweep_error(task: asyncio.Task[None]) -> None:
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Send log retention sweep failed: %s", exc, exc_info=exc)

  async def close(self) -> None:
    """Wait for an in-flight sweep and clear the cache."""
    if self._sweep_task is not None:
      await asyncio.gather(self._sweep_task, return_exceptions=True)
      self._sweep_task = None
    self._cache.clear()
