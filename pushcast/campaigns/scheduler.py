"""Cooperative scheduler that fires campaign jobs on their cron schedules."""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol

from pushcast.campaigns.content import ClockContext, RecipientTreatmentState, resolve, resolve_without_state
from pushcast.campaigns.jobs import CampaignJob
from pushcast.campaigns.ledger import SendLedger
from pushcast.notifications.contracts import ANONYMOUS_RECIPIENT, DeviceRegistration, NotificationRequest, RecipientScope
from pushcast.notifications.device_repo import DeviceRegistry
from pushcast.notifications.dispatcher import DispatchOrchestrator

logger = logging.getLogger(__name__)

RecipientResult = Literal["sent", "skipped", "failed", "duplicate"]


class TreatmentStateSource(Protocol):
  async def fetch_state(self, recipient_id: str) -> RecipientTreatmentState | None: ...


@dataclass(frozen=True)
class CampaignRunReport:
  job: str
  sent: int = 0
  skipped: int = 0
  failed: int = 0
  duplicates: int = 0

  @property
  def evaluated(self) -> int:
    return self.sent + self.skipped + self.failed + self.duplicates


class CampaignScheduler:
  """Evaluate every job once per wall-clock minute and run due jobs concurrently.

  Jobs never wait on each other. Within a job, recipients are processed concurrently
  up to `max_concurrency`, and a failure for one recipient is logged and counted
  without aborting the rest of the run.
  """

  def __init__(
    self,
    *,
    jobs: Sequence[CampaignJob],
    registry: DeviceRegistry,
    dispatcher: DispatchOrchestrator,
    ledger: SendLedger,
    state_source: TreatmentStateSource | None = None,
    max_concurrency: int = 10,
    clock: Callable[[], datetime.datetime] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  ) -> None:
    self._jobs = tuple(jobs)
    self._registry = registry
    self._dispatcher = dispatcher
    self._ledger = ledger
    self._state_source = state_source
    self._max_concurrency = max_concurrency
    self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))
    self._sleep = sleep
    self._running = False
    self._loop_task: asyncio.Task[None] | None = None
    self._runs: set[asyncio.Task[CampaignRunReport]] = set()
    self._last_minute: datetime.datetime | None = None

  @property
  def jobs(self) -> tuple[CampaignJob, ...]:
    return self._jobs

  @property
  def running(self) -> bool:
    return self._running

  async def start(self) -> None:
    """Start the background loop."""
    if self._running:
      logger.warning("Campaign scheduler already running")
      return
    if not self._jobs:
      logger.info("Campaign scheduler has no enabled jobs")
      return

    self._running = True
    self._loop_task = asyncio.create_task(self._run_loop())
    logger.info("Campaign scheduler started jobs=%s", ",".join(job.name for job in self._jobs))

  async def stop(self) -> None:
    """Stop firing new jobs and wait for in-flight runs to finish."""
    self._running = False
    if self._loop_task is not None:
      self._loop_task.cancel()
      await asyncio.gather(self._loop_task, return_exceptions=True)
      self._loop_task = None

    if self._runs:
      logger.info("Waiting for %s in-flight campaign runs", len(self._runs))
      await asyncio.gather(*list(self._runs), return_exceptions=True)
    logger.info("Campaign scheduler stopped")

  async def _run_loop(self) -> None:
    while self._running:
      now = self._clock()
      try:
        self.fire_due(now)
      except Exception as exc:  # noqa: BLE001
        logger.error("Campaign scheduler tick failed: %s", exc, exc_info=True)

      # Sleep until the start of the next minute.
      next_minute = now.replace(second=0, microsecond=0) + datetime.timedelta(minutes=1)
      await self._sleep(max(0.0, (next_minute - self._clock()).total_seconds()))

  def fire_due(self, now: datetime.datetime) -> list[asyncio.Task[CampaignRunReport]]:
    """Start a run task for every job due in the minute containing `now`, at most once per minute."""
    minute = now.replace(second=0, microsecond=0)
    if minute == self._last_minute or not self._running:
      return []
    self._last_minute = minute

    started: list[asyncio.Task[CampaignRunReport]] = []
    for job in self._jobs:
      if not job.is_due(minute):
        continue
      task = asyncio.create_task(self.run_job(job, now=minute), name=f"campaign:{job.name}")
      self._runs.add(task)
      task.add_done_callback(self._run_done)
      started.append(task)
    return started

  def _run_done(self, task: asyncio.Task[CampaignRunReport]) -> None:
    self._runs.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Campaign run %s failed: %s", task.get_name(), exc, exc_info=exc)

  async def run_job(self, job: CampaignJob, now: datetime.datetime | None = None) -> CampaignRunReport:
    """Evaluate one job for every known recipient and dispatch where content applies."""
    moment = now or self._clock()
    devices = await self._registry.list_devices()
    targets = self._targets(devices, all_devices=job.all_devices)
    logger.info("Campaign %s firing at %s for %s recipients", job.name, job.local_time(moment).isoformat(), len(targets))

    semaphore = asyncio.Semaphore(self._max_concurrency)

    async def _bounded(recipient_id: str, recipient_devices: list[DeviceRegistration]) -> RecipientResult:
      async with semaphore:
        return await self._run_recipient(job, recipient_id, recipient_devices, moment)

    results = await asyncio.gather(*(_bounded(recipient_id, recipient_devices) for recipient_id, recipient_devices in targets.items()))
    report = CampaignRunReport(
      job=job.name,
      sent=results.count("sent"),
      skipped=results.count("skipped"),
      failed=results.count("failed"),
      duplicates=results.count("duplicate"),
    )
    logger.info("Campaign %s finished sent=%s skipped=%s failed=%s duplicates=%s", job.name, report.sent, report.skipped, report.failed, report.duplicates)
    return report

  @staticmethod
  def _targets(devices: Sequence[DeviceRegistration], *, all_devices: bool) -> dict[str, list[DeviceRegistration]]:
    """Group devices per recipient in registration order; only the first device unless `all_devices`."""
    targets: dict[str, list[DeviceRegistration]] = {}
    for device in devices:
      if device.recipient_id == ANONYMOUS_RECIPIENT:
        continue
      recipient_devices = targets.setdefault(device.recipient_id, [])
      if all_devices or not recipient_devices:
        recipient_devices.append(device)
    return targets

  async def _run_recipient(self, job: CampaignJob, recipient_id: str, devices: list[DeviceRegistration], now: datetime.datetime) -> RecipientResult:
    try:
      clock = ClockContext(now=now, timezone=job.timezone)
      if self._state_source is None:
        content = resolve_without_state(job.kind, clock)
      else:
        state = await self._state_source.fetch_state(recipient_id)
        if state is None:
          # Unknown state: nothing is resolvable for this cycle.
          logger.info("Campaign %s skipped recipient=%s: treatment state unavailable", job.name, recipient_id)
          return "skipped"
        content = resolve(job.kind, state, clock, job.policy)
      if content is None:
        return "skipped"

      # Status messages share one key per variant per day across all jobs.
      ledger_kind = content.variant if content.is_status else job.kind.value
      period_key = job.period_key(now, is_status=content.is_status)
      if await self._ledger.was_sent(recipient_id, ledger_kind, period_key):
        return "duplicate"
      if not await self._ledger.mark_sent(recipient_id, ledger_kind, period_key):
        return "duplicate"

      request = NotificationRequest(title=content.title, body=content.body, kind=job.kind, metadata={"campaign": job.name, "variant": content.variant})
      summary = await self._dispatcher.dispatch(request, scope=RecipientScope(tokens=tuple(device.token for device in devices)))
      if summary.succeeded == 0:
        logger.warning("Campaign %s delivered nothing to recipient=%s failed=%s", job.name, recipient_id, summary.failed)
        return "failed"
      return "sent"
    except Exception as exc:  # noqa: BLE001
      logger.error("Campaign %s failed for recipient=%s: %s", job.name, recipient_id, exc, exc_info=True)
      return "failed"
