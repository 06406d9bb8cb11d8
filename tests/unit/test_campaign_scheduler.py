from __future__ import annotations

import asyncio
import dataclasses
import datetime

import httpx
import pytest

from pushcast.campaigns.content import ContentPolicy, RecipientTreatmentState, TreatmentProtocol, hourly_message
from pushcast.campaigns.jobs import build_jobs
from pushcast.campaigns.ledger import SendLedger
from pushcast.campaigns.scheduler import CampaignScheduler
from pushcast.campaigns.treatment_client import TreatmentStateClient
from pushcast.notifications.contracts import ERROR_TRANSIENT
from pushcast.notifications.device_repo import DeviceRegistrationEntry
from pushcast.notifications.send_log_repo import InMemorySendLogRepository

TEN_AM = datetime.datetime(2024, 1, 1, 10, 0, tzinfo=datetime.UTC)
ACTIVE = RecipientTreatmentState(active_protocols=(TreatmentProtocol(protocol_id="p1", progress_percent=20.0),))


class FakeStateSource:
  def __init__(self, states: dict[str, RecipientTreatmentState | Exception | None] | None = None) -> None:
    self.states = states or {}
    self.calls: list[str] = []

  async def fetch_state(self, recipient_id: str) -> RecipientTreatmentState | None:
    self.calls.append(recipient_id)
    state = self.states.get(recipient_id, ACTIVE)
    if isinstance(state, Exception):
      raise state
    return state


@pytest.fixture
def ledger() -> SendLedger:
  return SendLedger(store=InMemorySendLogRepository(), clock=lambda: TEN_AM)


@pytest.fixture
def hourly_job():
  return build_jobs(["hourly_reminder"], timezone="Europe/London")[0]


def _scheduler(registry, dispatcher, ledger, jobs, state_source=None, **kwargs) -> CampaignScheduler:
  return CampaignScheduler(jobs=jobs, registry=registry, dispatcher=dispatcher, ledger=ledger, state_source=state_source, **kwargs)


async def _register(registry, token: str, recipient_id: str | None) -> None:
  await registry.upsert(DeviceRegistrationEntry(token=token, recipient_id=recipient_id))


@pytest.mark.anyio
async def test_run_job_sends_once_per_period(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-1", "u1")
  await _register(registry, "fcm-token-2", "u2")
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job])

  first = await scheduler.run_job(hourly_job, now=TEN_AM)
  second = await scheduler.run_job(hourly_job, now=TEN_AM + datetime.timedelta(minutes=1))

  assert (first.sent, first.duplicates) == (2, 0)
  assert (second.sent, second.duplicates) == (0, 2)
  assert len(token_sender.sent) == 2
  assert token_sender.sent[0].body == hourly_message(10)
  assert token_sender.sent[0].data["campaign"] == "hourly_reminder"
  await ledger.close()


@pytest.mark.anyio
async def test_next_hour_is_a_new_period(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-1", "u1")
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job])

  await scheduler.run_job(hourly_job, now=TEN_AM)
  report = await scheduler.run_job(hourly_job, now=TEN_AM + datetime.timedelta(hours=1))

  assert report.sent == 1
  assert token_sender.sent[1].body == hourly_message(11)
  await ledger.close()


@pytest.mark.anyio
async def test_only_first_registered_device_is_targeted(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-old", "u1")
  await _register(registry, "fcm-token-new", "u1")
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job])

  report = await scheduler.run_job(hourly_job, now=TEN_AM)

  assert report.sent == 1
  assert [message.token for message in token_sender.sent] == ["fcm-token-old"]
  await ledger.close()


@pytest.mark.anyio
async def test_all_devices_job_targets_every_device(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-old", "u1")
  await _register(registry, "fcm-token-new", "u1")
  job = dataclasses.replace(hourly_job, all_devices=True)
  scheduler = _scheduler(registry, dispatcher, ledger, [job])

  report = await scheduler.run_job(job, now=TEN_AM)

  assert report.sent == 1
  assert sorted(message.token for message in token_sender.sent) == ["fcm-token-new", "fcm-token-old"]
  await ledger.close()


@pytest.mark.anyio
async def test_anonymous_devices_are_not_campaign_targets(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-anon", None)
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job])

  report = await scheduler.run_job(hourly_job, now=TEN_AM)

  assert report.evaluated == 0
  assert token_sender.sent == []
  await ledger.close()


@pytest.mark.anyio
async def test_one_recipient_failing_does_not_stop_the_run(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-1", "u1")
  await _register(registry, "fcm-token-2", "u2")
  source = FakeStateSource({"u1": RuntimeError("treatment api exploded")})
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job], state_source=source)

  report = await scheduler.run_job(hourly_job, now=TEN_AM)

  assert (report.sent, report.failed) == (1, 1)
  assert [message.token for message in token_sender.sent] == ["fcm-token-2"]
  await ledger.close()


@pytest.mark.anyio
async def test_failed_delivery_is_reported_and_not_retried(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-1", "u1")
  token_sender.fail("fcm-token-1", ERROR_TRANSIENT)
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job])

  first = await scheduler.run_job(hourly_job, now=TEN_AM)
  second = await scheduler.run_job(hourly_job, now=TEN_AM)

  assert first.failed == 1
  assert second.duplicates == 1
  await ledger.close()


@pytest.mark.anyio
async def test_unavailable_treatment_api_sends_nothing(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-1", "u1")
  client = TreatmentStateClient(base_url="https://treatment.example.test", transport=httpx.MockTransport(lambda request: httpx.Response(503)))
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job], state_source=client)

  report = await scheduler.run_job(hourly_job, now=TEN_AM)

  assert (report.sent, report.skipped) == (0, 1)
  assert token_sender.sent == []
  assert await ledger.was_sent("u1", "hourly_reminder", "2024-01-01_10") is False
  await ledger.close()


@pytest.mark.anyio
async def test_unknown_state_is_retried_next_cycle(registry, dispatcher, token_sender, ledger, hourly_job):
  await _register(registry, "fcm-token-1", "u1")
  source = FakeStateSource({"u1": None})
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job], state_source=source)

  first = await scheduler.run_job(hourly_job, now=TEN_AM)
  source.states["u1"] = ACTIVE
  second = await scheduler.run_job(hourly_job, now=TEN_AM + datetime.timedelta(minutes=1))

  assert first.skipped == 1
  assert second.sent == 1
  await ledger.close()


@pytest.mark.anyio
async def test_without_treatment_api_only_state_free_content_is_sent(registry, dispatcher, token_sender, ledger):
  await _register(registry, "fcm-token-1", "u1")
  jobs = build_jobs(["hourly_reminder", "morning_tasks"])
  scheduler = _scheduler(registry, dispatcher, ledger, jobs)

  hourly = await scheduler.run_job(jobs[0], now=TEN_AM)
  morning = await scheduler.run_job(jobs[1], now=TEN_AM)

  assert hourly.sent == 1
  assert morning.skipped == 1
  await ledger.close()


@pytest.mark.anyio
async def test_checked_in_recipient_is_skipped(registry, dispatcher, token_sender, ledger):
  await _register(registry, "fcm-token-1", "u1")
  await _register(registry, "fcm-token-2", "u2")
  checked_in = RecipientTreatmentState(active_protocols=(TreatmentProtocol(protocol_id="p1", progress_percent=20.0, has_checkin_today=True),))
  job = build_jobs(["hourly_reminder"], policy=ContentPolicy(skip_when_checked_in=True))[0]
  scheduler = _scheduler(registry, dispatcher, ledger, [job], state_source=FakeStateSource({"u1": checked_in}))

  report = await scheduler.run_job(job, now=TEN_AM)

  assert (report.sent, report.skipped) == (1, 1)
  assert [message.token for message in token_sender.sent] == ["fcm-token-2"]
  await ledger.close()


@pytest.mark.anyio
async def test_status_message_is_sent_once_per_day_across_jobs(registry, dispatcher, token_sender, ledger):
  await _register(registry, "fcm-token-1", "u1")
  jobs = build_jobs(["hourly_reminder", "morning_tasks"])
  source = FakeStateSource({"u1": RecipientTreatmentState()})
  scheduler = _scheduler(registry, dispatcher, ledger, jobs, state_source=source)

  hourly = await scheduler.run_job(jobs[0], now=TEN_AM)
  later_hour = await scheduler.run_job(jobs[0], now=TEN_AM + datetime.timedelta(hours=1))
  morning = await scheduler.run_job(jobs[1], now=TEN_AM)

  assert hourly.sent == 1
  assert later_hour.duplicates == 1
  assert morning.duplicates == 1
  assert token_sender.sent[0].data["variant"] == "no_treatment"
  await ledger.close()


@pytest.mark.anyio
async def test_fire_due_runs_due_jobs_once_per_minute(registry, dispatcher, token_sender, ledger):
  await _register(registry, "fcm-token-1", "u1")
  jobs = build_jobs(["hourly_reminder", "morning_tasks"])
  parked = asyncio.Event()

  async def _park(_seconds: float) -> None:
    await parked.wait()

  scheduler = _scheduler(registry, dispatcher, ledger, jobs, clock=lambda: TEN_AM - datetime.timedelta(minutes=30), sleep=_park)
  await scheduler.start()

  started = scheduler.fire_due(TEN_AM)
  again = scheduler.fire_due(TEN_AM + datetime.timedelta(seconds=30))
  reports = await asyncio.gather(*started)

  assert [task.get_name() for task in started] == ["campaign:hourly_reminder"]
  assert again == []
  assert reports[0].sent == 1
  await scheduler.stop()
  await ledger.close()


@pytest.mark.anyio
async def test_fire_due_does_nothing_when_stopped(registry, dispatcher, ledger, hourly_job):
  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job])

  assert scheduler.fire_due(TEN_AM) == []


@pytest.mark.anyio
async def test_start_and_stop(registry, dispatcher, ledger, hourly_job):
  parked = asyncio.Event()

  async def _park(_seconds: float) -> None:
    await parked.wait()

  scheduler = _scheduler(registry, dispatcher, ledger, [hourly_job], clock=lambda: TEN_AM + datetime.timedelta(minutes=5), sleep=_park)

  await scheduler.start()
  assert scheduler.running is True
  await scheduler.start()

  await scheduler.stop()
  assert scheduler.running is False


@pytest.mark.anyio
async def test_scheduler_without_jobs_does_not_start(registry, dispatcher, ledger):
  scheduler = _scheduler(registry, dispatcher, ledger, [])

  await scheduler.start()

  assert scheduler.running is False
  await scheduler.stop()
