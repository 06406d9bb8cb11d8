"""Static catalogue of recurring campaign jobs."""

from __future__ import annotations

import datetime
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal
from zoneinfo import ZoneInfo

from pushcast.campaigns.content import ContentPolicy
from pushcast.campaigns.cron import CronSchedule
from pushcast.campaigns.ledger import daily_period_key, hourly_period_key
from pushcast.notifications.contracts import NotificationKind

Granularity = Literal["daily", "hourly"]


@dataclass(frozen=True)
class CampaignJob:
  """One recurring campaign; defined at startup and never mutated."""

  name: str
  schedule: CronSchedule
  timezone: ZoneInfo
  kind: NotificationKind
  policy: ContentPolicy = field(default_factory=ContentPolicy)
  granularity: Granularity = "daily"
  all_devices: bool = False

  def local_time(self, moment: datetime.datetime) -> datetime.datetime:
    return moment.astimezone(self.timezone)

  def is_due(self, moment: datetime.datetime) -> bool:
    return self.schedule.matches(self.local_time(moment))

  def period_key(self, moment: datetime.datetime, *, is_status: bool = False) -> str:
    """Status messages dedupe per day; regular content uses the job's granularity."""
    if is_status or self.granularity == "daily":
      return daily_period_key(moment, self.timezone)
    return hourly_period_key(moment, self.timezone)


_CATALOGUE: dict[str, tuple[str, NotificationKind, Granularity]] = {
  "morning_tasks": ("0 8 * * *", NotificationKind.MORNING_TASKS, "daily"),
  "afternoon_reminder": ("0 14 * * *", NotificationKind.AFTERNOON_REMINDER, "daily"),
  "evening_summary": ("0 20 * * *", NotificationKind.EVENING_SUMMARY, "daily"),
  "hourly_reminder": ("0 * * * *", NotificationKind.HOURLY_REMINDER, "hourly"),
}


def available_jobs() -> tuple[str, ...]:
  return tuple(_CATALOGUE)


def build_jobs(names: Iterable[str], *, timezone: str = "Europe/London", policy: ContentPolicy | None = None) -> list[CampaignJob]:
  """Build the enabled jobs by name; unknown names are rejected at startup."""
  zone = ZoneInfo(timezone)
  jobs: list[CampaignJob] = []
  for name in names:
    if name not in _CATALOGUE:
      raise ValueError(f"Unknown campaign {name!r}; expected one of {', '.join(_CATALOGUE)}")
    expression, kind, granularity = _CATALOGUE[name]
    jobs.append(CampaignJob(name=name, schedule=CronSchedule.parse(expression), timezone=zone, kind=kind, policy=policy or ContentPolicy(), granularity=granularity))
  return jobs
