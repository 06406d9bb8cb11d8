"""Decide which campaign message, if any, a recipient should receive."""

from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from typing import Literal

from pushcast.notifications.contracts import NotificationKind

StatusMessagePolicy = Literal["replace", "suppress"]

HOURLY_TITLE = "Check-in Reminder"
HOURLY_FALLBACK = "Time to complete your daily check-in."

_HOURLY_MESSAGES = {
  0: "Time for your midnight check-in. Your health matters even at this hour.",
  1: "Late night check-in reminder. Every update helps your progress.",
  2: "Night owl? Take a moment for your health check-in.",
  3: "Early hours check-in reminder. Your dedication is admirable.",
  4: "Pre-dawn check-in time. Stay committed to your health journey.",
  5: "Early morning check-in reminder. Start your day with good habits.",
  6: "Morning check-in time. Begin your day with a health update.",
  7: "Breakfast time check-in. How are you feeling this morning?",
  8: "Morning routine check-in. Track your progress as the day begins.",
  9: "Mid-morning check-in reminder. Keep your treatment on track.",
  10: "Late morning check-in. Your consistent updates help your progress.",
  11: "Almost noon check-in. Take a moment to record your status.",
  12: "Noon check-in time. How is your day progressing?",
  13: "Early afternoon reminder. Your check-in matters.",
  14: "Afternoon check-in time. Stay engaged with your treatment.",
  15: "Mid-afternoon reminder. Your updates help your healthcare team.",
  16: "Late afternoon check-in. Keep up with your health tracking.",
  17: "Evening approaching. Time for your health check-in.",
  18: "Early evening reminder. Your consistent updates matter.",
  19: "Evening check-in time. Reflect on your day's progress.",
  20: "Night-time check-in reminder. Your dedication shows.",
  21: "Getting late - time for your daily check-in.",
  22: "Late evening reminder. Complete your daily health update.",
  23: "Late night check-in time. End your day with good habits.",
}


@dataclass(frozen=True)
class DayTask:
  task_id: str
  title: str | None = None
  completed: bool = False


@dataclass(frozen=True)
class TreatmentProtocol:
  protocol_id: str
  name: str | None = None
  start_date: datetime.datetime | None = None
  progress_percent: float = 0.0
  has_checkin_today: bool = False


@dataclass(frozen=True)
class RecipientTreatmentState:
  """Read-only snapshot of one recipient's treatment, valid for a single evaluation."""

  active_protocols: tuple[TreatmentProtocol, ...] = ()
  pending_protocols: tuple[TreatmentProtocol, ...] = ()
  current_day_tasks: tuple[DayTask, ...] = ()

  @property
  def progress_percent(self) -> float:
    if not self.active_protocols:
      return 0.0
    return self.active_protocols[0].progress_percent

  @property
  def has_checkin_today(self) -> bool:
    return bool(self.active_protocols) and self.active_protocols[0].has_checkin_today


@dataclass(frozen=True)
class ClockContext:
  now: datetime.datetime
  timezone: datetime.tzinfo

  @property
  def local_now(self) -> datetime.datetime:
    return self.now.astimezone(self.timezone)


@dataclass(frozen=True)
class ContentPolicy:
  skip_when_checked_in: bool = False
  status_messages: StatusMessagePolicy = "replace"


@dataclass(frozen=True)
class MessageContent:
  title: str
  body: str
  variant: str
  is_status: bool = False


def days_until(start: datetime.datetime | None, now: datetime.datetime) -> int:
  """Whole days until a start date, rounded up and clamped at zero."""
  if start is None:
    return 0
  if start.tzinfo is None:
    start = start.replace(tzinfo=datetime.UTC)
  return max(0, math.ceil((start - now).total_seconds() / 86400))


def hourly_message(hour: int) -> str:
  return _HOURLY_MESSAGES.get(hour, HOURLY_FALLBACK)


def _status_content(state: RecipientTreatmentState, clock: ClockContext) -> MessageContent | None:
  if not state.active_protocols and not state.pending_protocols:
    return MessageContent(title="Welcome to Cxlus! 👋", body="No active treatment yet. Contact your doctor to start your journey!", variant="no_treatment", is_status=True)

  if state.pending_protocols and not state.active_protocols:
    days = days_until(state.pending_protocols[0].start_date, clock.now)
    if days == 0:
      when = "today"
    elif days == 1:
      when = "in 1 day"
    else:
      when = f"in {days} days"
    return MessageContent(title="Treatment Starting Soon! 🎯", body=f"Your treatment plan begins {when}. Get ready for your transformation journey!", variant="starting_soon", is_status=True)

  if state.progress_percent >= 100:
    return MessageContent(title="Treatment Complete! 🎉", body="Congratulations on completing your treatment! Schedule a follow-up with your doctor.", variant="completed", is_status=True)

  return None


def _plural(count: int, word: str) -> str:
  return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _task_content(kind: NotificationKind, state: RecipientTreatmentState, clock: ClockContext) -> MessageContent | None:
  tasks = state.current_day_tasks
  total = len(tasks)
  completed = sum(1 for task in tasks if task.completed)
  remaining = total - completed

  if kind is NotificationKind.MORNING_TASKS:
    if remaining == 0:
      return None
    return MessageContent(title="Good Morning! ☀️", body=f"You have {_plural(remaining, 'task')} for today. Let's make it a great day!", variant="morning_tasks")

  if kind is NotificationKind.AFTERNOON_REMINDER:
    if remaining == 0:
      return None
    return MessageContent(title="Afternoon Check-in 🕑", body=f"You still have {_plural(remaining, 'task')} to complete today. Keep going!", variant="afternoon_reminder")

  if kind is NotificationKind.EVENING_SUMMARY:
    if total == 0:
      return None
    if completed == total:
      return MessageContent(title="Daily Summary 🌙", body=f"You completed {completed}/{total} tasks today. Excellent work!", variant="evening_summary_complete")
    return MessageContent(title="Daily Summary 🌙", body=f"You completed {completed}/{total} tasks today. Tomorrow is a new opportunity!", variant="evening_summary")

  if kind is NotificationKind.HOURLY_REMINDER:
    return MessageContent(title=HOURLY_TITLE, body=hourly_message(clock.local_now.hour), variant="hourly_reminder")

  return None


def resolve(kind: NotificationKind, state: RecipientTreatmentState, clock: ClockContext, policy: ContentPolicy | None = None) -> MessageContent | None:
  """Pick the message for a recipient; status messages take priority over kind-specific reminders."""
  policy = policy or ContentPolicy()
  if kind is NotificationKind.CUSTOM:
    return None

  status = _status_content(state, clock)
  if status is not None:
    return status if policy.status_messages == "replace" else None

  if policy.skip_when_checked_in and state.has_checkin_today:
    return None

  return _task_content(kind, state, clock)


def resolve_without_state(kind: NotificationKind, clock: ClockContext) -> MessageContent | None:
  """Content for when treatment state is unavailable; only state-independent kinds resolve."""
  if kind is NotificationKind.CUSTOM:
    return None
  return _task_content(kind, RecipientTreatmentState(), clock)
