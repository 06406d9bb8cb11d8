"""Five-field cron expressions evaluated against timezone-aware datetimes."""

from __future__ import annotations

import datetime
from dataclasses import dataclass


class CronParseError(ValueError):
  """Raised when a cron expression is malformed."""


@dataclass(frozen=True)
class _FieldSpec:
  name: str
  minimum: int
  maximum: int


_FIELDS = (
  _FieldSpec("minute", 0, 59),
  _FieldSpec("hour", 0, 23),
  _FieldSpec("day of month", 1, 31),
  _FieldSpec("month", 1, 12),
  _FieldSpec("day of week", 0, 7),
)


def _parse_field(raw: str, bounds: _FieldSpec) -> frozenset[int]:
  values: set[int] = set()
  for part in raw.split(","):
    if part == "":
      raise CronParseError(f"Empty entry in {bounds.name} field: {raw!r}")

    base, _, step_raw = part.partition("/")
    step = 1
    if step_raw:
      if not step_raw.isdigit() or int(step_raw) == 0:
        raise CronParseError(f"Invalid step in {bounds.name} field: {part!r}")
      step = int(step_raw)

    if base == "*":
      start, end = bounds.minimum, bounds.maximum
    elif "-" in base:
      start_raw, _, end_raw = base.partition("-")
      if not (start_raw.isdigit() and end_raw.isdigit()):
        raise CronParseError(f"Invalid range in {bounds.name} field: {part!r}")
      start, end = int(start_raw), int(end_raw)
    elif base.isdigit():
      start = int(base)
      # `5/15` means "from 5 to the end, every 15".
      end = bounds.maximum if step_raw else start
    else:
      raise CronParseError(f"Invalid value in {bounds.name} field: {part!r}")

    if start < bounds.minimum or end > bounds.maximum or start > end:
      raise CronParseError(f"{bounds.name} out of range: {part!r}")
    values.update(range(start, end + 1, step))
  return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
  """Parsed `minute hour day-of-month month day-of-week` expression."""

  expression: str
  minutes: frozenset[int]
  hours: frozenset[int]
  days_of_month: frozenset[int]
  months: frozenset[int]
  days_of_week: frozenset[int]
  dom_restricted: bool
  dow_restricted: bool

  @classmethod
  def parse(cls, expression: str) -> CronSchedule:
    parts = expression.split()
    if len(parts) != 5:
      raise CronParseError(f"Cron expression needs 5 fields, got {len(parts)}: {expression!r}")

    minutes, hours, days_of_month, months, days_of_week = (_parse_field(raw, bounds) for raw, bounds in zip(parts, _FIELDS, strict=True))
    # Both 0 and 7 mean Sunday.
    days_of_week = frozenset(0 if day == 7 else day for day in days_of_week)
    return cls(
      expression=expression,
      minutes=minutes,
      hours=hours,
      days_of_month=days_of_month,
      months=months,
      days_of_week=days_of_week,
      dom_restricted=not parts[2].startswith("*"),
      dow_restricted=not parts[4].startswith("*"),
    )

  def matches(self, moment: datetime.datetime) -> bool:
    """Return whether the schedule fires in the minute containing `moment` (wall-clock fields)."""
    if moment.minute not in self.minutes or moment.hour not in self.hours or moment.month not in self.months:
      return False

    cron_weekday = moment.isoweekday() % 7
    dom_match = moment.day in self.days_of_month
    dow_match = cron_weekday in self.days_of_week
    # Vixie cron: when both day fields are restricted, either one may match.
    if self.dom_restricted and self.dow_restricted:
      return dom_match or dow_match
    return dom_match and dow_match

  def __str__(self) -> str:
    return self.expression
