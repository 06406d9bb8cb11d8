"""Contracts shared by push transports, the dispatcher and campaigns."""

from __future__ import annotations

import datetime
import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

ANONYMOUS_RECIPIENT = "anonymous"

ERROR_NO_TRANSPORT = "no-transport"
ERROR_INVALID_TOKEN = "invalid-token"
ERROR_UNREGISTERED = "unregistered"
ERROR_TIMEOUT = "timeout"
ERROR_TRANSIENT = "transient"
ERROR_PROVIDER = "provider-error"
ERROR_RELAY = "relay-error"
ERROR_RELAY_UNAVAILABLE = "relay-unavailable"
ERROR_RELAY_MISSING_TICKET = "relay-missing-ticket"


class Platform(str, enum.Enum):
  IOS = "ios"
  ANDROID = "android"
  UNKNOWN = "unknown"

  @classmethod
  def parse(cls, raw: str | None) -> Platform:
    """Map free-form client input onto a known platform; registrations default to iOS."""
    if raw is None or raw.strip() == "":
      return cls.IOS
    try:
      return cls(raw.strip().lower())
    except ValueError:
      return cls.UNKNOWN


class Transport(str, enum.Enum):
  TOKEN_PUSH = "token-push"
  RELAY_PUSH = "relay-push"


class NotificationKind(str, enum.Enum):
  MORNING_TASKS = "morning_tasks"
  AFTERNOON_REMINDER = "afternoon_reminder"
  EVENING_SUMMARY = "evening_summary"
  HOURLY_REMINDER = "hourly_reminder"
  CUSTOM = "custom"


@dataclass(frozen=True)
class DeviceRegistration:
  """Snapshot of a registered device as stored by the registry."""

  token: str
  recipient_id: str
  contact_address: str | None
  platform: Platform
  registered_at: datetime.datetime
  last_updated: datetime.datetime


@dataclass(frozen=True)
class RecipientScope:
  """Optional recipient filter; an empty scope addresses every registration."""

  recipient_ids: tuple[str, ...] = ()
  contact_addresses: tuple[str, ...] = ()
  tokens: tuple[str, ...] = ()

  @property
  def is_empty(self) -> bool:
    return not (self.recipient_ids or self.contact_addresses or self.tokens)

  def matches(self, device: DeviceRegistration) -> bool:
    if self.is_empty:
      return True
    if device.recipient_id in self.recipient_ids:
      return True
    if device.contact_address is not None and device.contact_address in self.contact_addresses:
      return True
    return device.token in self.tokens


@dataclass(frozen=True)
class NotificationRequest:
  """A single logical notification, fanned out to every resolved device."""

  title: str
  body: str
  kind: NotificationKind = NotificationKind.CUSTOM
  metadata: dict[str, str] = field(default_factory=dict)
  scope: RecipientScope | None = None


@dataclass(frozen=True)
class PushMessage:
  """Per-device payload handed to a transport adapter."""

  token: str
  title: str
  body: str
  data: dict[str, str]


@dataclass(frozen=True)
class DispatchOutcome:
  """Result of one delivery attempt for one device."""

  token: str
  transport: Transport
  success: bool
  error_code: str | None = None
  dead: bool = False


@dataclass(frozen=True)
class DispatchSummary:
  """Aggregated counts for one dispatch; succeeded + failed always equals requested."""

  requested: int
  succeeded: int
  failed: int
  dead_tokens: frozenset[str] = frozenset()

  @classmethod
  def empty(cls) -> DispatchSummary:
    return cls(requested=0, succeeded=0, failed=0)

  @classmethod
  def from_outcomes(cls, outcomes: Iterable[DispatchOutcome]) -> DispatchSummary:
    outcomes = list(outcomes)
    succeeded = sum(1 for outcome in outcomes if outcome.success)
    dead_tokens = frozenset(outcome.token for outcome in outcomes if outcome.dead)
    return cls(requested=len(outcomes), succeeded=succeeded, failed=len(outcomes) - succeeded, dead_tokens=dead_tokens)


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class NotificationProviderError(NotificationError):
  """Exception raised when a push provider returns a delivery error."""


class InvalidDeviceTokenError(NotificationProviderError):
  """Exception raised when a provider reports a token as permanently invalid or unregistered."""

  def __init__(self, message: str, *, error_code: str) -> None:
    super().__init__(message)
    self.error_code = error_code


class TransientPushProviderError(NotificationProviderError):
  """Exception raised when transient push provider failures exhaust retries."""


class TokenPushSender(Protocol):
  """Delivery contract for per-device, individually acknowledged push."""

  async def send_one(self, message: PushMessage) -> DispatchOutcome:
    """Deliver one message and report its outcome without raising."""
    ...


class RelayPushSender(Protocol):
  """Delivery contract for batch push through a third-party relay."""

  async def send_batch(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
    """Deliver all messages in one call and report one outcome per message."""
    ...


def mask_token(token: str) -> str:
  """Shorten a device token for logs so full credentials never reach log files."""
  if len(token) <= 12:
    return "***"
  return f"{token[:8]}...{token[-4:]}"
