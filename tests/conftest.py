"""Shared fixtures: in-memory storage, fake transports and a deterministic clock."""

from __future__ import annotations

import datetime
from collections.abc import Sequence

import pytest

from pushcast.notifications.contracts import DispatchOutcome, PushMessage, Transport
from pushcast.notifications.device_repo import InMemoryDeviceRegistrationRepository
from pushcast.notifications.dispatcher import DispatchOrchestrator
from pushcast.notifications.service import NotificationService


@pytest.fixture
def anyio_backend():
  return "asyncio"


class StepClock:
  """Clock that advances one second per call so registration order is stable."""

  def __init__(self, start: datetime.datetime) -> None:
    self.now = start

  def __call__(self) -> datetime.datetime:
    current = self.now
    self.now = self.now + datetime.timedelta(seconds=1)
    return current


class FakeTokenSender:
  def __init__(self) -> None:
    self.sent: list[PushMessage] = []
    self.failures: dict[str, tuple[str, bool]] = {}
    self.raise_error: Exception | None = None

  def fail(self, token: str, error_code: str, *, dead: bool = False) -> None:
    self.failures[token] = (error_code, dead)

  async def send_one(self, message: PushMessage) -> DispatchOutcome:
    self.sent.append(message)
    if self.raise_error is not None:
      raise self.raise_error
    if message.token in self.failures:
      error_code, dead = self.failures[message.token]
      return DispatchOutcome(token=message.token, transport=Transport.TOKEN_PUSH, success=False, error_code=error_code, dead=dead)
    return DispatchOutcome(token=message.token, transport=Transport.TOKEN_PUSH, success=True)


class FakeRelaySender:
  def __init__(self) -> None:
    self.batches: list[list[PushMessage]] = []
    self.raise_error: Exception | None = None

  async def send_batch(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
    self.batches.append(list(messages))
    if self.raise_error is not None:
      raise self.raise_error
    return [DispatchOutcome(token=message.token, transport=Transport.RELAY_PUSH, success=True) for message in messages]


@pytest.fixture
def clock() -> StepClock:
  return StepClock(datetime.datetime(2024, 1, 1, 9, 0, tzinfo=datetime.UTC))


@pytest.fixture
def registry(clock) -> InMemoryDeviceRegistrationRepository:
  return InMemoryDeviceRegistrationRepository(clock=clock)


@pytest.fixture
def token_sender() -> FakeTokenSender:
  return FakeTokenSender()


@pytest.fixture
def relay_sender() -> FakeRelaySender:
  return FakeRelaySender()


@pytest.fixture
def dispatcher(registry, token_sender, relay_sender) -> DispatchOrchestrator:
  return DispatchOrchestrator(registry=registry, token_sender=token_sender, relay_sender=relay_sender, max_concurrency=4)


@pytest.fixture
def service(registry, dispatcher) -> NotificationService:
  return NotificationService(registry=registry, dispatcher=dispatcher)
