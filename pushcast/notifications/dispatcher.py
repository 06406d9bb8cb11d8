"""Fan a notification out to every resolved device across both transports."""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable, Sequence

from pushcast.notifications.classifier import classify
from pushcast.notifications.contracts import (
  ERROR_RELAY_UNAVAILABLE,
  ERROR_TRANSIENT,
  DispatchOutcome,
  DispatchSummary,
  NotificationRequest,
  PushMessage,
  RecipientScope,
  RelayPushSender,
  TokenPushSender,
  Transport,
  mask_token,
)
from pushcast.notifications.device_repo import DeviceRegistry

logger = logging.getLogger(__name__)


class DispatchOrchestrator:
  """Resolve devices, deliver over both transports concurrently and evict dead tokens.

  Each device is attempted exactly once per dispatch. A failure in one transport never
  cancels or fails the other, and dead tokens are removed from the registry in the
  background so callers are not blocked by storage latency.
  """

  def __init__(
    self,
    *,
    registry: DeviceRegistry,
    token_sender: TokenPushSender,
    relay_sender: RelayPushSender,
    max_concurrency: int = 50,
    clock: Callable[[], datetime.datetime] | None = None,
  ) -> None:
    if max_concurrency < 1:
      raise ValueError("max_concurrency must be positive.")
    self._registry = registry
    self._token_sender = token_sender
    self._relay_sender = relay_sender
    self._max_concurrency = max_concurrency
    self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))
    self._evictions: set[asyncio.Task[None]] = set()

  @property
  def registry(self) -> DeviceRegistry:
    return self._registry

  async def dispatch(self, request: NotificationRequest, scope: RecipientScope | None = None) -> DispatchSummary:
    """Deliver one request and return once every device attempt has settled."""
    effective_scope = scope if scope is not None else request.scope
    devices = await self._registry.list_devices(effective_scope)
    if not devices:
      logger.info("Dispatch skipped: no registered devices kind=%s", request.kind.value)
      return DispatchSummary.empty()

    classified = classify(devices)
    data = self._build_data(request)
    token_messages = [PushMessage(token=token, title=request.title, body=request.body, data=data) for token in classified.token_push]
    relay_messages = [PushMessage(token=token, title=request.title, body=request.body, data=data) for token in classified.relay_push]

    # Run both transports side by side; gather keeps one failing adapter from cancelling the other.
    token_result, relay_result = await asyncio.gather(self._send_token_push(token_messages), self._send_relay_push(relay_messages), return_exceptions=True)
    token_outcomes = self._settle(token_result, token_messages, Transport.TOKEN_PUSH, ERROR_TRANSIENT)
    relay_outcomes = self._settle(relay_result, relay_messages, Transport.RELAY_PUSH, ERROR_RELAY_UNAVAILABLE)

    summary = DispatchSummary.from_outcomes([*token_outcomes, *relay_outcomes])
    for token in sorted(summary.dead_tokens):
      self._schedule_eviction(token)

    logger.info(
      "Dispatch settled kind=%s requested=%s succeeded=%s failed=%s dead=%s",
      request.kind.value,
      summary.requested,
      summary.succeeded,
      summary.failed,
      len(summary.dead_tokens),
    )
    return summary

  def _build_data(self, request: NotificationRequest) -> dict[str, str]:
    data = {str(key): str(value) for key, value in request.metadata.items()}
    data["messageType"] = request.kind.value
    data["timestamp"] = self._clock().isoformat()
    return data

  async def _send_token_push(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
    if not messages:
      return []

    semaphore = asyncio.Semaphore(self._max_concurrency)

    async def _send(message: PushMessage) -> DispatchOutcome:
      async with semaphore:
        return await self._token_sender.send_one(message)

    results = await asyncio.gather(*(_send(message) for message in messages), return_exceptions=True)
    outcomes: list[DispatchOutcome] = []
    for message, result in zip(messages, results, strict=True):
      if isinstance(result, BaseException):
        logger.error("Token push adapter raised for token=%s: %s", mask_token(message.token), result, exc_info=result)
        outcomes.append(DispatchOutcome(token=message.token, transport=Transport.TOKEN_PUSH, success=False, error_code=ERROR_TRANSIENT))
      else:
        outcomes.append(result)
    return outcomes

  async def _send_relay_push(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
    if not messages:
      return []

    outcomes = await self._relay_sender.send_batch(messages)
    if len(outcomes) != len(messages):
      raise RuntimeError(f"Relay adapter returned {len(outcomes)} outcomes for {len(messages)} messages")

    # Relay tickets never prove a token is dead.
    return [outcome if not outcome.dead else DispatchOutcome(token=outcome.token, transport=Transport.RELAY_PUSH, success=False, error_code=outcome.error_code) for outcome in outcomes]

  @staticmethod
  def _settle(result: list[DispatchOutcome] | BaseException, messages: Sequence[PushMessage], transport: Transport, error_code: str) -> list[DispatchOutcome]:
    """Turn an adapter-level failure into one failed outcome per message of that adapter."""
    if isinstance(result, BaseException):
      logger.error("%s adapter failed for %s messages: %s", transport.value, len(messages), result, exc_info=result)
      return [DispatchOutcome(token=message.token, transport=transport, success=False, error_code=error_code) for message in messages]
    return result

  def _schedule_eviction(self, token: str) -> None:
    task = asyncio.create_task(self._evict(token))
    self._evictions.add(task)
    task.add_done_callback(self._eviction_done)

  async def _evict(self, token: str) -> None:
    removed = await self._registry.delete_by_token(token)
    logger.info("Evicted dead token=%s removed=%s", mask_token(token), removed)

  def _eviction_done(self, task: asyncio.Task[None]) -> None:
    """Log background eviction exceptions to avoid silent registry drift."""
    self._evictions.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Dead token eviction failed: %s", exc, exc_info=exc)

  async def drain(self) -> None:
    """Wait for outstanding background evictions."""
    while self._evictions:
      await asyncio.gather(*list(self._evictions), return_exceptions=True)
