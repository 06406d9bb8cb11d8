"""Inbound notification operations used by the HTTP layer and admin tooling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from pushcast.notifications.contracts import DeviceRegistration, DispatchSummary, NotificationKind, NotificationRequest, RecipientScope
from pushcast.notifications.device_repo import DeviceRegistrationEntry, DeviceRegistry
from pushcast.notifications.dispatcher import DispatchOrchestrator

logger = logging.getLogger(__name__)


class InvalidRegistrationError(ValueError):
  """Raised when a registration payload cannot be stored."""


@dataclass(frozen=True)
class RecipientDispatchResult:
  """Outcome of a targeted send for one requested recipient."""

  recipient: str
  found: bool
  summary: DispatchSummary


class NotificationService:
  """Registers devices and dispatches ad-hoc notifications."""

  def __init__(self, *, registry: DeviceRegistry, dispatcher: DispatchOrchestrator) -> None:
    self._registry = registry
    self._dispatcher = dispatcher

  @property
  def dispatcher(self) -> DispatchOrchestrator:
    return self._dispatcher

  @property
  def registry(self) -> DeviceRegistry:
    return self._registry

  async def register_device(self, *, token: str, recipient_id: str | None = None, contact_address: str | None = None, platform: str | None = None) -> DeviceRegistration:
    """Create or refresh the registration for a token."""
    if not token or not token.strip():
      raise InvalidRegistrationError("deviceToken is required")

    registration = await self._registry.upsert(DeviceRegistrationEntry(token=token, recipient_id=recipient_id, contact_address=contact_address, platform=platform))
    logger.info("Registered device recipient=%s platform=%s", registration.recipient_id, registration.platform.value)
    return registration

  async def send_now(self, *, title: str, body: str, kind: NotificationKind = NotificationKind.CUSTOM, metadata: dict[str, str] | None = None) -> DispatchSummary:
    """Broadcast to every registered device."""
    request = NotificationRequest(title=title, body=body, kind=kind, metadata=dict(metadata or {}))
    return await self._dispatcher.dispatch(request)

  async def send_to_recipients(self, *, title: str, body: str, recipient_ids: Sequence[str] = (), contact_addresses: Sequence[str] = ()) -> list[RecipientDispatchResult]:
    """Dispatch once per requested recipient; recipients run concurrently.

    A device matched by more than one requested recipient is delivered once, under the
    first recipient that matched it; later recipients still report `found=True`.
    """
    targets: list[tuple[str, RecipientScope]] = []
    seen: set[str] = set()
    for recipient_id in recipient_ids:
      if recipient_id and recipient_id not in seen:
        seen.add(recipient_id)
        targets.append((recipient_id, RecipientScope(recipient_ids=(recipient_id,))))
    for address in contact_addresses:
      if address and address not in seen:
        seen.add(address)
        targets.append((address, RecipientScope(contact_addresses=(address,))))

    claimed: set[str] = set()
    resolved: list[tuple[str, bool, tuple[str, ...]]] = []
    for recipient, scope in targets:
      devices = await self._registry.list_devices(scope)
      tokens = tuple(device.token for device in devices if device.token not in claimed)
      claimed.update(tokens)
      resolved.append((recipient, bool(devices), tokens))

    async def _send(recipient: str, found: bool, tokens: tuple[str, ...]) -> RecipientDispatchResult:
      # An empty token scope would address every device.
      if not tokens:
        return RecipientDispatchResult(recipient=recipient, found=found, summary=DispatchSummary.empty())
      summary = await self._dispatcher.dispatch(NotificationRequest(title=title, body=body), scope=RecipientScope(tokens=tokens))
      return RecipientDispatchResult(recipient=recipient, found=found, summary=summary)

    return list(await asyncio.gather(*(_send(recipient, found, tokens) for recipient, found, tokens in resolved)))

  async def list_devices(self) -> list[DeviceRegistration]:
    return await self._registry.list_devices()

  async def count_devices(self) -> int:
    return await self._registry.count_devices()
