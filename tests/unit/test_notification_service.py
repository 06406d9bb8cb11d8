from __future__ import annotations

import pytest

from pushcast.notifications.contracts import NotificationKind
from pushcast.notifications.service import InvalidRegistrationError


@pytest.mark.anyio
async def test_register_device_rejects_blank_token(service):
  with pytest.raises(InvalidRegistrationError):
    await service.register_device(token="   ")


@pytest.mark.anyio
async def test_send_now_broadcasts_to_every_device(service, token_sender):
  await service.register_device(token="fcm-token-a", recipient_id="u1")
  await service.register_device(token="fcm-token-b")

  summary = await service.send_now(title="Hi", body="There", kind=NotificationKind.CUSTOM, metadata={"source": "admin"})

  assert summary.succeeded == 2
  assert all(message.data["source"] == "admin" for message in token_sender.sent)


@pytest.mark.anyio
async def test_send_to_recipients_delivers_each_device_once(service, token_sender):
  await service.register_device(token="fcm-token-a", recipient_id="u1", contact_address="one@example.com")

  results = await service.send_to_recipients(title="Hi", body="There", recipient_ids=["u1", "u1", "ghost"], contact_addresses=["one@example.com"])

  assert [(result.recipient, result.found) for result in results] == [("u1", True), ("ghost", False), ("one@example.com", True)]
  assert [result.summary.requested for result in results] == [1, 0, 0]
  assert [message.token for message in token_sender.sent] == ["fcm-token-a"]


@pytest.mark.anyio
async def test_list_and_count_devices(service):
  await service.register_device(token="fcm-token-a")
  await service.register_device(token="ExponentPushToken[b]", platform="android")

  devices = await service.list_devices()

  assert [device.token for device in devices] == ["fcm-token-a", "ExponentPushToken[b]"]
  assert await service.count_devices() == 2
