from __future__ import annotations

import threading
import time

import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from pushcast.notifications.contracts import (
  ERROR_INVALID_TOKEN,
  ERROR_NO_TRANSPORT,
  ERROR_PROVIDER,
  ERROR_TIMEOUT,
  ERROR_TRANSIENT,
  ERROR_UNREGISTERED,
  InvalidDeviceTokenError,
  PushMessage,
  TransientPushProviderError,
  Transport,
)
from pushcast.notifications.token_push import FirebaseTokenPushSender, NullTokenPushSender


def _message(token: str = "fcm-token-0123456789") -> PushMessage:
  return PushMessage(token=token, title="Hello", body="World", data={"messageType": "custom", "timestamp": "2024-01-01T00:00:00+00:00"})


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
  monkeypatch.setattr("pushcast.notifications.token_push.time.sleep", lambda _: None)


def test_build_message_sets_platform_blocks():
  sender = FirebaseTokenPushSender()

  fcm_message = sender.build_message(_message())

  assert fcm_message.token == "fcm-token-0123456789"
  assert fcm_message.notification.title == "Hello"
  assert fcm_message.data["messageType"] == "custom"
  assert fcm_message.android.notification.sound == "default"
  assert fcm_message.android.notification.channel_id == "default"
  assert fcm_message.apns.payload.aps.badge == 1
  assert int(fcm_message.apns.headers["apns-expiration"]) > int(time.time())


def test_unregistered_token_raises_invalid_device_token(monkeypatch):
  def _raise(*args, **kwargs):
    raise messaging.UnregisteredError("Requested entity was not found.")

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _raise)

  with pytest.raises(InvalidDeviceTokenError) as excinfo:
    FirebaseTokenPushSender().send(_message())

  assert excinfo.value.error_code == ERROR_UNREGISTERED


def test_malformed_token_raises_invalid_device_token(monkeypatch):
  def _raise(*args, **kwargs):
    raise firebase_exceptions.InvalidArgumentError("The registration token is not a valid FCM registration token")

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _raise)

  with pytest.raises(InvalidDeviceTokenError) as excinfo:
    FirebaseTokenPushSender().send(_message())

  assert excinfo.value.error_code == ERROR_INVALID_TOKEN


def test_unavailable_is_retried_three_times(monkeypatch):
  calls = {"count": 0}

  def _raise(*args, **kwargs):
    calls["count"] += 1
    raise firebase_exceptions.UnavailableError("backend unavailable")

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _raise)

  with pytest.raises(TransientPushProviderError):
    FirebaseTokenPushSender().send(_message())

  assert calls["count"] == 3


def test_transient_failure_recovers_on_retry(monkeypatch):
  calls = {"count": 0}

  def _flaky(*args, **kwargs):
    calls["count"] += 1
    if calls["count"] == 1:
      raise firebase_exceptions.InternalError("oops")
    return "projects/p/messages/1"

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _flaky)

  assert FirebaseTokenPushSender().send(_message()) == "projects/p/messages/1"
  assert calls["count"] == 2


def test_timeout_must_not_exceed_message_expiry():
  with pytest.raises(ValueError):
    FirebaseTokenPushSender(timeout_seconds=7200)


@pytest.mark.anyio
async def test_send_one_marks_only_invalid_tokens_dead(monkeypatch):
  def _raise(*args, **kwargs):
    raise messaging.UnregisteredError("gone")

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _raise)

  outcome = await FirebaseTokenPushSender().send_one(_message())

  assert outcome.transport is Transport.TOKEN_PUSH
  assert outcome.success is False
  assert outcome.dead is True
  assert outcome.error_code == ERROR_UNREGISTERED


@pytest.mark.anyio
async def test_send_one_maps_exhausted_retries_to_transient(monkeypatch):
  def _raise(*args, **kwargs):
    raise firebase_exceptions.DeadlineExceededError("slow")

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _raise)

  outcome = await FirebaseTokenPushSender().send_one(_message())

  assert outcome.error_code == ERROR_TRANSIENT
  assert outcome.dead is False


@pytest.mark.anyio
async def test_send_one_maps_other_provider_errors(monkeypatch):
  def _raise(*args, **kwargs):
    raise firebase_exceptions.PermissionDeniedError("no access")

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _raise)

  outcome = await FirebaseTokenPushSender().send_one(_message())

  assert outcome.error_code == ERROR_PROVIDER
  assert outcome.dead is False


@pytest.mark.anyio
async def test_send_one_timeout_is_not_dead(monkeypatch):
  def _slow(*args, **kwargs):
    threading.Event().wait(0.3)
    return "projects/p/messages/1"

  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", _slow)

  outcome = await FirebaseTokenPushSender(timeout_seconds=0.05).send_one(_message())

  assert outcome.error_code == ERROR_TIMEOUT
  assert outcome.dead is False


@pytest.mark.anyio
async def test_send_one_success(monkeypatch):
  monkeypatch.setattr("pushcast.notifications.token_push.messaging.send", lambda *args, **kwargs: "projects/p/messages/1")

  outcome = await FirebaseTokenPushSender().send_one(_message())

  assert outcome.success is True
  assert outcome.error_code is None


@pytest.mark.anyio
async def test_null_sender_reports_no_transport():
  outcome = await NullTokenPushSender().send_one(_message())

  assert outcome.success is False
  assert outcome.error_code == ERROR_NO_TRANSPORT
  assert outcome.dead is False
