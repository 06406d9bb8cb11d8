from __future__ import annotations

import datetime

from pushcast.notifications.classifier import classify, transport_for
from pushcast.notifications.contracts import DeviceRegistration, Platform, Transport


def _registration(token: str) -> DeviceRegistration:
  now = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
  return DeviceRegistration(token=token, recipient_id="u1", contact_address=None, platform=Platform.IOS, registered_at=now, last_updated=now)


def test_relay_tokens_are_detected_case_insensitively():
  assert transport_for("ExponentPushToken[abc]") is Transport.RELAY_PUSH
  assert transport_for("expo-token-1") is Transport.RELAY_PUSH
  assert transport_for("EXPOSED") is Transport.RELAY_PUSH
  assert transport_for("fcm:APA91bH") is Transport.TOKEN_PUSH


def test_classify_splits_and_preserves_order():
  classified = classify([_registration("a1"), _registration("ExpoPushToken[x]"), _registration("b2"), _registration("ExponentPushToken[y]")])

  assert classified.token_push == ["a1", "b2"]
  assert classified.relay_push == ["ExpoPushToken[x]", "ExponentPushToken[y]"]


def test_classify_accepts_raw_tokens_and_drops_duplicates():
  classified = classify(["a1", "a1", "ExpoPushToken[x]", "ExpoPushToken[x]"])

  assert classified.token_push == ["a1"]
  assert classified.relay_push == ["ExpoPushToken[x]"]


def test_classify_empty_input():
  classified = classify([])

  assert classified.is_empty
  assert classified.token_push == []
  assert classified.relay_push == []
