"""Partition device tokens by the transport that can reach them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from pushcast.notifications.contracts import DeviceRegistration, Transport

# Expo issues tokens shaped like ExponentPushToken[...] / ExpoPushToken[...].
RELAY_TOKEN_MARKER = "expo"


@dataclass(frozen=True)
class ClassifiedTokens:
  token_push: list[str] = field(default_factory=list)
  relay_push: list[str] = field(default_factory=list)

  @property
  def is_empty(self) -> bool:
    return not (self.token_push or self.relay_push)


def transport_for(token: str) -> Transport:
  """Return the transport for a single token."""
  if RELAY_TOKEN_MARKER in token.lower():
    return Transport.RELAY_PUSH
  return Transport.TOKEN_PUSH


def classify(registrations: Iterable[DeviceRegistration | str]) -> ClassifiedTokens:
  """Split registrations into token-push and relay-push buckets, keeping input order."""
  classified = ClassifiedTokens()
  seen: set[str] = set()
  for registration in registrations:
    token = registration if isinstance(registration, str) else registration.token
    if token in seen:
      continue
    seen.add(token)
    if transport_for(token) is Transport.RELAY_PUSH:
      classified.relay_push.append(token)
    else:
      classified.token_push.append(token)
  return classified
