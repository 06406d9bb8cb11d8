"""Relay-push delivery through the Expo push service."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from pushcast.notifications.contracts import (
  ERROR_NO_TRANSPORT,
  ERROR_RELAY,
  ERROR_RELAY_MISSING_TICKET,
  ERROR_RELAY_UNAVAILABLE,
  DispatchOutcome,
  PushMessage,
  RelayPushSender,
  Transport,
)

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "https://exp.host/--/api/v2/push/send"


class ExpoRelayPushSender(RelayPushSender):
  """Send a batch of messages to the Expo relay in a single request."""

  def __init__(
    self,
    *,
    url: str = DEFAULT_RELAY_URL,
    access_token: str | None = None,
    timeout_seconds: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self._url = url
    self._access_token = access_token
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def _build_client(self) -> httpx.AsyncClient:
    """Build an httpx client for relay calls."""
    # Never trust environment proxy variables for relay calls.
    if self._transport is not None:
      return httpx.AsyncClient(transport=self._transport, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _headers(self) -> dict[str, str]:
    headers = {"accept": "application/json", "content-type": "application/json"}
    if self._access_token:
      headers["authorization"] = f"Bearer {self._access_token}"
    return headers

  @staticmethod
  def build_payload(messages: Sequence[PushMessage]) -> list[dict[str, Any]]:
    """Serialize messages into the relay's array body."""
    return [{"to": message.token, "title": message.title, "body": message.body, "sound": "default", "badge": 1, "data": dict(message.data)} for message in messages]

  async def send_batch(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
    """Deliver the batch and map the relay's tickets back onto each token."""
    if not messages:
      return []

    try:
      async with self._build_client() as client:
        response = await client.post(self._url, json=self.build_payload(messages), headers=self._headers(), timeout=self._timeout_seconds)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as e:
      logger.error("Relay push returned %s for %s messages: %s", e.response.status_code, len(messages), e.response.text[:500])
      return _all_failed(messages, ERROR_RELAY_UNAVAILABLE)
    except httpx.HTTPError as e:
      logger.error("Relay push request failed for %s messages: %s", len(messages), e)
      return _all_failed(messages, ERROR_RELAY_UNAVAILABLE)
    except ValueError as e:
      logger.error("Relay push returned malformed JSON: %s", e)
      return _all_failed(messages, ERROR_RELAY_UNAVAILABLE)

    tickets = _extract_tickets(body)
    if tickets is None:
      logger.error("Relay push response had no ticket list: %r", body)
      return _all_failed(messages, ERROR_RELAY_UNAVAILABLE)

    outcomes: list[DispatchOutcome] = []
    for index, message in enumerate(messages):
      ticket = tickets[index] if index < len(tickets) else None
      outcomes.append(_outcome_from_ticket(message.token, ticket))

    succeeded = sum(1 for outcome in outcomes if outcome.success)
    logger.info("Relay push batch settled sent=%s succeeded=%s", len(messages), succeeded)
    return outcomes


class NullRelayPushSender(RelayPushSender):
  """No-op relay used when relay push is disabled."""

  async def send_batch(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
    logger.debug("Relay push disabled; dropping %s messages", len(messages))
    return _all_failed(messages, ERROR_NO_TRANSPORT)


def _extract_tickets(body: Any) -> list[Any] | None:
  """Accept both `{"data": [...]}` and a bare list of tickets."""
  if isinstance(body, list):
    return body
  if isinstance(body, dict) and isinstance(body.get("data"), list):
    return body["data"]
  return None


def _outcome_from_ticket(token: str, ticket: Any) -> DispatchOutcome:
  if not isinstance(ticket, dict):
    return DispatchOutcome(token=token, transport=Transport.RELAY_PUSH, success=False, error_code=ERROR_RELAY_MISSING_TICKET)

  if ticket.get("status") == "ok":
    return DispatchOutcome(token=token, transport=Transport.RELAY_PUSH, success=True)

  # Relay failures never evict tokens; Expo receipts are out of scope.
  details = ticket.get("details")
  error_code = ERROR_RELAY
  if isinstance(details, dict) and isinstance(details.get("error"), str) and details["error"]:
    error_code = details["error"]
  logger.warning("Relay push ticket error code=%s message=%s", error_code, ticket.get("message"))
  return DispatchOutcome(token=token, transport=Transport.RELAY_PUSH, success=False, error_code=error_code)


def _all_failed(messages: Sequence[PushMessage], error_code: str) -> list[DispatchOutcome]:
  return [DispatchOutcome(token=message.token, transport=Transport.RELAY_PUSH, success=False, error_code=error_code) for message in messages]
