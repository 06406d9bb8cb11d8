"""Token-push delivery through Firebase Cloud Messaging."""

from __future__ import annotations

import asyncio
import logging
import time

import firebase_admin
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging
from starlette.concurrency import run_in_threadpool

from pushcast.notifications.contracts import (
  ERROR_INVALID_TOKEN,
  ERROR_NO_TRANSPORT,
  ERROR_PROVIDER,
  ERROR_TIMEOUT,
  ERROR_TRANSIENT,
  ERROR_UNREGISTERED,
  DispatchOutcome,
  InvalidDeviceTokenError,
  NotificationProviderError,
  PushMessage,
  TokenPushSender,
  TransientPushProviderError,
  Transport,
  mask_token,
)

logger = logging.getLogger(__name__)

MESSAGE_TTL_SECONDS = 3600

_RETRYABLE_ERRORS = (firebase_exceptions.UnavailableError, firebase_exceptions.InternalError, firebase_exceptions.DeadlineExceededError)


class FirebaseTokenPushSender(TokenPushSender):
  """`firebase_admin.messaging` backed sender with retry and dead-token classification."""

  def __init__(self, *, app: firebase_admin.App | None = None, timeout_seconds: float = 30.0, ttl_seconds: int = MESSAGE_TTL_SECONDS) -> None:
    if timeout_seconds > ttl_seconds:
      raise ValueError("Token push timeout must not exceed the message expiry.")
    self._app = app
    self._timeout_seconds = timeout_seconds
    self._ttl_seconds = ttl_seconds

  def build_message(self, message: PushMessage) -> messaging.Message:
    """Build the FCM message with platform blocks so both iOS and Android ring and badge."""
    expires_at = int(time.time()) + self._ttl_seconds
    return messaging.Message(
      token=message.token,
      notification=messaging.Notification(title=message.title, body=message.body),
      data=dict(message.data),
      android=messaging.AndroidConfig(ttl=self._ttl_seconds, notification=messaging.AndroidNotification(sound="default", channel_id="default")),
      apns=messaging.APNSConfig(headers={"apns-expiration": str(expires_at)}, payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1))),
    )

  def send(self, message: PushMessage) -> str:
    """Send one FCM message synchronously with bounded retries for transient failures."""
    fcm_message = self.build_message(message)
    backoff_seconds = [0.5, 1.0]

    for attempt in range(3):
      try:
        return messaging.send(fcm_message, app=self._app)
      except messaging.UnregisteredError as exc:
        raise InvalidDeviceTokenError("Device token is no longer registered", error_code=ERROR_UNREGISTERED) from exc
      except messaging.SenderIdMismatchError as exc:
        raise InvalidDeviceTokenError("Device token belongs to a different sender", error_code=ERROR_INVALID_TOKEN) from exc
      except firebase_exceptions.InvalidArgumentError as exc:
        if _mentions_registration_token(exc):
          raise InvalidDeviceTokenError("Device token is not a valid registration token", error_code=ERROR_INVALID_TOKEN) from exc

        raise NotificationProviderError(f"FCM rejected the message: {exc}") from exc
      except _RETRYABLE_ERRORS as exc:
        if attempt < len(backoff_seconds):
          # Back off briefly to avoid amplifying transient provider incidents.
          time.sleep(backoff_seconds[attempt])
          continue

        raise TransientPushProviderError(f"Transient FCM failure after retries (code={exc.code})") from exc
      except firebase_exceptions.FirebaseError as exc:
        raise NotificationProviderError(f"FCM delivery failed (code={exc.code})") from exc

    raise TransientPushProviderError("FCM delivery did not complete")

  async def send_one(self, message: PushMessage) -> DispatchOutcome:
    """Deliver one message off the event loop and fold every failure into an outcome."""
    token = message.token
    try:
      await asyncio.wait_for(run_in_threadpool(self.send, message), timeout=self._timeout_seconds)
    except InvalidDeviceTokenError as exc:
      logger.warning("Token push reported dead token token=%s code=%s", mask_token(token), exc.error_code)
      return DispatchOutcome(token=token, transport=Transport.TOKEN_PUSH, success=False, error_code=exc.error_code, dead=True)
    except TimeoutError:
      logger.warning("Token push timed out token=%s timeout=%ss", mask_token(token), self._timeout_seconds)
      return DispatchOutcome(token=token, transport=Transport.TOKEN_PUSH, success=False, error_code=ERROR_TIMEOUT)
    except TransientPushProviderError as exc:
      logger.error("Token push delivery failed (transient): %s", exc)
      return DispatchOutcome(token=token, transport=Transport.TOKEN_PUSH, success=False, error_code=ERROR_TRANSIENT)
    except NotificationProviderError as exc:
      logger.error("Token push delivery failed (provider error): %s", exc)
      return DispatchOutcome(token=token, transport=Transport.TOKEN_PUSH, success=False, error_code=ERROR_PROVIDER)
    except Exception as exc:  # noqa: BLE001
      logger.error("Token push delivery failed token=%s: %s", mask_token(token), exc, exc_info=True)
      return DispatchOutcome(token=token, transport=Transport.TOKEN_PUSH, success=False, error_code=ERROR_TRANSIENT)

    logger.debug("Token push delivered token=%s", mask_token(token))
    return DispatchOutcome(token=token, transport=Transport.TOKEN_PUSH, success=True)


class NullTokenPushSender(TokenPushSender):
  """No-op sender used when token push is disabled or unconfigured."""

  async def send_one(self, message: PushMessage) -> DispatchOutcome:
    """Report the device as unreachable while recording a debug log."""
    logger.debug("Token push disabled; dropping token=%s", mask_token(message.token))
    return DispatchOutcome(token=message.token, transport=Transport.TOKEN_PUSH, success=False, error_code=ERROR_NO_TRANSPORT)


def _mentions_registration_token(exc: firebase_exceptions.FirebaseError) -> bool:
  """FCM reports malformed tokens as INVALID_ARGUMENT with a token-specific message."""
  return "registration token" in str(exc).lower()
