import json
import logging
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from pushcast.config import get_settings

logger = logging.getLogger("pushcast.core.middleware")

# Device tokens are bearer credentials for a phone; treat them like passwords in logs.
_SENSITIVE_KEYS = {"devicetoken", "token", "authorization", "secret", "password", "email", "userid"}


def redact_sensitive_keys(data: Any) -> Any:
  """Redact sensitive keys from a dictionary or list recursively."""
  if isinstance(data, dict):
    return {k: ("***" if str(k).lower() in _SENSITIVE_KEYS else redact_sensitive_keys(v)) for k, v in data.items()}
  if isinstance(data, list):
    return [redact_sensitive_keys(item) for item in data]
  return data


def format_body_for_log(body: bytes, content_type: str | None, max_bytes: int) -> str:
  """Format a request body for logging with redaction and a size cap."""
  if not body:
    return "<empty>"
  if not content_type or "json" not in content_type.lower():
    return f"<non-json body {len(body)} bytes>"
  if len(body) > max_bytes:
    return f"<json body {len(body)} bytes, over log limit>"

  try:
    parsed = json.loads(body.decode("utf-8"))
  except (UnicodeDecodeError, json.JSONDecodeError):
    return "<unparseable json body>"
  return json.dumps(redact_sensitive_keys(parsed), ensure_ascii=True)


class RequestLoggingMiddleware:
  """Assign request ids and log method, path, status and latency for every HTTP request."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    settings = get_settings()
    request_id = str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id
    start_time = time.time()
    method = scope.get("method", "UNKNOWN")
    path = scope.get("path", "")
    logger.info("Incoming request request_id=%s %s %s", request_id, method, path)

    receive_wrapper = receive
    if settings.log_http_bodies:
      # Drain the body so it can be logged, then replay it for the handler.
      chunks: list[bytes] = []
      more_body = True
      while more_body:
        message = await receive()
        if message.get("type") != "http.request":
          break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)
      request_body = b"".join(chunks)
      body_sent = False

      async def receive_wrapper() -> Message:
        nonlocal body_sent
        if body_sent:
          return {"type": "http.request", "body": b"", "more_body": False}
        body_sent = True
        return {"type": "http.request", "body": request_body, "more_body": False}

      headers = {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}
      logger.info("Request body request_id=%s body=%s", request_id, format_body_for_log(request_body, headers.get("content-type"), settings.log_http_body_bytes))

    status_code: int | None = None

    async def send_wrapper(message: Message) -> None:
      nonlocal status_code
      if message.get("type") == "http.response.start":
        status_code = message.get("status")
        response_headers = MutableHeaders(scope=message)
        if "x-request-id" not in response_headers:
          response_headers["x-request-id"] = request_id
      await send(message)

    await self.app(scope, receive_wrapper, send_wrapper)

    process_time = (time.time() - start_time) * 1000
    logger.info("Response request_id=%s status=%s (took %.2fms)", request_id, status_code or 0, process_time)
