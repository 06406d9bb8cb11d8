"""Routes for ad-hoc notification sends."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from pushcast.api.deps import get_notification_service
from pushcast.api.models import RecipientResultOut, SendNotificationRequest, SendNotificationResponse, SendToRecipientsRequest, SendToRecipientsResponse, SummaryOut
from pushcast.config import get_settings
from pushcast.notifications.service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter()


def _title_or_default(title: str | None) -> str:
  normalized = (title or "").strip()
  return normalized or get_settings().default_title


@router.post("/send-notification", response_model=SendNotificationResponse)
async def send_notification(payload: SendNotificationRequest, service: NotificationService = Depends(get_notification_service)) -> SendNotificationResponse:  # noqa: B008
  """Broadcast a notification to every registered device."""
  try:
    summary = await service.send_now(title=_title_or_default(payload.title), body=payload.message)
  except Exception as exc:  # noqa: BLE001
    logger.error("Broadcast failed: %s", exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send notification") from exc

  # A broadcast with no devices is still a successful no-op.
  return SendNotificationResponse(success=summary.requested == 0 or summary.succeeded > 0, summary=SummaryOut.from_summary(summary))


@router.post("/send-to-recipients", response_model=SendToRecipientsResponse, responses={207: {"model": SendToRecipientsResponse}, 404: {"model": SendToRecipientsResponse}})
async def send_to_recipients(payload: SendToRecipientsRequest, service: NotificationService = Depends(get_notification_service)) -> JSONResponse:  # noqa: B008
  """Send to specific recipients; 207 when only some of them have devices, 404 when none do."""
  try:
    results = await service.send_to_recipients(
      title=_title_or_default(payload.title),
      body=payload.message,
      recipient_ids=[item.strip() for item in payload.user_ids if item.strip()],
      contact_addresses=[item.strip() for item in payload.emails if item.strip()],
    )
  except Exception as exc:  # noqa: BLE001
    logger.error("Targeted send failed: %s", exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send notification") from exc

  found = sum(1 for result in results if result.found)
  if found == len(results):
    status_code = status.HTTP_200_OK
  elif found == 0:
    status_code = status.HTTP_404_NOT_FOUND
  else:
    status_code = status.HTTP_207_MULTI_STATUS

  body = SendToRecipientsResponse(
    success=found > 0,
    results=[RecipientResultOut(recipient=result.recipient, found=result.found, summary=SummaryOut.from_summary(result.summary)) for result in results],
  )
  return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True))
