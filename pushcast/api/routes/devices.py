"""Routes for device registration and inspection."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from pushcast.api.deps import get_notification_service
from pushcast.api.models import DeviceCountResponse, DeviceListResponse, DeviceOut, RegisterDeviceRequest, RegisterDeviceResponse
from pushcast.notifications.service import InvalidRegistrationError, NotificationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register-device", response_model=RegisterDeviceResponse)
async def register_device(payload: RegisterDeviceRequest, service: NotificationService = Depends(get_notification_service)) -> RegisterDeviceResponse:  # noqa: B008
  """Create or refresh a device registration keyed by token."""
  try:
    registration = await service.register_device(token=payload.device_token, recipient_id=payload.user_id, contact_address=payload.email, platform=payload.platform)
  except InvalidRegistrationError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except Exception as exc:  # noqa: BLE001
    logger.error("Device registration failed: %s", exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to register device") from exc

  return RegisterDeviceResponse(message="Device registered successfully", data=DeviceOut.from_registration(registration))


@router.get("/devices", response_model=DeviceListResponse)
async def list_devices(service: NotificationService = Depends(get_notification_service)) -> DeviceListResponse:  # noqa: B008
  """List every registration in registration order."""
  try:
    devices = await service.list_devices()
  except Exception as exc:  # noqa: BLE001
    logger.error("Device listing failed: %s", exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to list devices") from exc

  return DeviceListResponse(count=len(devices), devices=[DeviceOut.from_registration(device) for device in devices])


@router.get("/devices/count", response_model=DeviceCountResponse)
async def count_devices(service: NotificationService = Depends(get_notification_service)) -> DeviceCountResponse:  # noqa: B008
  try:
    count = await service.count_devices()
  except Exception as exc:  # noqa: BLE001
    logger.error("Device count failed: %s", exc, exc_info=True)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to count devices") from exc

  return DeviceCountResponse(count=count)
