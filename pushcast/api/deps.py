"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from pushcast.notifications.service import NotificationService


def get_notification_service(request: Request) -> NotificationService:
  """Return the service built during startup."""
  service = getattr(request.app.state, "notification_service", None)
  if service is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification service is not ready")
  return service
