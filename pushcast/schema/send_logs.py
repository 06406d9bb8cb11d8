"""SQLAlchemy model for the campaign send log."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from pushcast.core.database import Base


class NotificationSendLog(Base):
  """One row per (recipient, kind, period) that has already been sent."""

  __tablename__ = "notification_send_logs"
  __table_args__ = (UniqueConstraint("recipient_id", "kind", "period_key", name="uq_notification_send_logs_key"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  recipient_id: Mapped[str] = mapped_column(String(255), nullable=False)
  kind: Mapped[str] = mapped_column(String(64), nullable=False)
  period_key: Mapped[str] = mapped_column(String(64), nullable=False)
  sent_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True, server_default=func.now())
