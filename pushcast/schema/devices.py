"""SQLAlchemy model for registered push devices."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from pushcast.core.database import Base


class DeviceRegistrationRow(Base):
  """Persist a single device token and the recipient it belongs to."""

  __tablename__ = "device_registrations"
  __table_args__ = (Index("ux_device_registrations_token", "token", unique=True),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  token: Mapped[str] = mapped_column(Text, nullable=False)
  recipient_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
  contact_address: Mapped[str | None] = mapped_column(String(320), index=True, nullable=True)
  platform: Mapped[str] = mapped_column(String(16), nullable=False, server_default="ios")
  registered_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  last_updated: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
