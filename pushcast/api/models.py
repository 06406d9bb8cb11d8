"""Request and response bodies for the HTTP surface."""

from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pushcast.notifications.contracts import DeviceRegistration, DispatchSummary


class RegisterDeviceRequest(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  device_token: str = Field(alias="deviceToken", min_length=1, max_length=4096)
  user_id: str | None = Field(default=None, alias="userId", max_length=255)
  email: str | None = Field(default=None, max_length=320)
  platform: str | None = Field(default=None, max_length=32)

  @field_validator("device_token")
  @classmethod
  def validate_device_token(cls, value: str) -> str:
    normalized = value.strip()
    if not normalized:
      raise ValueError("deviceToken must not be blank.")
    return normalized


class DeviceOut(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  device_token: str = Field(serialization_alias="deviceToken")
  user_id: str = Field(serialization_alias="userId")
  email: str | None = None
  platform: str
  registered_at: datetime.datetime = Field(serialization_alias="registeredAt")
  last_updated: datetime.datetime = Field(serialization_alias="lastUpdated")

  @classmethod
  def from_registration(cls, registration: DeviceRegistration) -> DeviceOut:
    return cls(
      device_token=registration.token,
      user_id=registration.recipient_id,
      email=registration.contact_address,
      platform=registration.platform.value,
      registered_at=registration.registered_at,
      last_updated=registration.last_updated,
    )


class RegisterDeviceResponse(BaseModel):
  success: bool = True
  message: str
  data: DeviceOut


class DeviceListResponse(BaseModel):
  count: int
  devices: list[DeviceOut]


class DeviceCountResponse(BaseModel):
  count: int


class SendNotificationRequest(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  title: str | None = Field(default=None, max_length=256)
  message: str = Field(min_length=1, max_length=4096)


class SendToRecipientsRequest(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  user_ids: list[str] = Field(default_factory=list, alias="userIds", max_length=500)
  emails: list[str] = Field(default_factory=list, max_length=500)
  title: str | None = Field(default=None, max_length=256)
  message: str = Field(min_length=1, max_length=4096)

  @model_validator(mode="after")
  def require_recipients(self) -> SendToRecipientsRequest:
    if not any(item.strip() for item in [*self.user_ids, *self.emails]):
      raise ValueError("At least one of userIds or emails is required.")
    return self


class SummaryOut(BaseModel):
  requested: int
  succeeded: int
  failed: int
  dead_tokens: list[str] = Field(default_factory=list, serialization_alias="deadTokens")

  @classmethod
  def from_summary(cls, summary: DispatchSummary) -> SummaryOut:
    return cls(requested=summary.requested, succeeded=summary.succeeded, failed=summary.failed, dead_tokens=sorted(summary.dead_tokens))


class SendNotificationResponse(BaseModel):
  success: bool
  summary: SummaryOut


class RecipientResultOut(BaseModel):
  recipient: str
  found: bool
  summary: SummaryOut


class SendToRecipientsResponse(BaseModel):
  success: bool
  results: list[RecipientResultOut]
