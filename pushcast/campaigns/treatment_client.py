"""Client for the external treatment and daily check-in API."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pushcast.campaigns.content import DayTask, RecipientTreatmentState, TreatmentProtocol

logger = logging.getLogger(__name__)


def _as_str(value: Any) -> Any:
  if isinstance(value, int | float) and not isinstance(value, bool):
    return str(value)
  return value


class ProtocolAssignment(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  id: str
  status: str
  name: str | None = None
  start_date: datetime.datetime | None = Field(default=None, alias="startDate")
  progress: float = 0.0

  @field_validator("id", mode="before")
  @classmethod
  def _coerce_id(cls, value: Any) -> Any:
    return _as_str(value)

  @field_validator("progress", mode="before")
  @classmethod
  def _default_progress(cls, value: Any) -> Any:
    return 0.0 if value is None else value


class CheckinQuestion(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  id: str
  text: str | None = Field(default=None, alias="question")
  completed: bool | None = None

  @field_validator("id", mode="before")
  @classmethod
  def _coerce_id(cls, value: Any) -> Any:
    return _as_str(value)


class CheckinResponse(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  question_id: str | None = Field(default=None, alias="questionId")

  @field_validator("question_id", mode="before")
  @classmethod
  def _coerce_question_id(cls, value: Any) -> Any:
    return _as_str(value)


class DailyCheckin(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  has_checkin_today: bool = Field(default=False, alias="hasCheckinToday")
  questions: list[CheckinQuestion] = Field(default_factory=list)
  existing_responses: list[CheckinResponse] = Field(default_factory=list, alias="existingResponses")

  @field_validator("questions", "existing_responses", mode="before")
  @classmethod
  def _none_as_empty(cls, value: Any) -> Any:
    return [] if value is None else value

  def day_tasks(self) -> list[DayTask]:
    """Turn check-in questions into tasks; a question is done once it has a response."""
    answered = {response.question_id for response in self.existing_responses if response.question_id}
    return [DayTask(task_id=question.id, title=question.text, completed=bool(question.completed) or question.id in answered) for question in self.questions]


class TreatmentStateClient:
  """Fetch a recipient's protocols and today's check-in over bearer-authenticated HTTP."""

  def __init__(self, *, base_url: str, api_token: str | None = None, timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._api_token = api_token
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def _build_client(self) -> httpx.AsyncClient:
    headers = {"accept": "application/json"}
    if self._api_token:
      headers["authorization"] = f"Bearer {self._api_token}"
    if self._transport is not None:
      return httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=self._timeout_seconds, transport=self._transport, trust_env=False)
    return httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=self._timeout_seconds, trust_env=False)

  async def fetch_state(self, recipient_id: str) -> RecipientTreatmentState | None:
    """Return the recipient's state, or None when it cannot be determined."""
    async with self._build_client() as client:
      assignments = await self._fetch_assignments(client, recipient_id)
      if assignments is None:
        return None

      active = [assignment for assignment in assignments if assignment.status.upper() == "ACTIVE"]
      pending = [assignment for assignment in assignments if assignment.status.upper() == "INACTIVE"]
      checkins = await asyncio.gather(*(self._fetch_checkin(client, assignment.id) for assignment in active))

    active_protocols: list[TreatmentProtocol] = []
    tasks: list[DayTask] = []
    for assignment, checkin in zip(active, checkins, strict=True):
      active_protocols.append(_to_protocol(assignment, has_checkin_today=checkin.has_checkin_today if checkin else False))
      if checkin is not None:
        tasks.extend(checkin.day_tasks())

    return RecipientTreatmentState(
      active_protocols=tuple(active_protocols),
      pending_protocols=tuple(_to_protocol(assignment) for assignment in pending),
      current_day_tasks=tuple(tasks),
    )

  async def _fetch_assignments(self, client: httpx.AsyncClient, recipient_id: str) -> list[ProtocolAssignment] | None:
    try:
      response = await client.get("/api/protocols/assignments", params={"userId": recipient_id})
      response.raise_for_status()
      payload = response.json()
    except httpx.HTTPStatusError as e:
      logger.error("Treatment API returned %s for recipient=%s", e.response.status_code, recipient_id)
      return None
    except httpx.HTTPError as e:
      logger.error("Treatment API request failed for recipient=%s: %s", recipient_id, e)
      return None
    except ValueError as e:
      logger.error("Treatment API returned malformed JSON for recipient=%s: %s", recipient_id, e)
      return None

    items = payload.get("assignments") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
      logger.error("Treatment API assignments payload is not a list for recipient=%s", recipient_id)
      return None

    try:
      return [ProtocolAssignment.model_validate(item) for item in items]
    except ValidationError as e:
      logger.error("Treatment API assignments failed validation for recipient=%s: %s", recipient_id, e)
      return None

  async def _fetch_checkin(self, client: httpx.AsyncClient, protocol_id: str) -> DailyCheckin | None:
    # A failing check-in keeps the protocol; only its check-in data is missing.
    try:
      response = await client.get("/api/mobile/daily-checkin", params={"protocolId": protocol_id})
      response.raise_for_status()
      return DailyCheckin.model_validate(response.json())
    except (httpx.HTTPError, ValueError) as e:
      logger.warning("Daily check-in fetch failed for protocol=%s: %s", protocol_id, e)
      return None


def _to_protocol(assignment: ProtocolAssignment, *, has_checkin_today: bool = False) -> TreatmentProtocol:
  return TreatmentProtocol(
    protocol_id=assignment.id,
    name=assignment.name,
    start_date=assignment.start_date,
    progress_percent=assignment.progress,
    has_checkin_today=has_checkin_today,
  )
