"""Repository helpers for device registration persistence."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Protocol

from sqlalchemy import ColumnElement, delete, false, func, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushcast.core.database import get_session_factory
from pushcast.notifications.contracts import ANONYMOUS_RECIPIENT, DeviceRegistration, Platform, RecipientScope
from pushcast.schema.devices import DeviceRegistrationRow


@dataclass(frozen=True)
class DeviceRegistrationEntry:
  """Capture a registration payload before defaults are applied."""

  token: str
  recipient_id: str | None = None
  contact_address: str | None = None
  platform: str | None = None

  def normalized(self) -> DeviceRegistrationEntry:
    """Apply registration defaults: anonymous recipient and iOS platform."""
    recipient_id = (self.recipient_id or "").strip() or ANONYMOUS_RECIPIENT
    contact_address = (self.contact_address or "").strip() or None
    return DeviceRegistrationEntry(token=self.token.strip(), recipient_id=recipient_id, contact_address=contact_address, platform=Platform.parse(self.platform).value)


class DeviceRegistry(Protocol):
  """Storage surface the dispatcher and service rely on."""

  async def upsert(self, entry: DeviceRegistrationEntry) -> DeviceRegistration: ...

  async def list_devices(self, scope: RecipientScope | None = None) -> list[DeviceRegistration]: ...

  async def count_devices(self, scope: RecipientScope | None = None) -> int: ...

  async def delete_by_token(self, token: str) -> bool: ...


def _to_registration(row: DeviceRegistrationRow) -> DeviceRegistration:
  return DeviceRegistration(
    token=row.token,
    recipient_id=row.recipient_id,
    contact_address=row.contact_address,
    platform=Platform.parse(row.platform),
    registered_at=row.registered_at,
    last_updated=row.last_updated,
  )


def _scope_clause(scope: RecipientScope) -> ColumnElement[bool]:
  conditions: list[ColumnElement[bool]] = []
  if scope.recipient_ids:
    conditions.append(DeviceRegistrationRow.recipient_id.in_(scope.recipient_ids))
  if scope.contact_addresses:
    conditions.append(DeviceRegistrationRow.contact_address.in_(scope.contact_addresses))
  if scope.tokens:
    conditions.append(DeviceRegistrationRow.token.in_(scope.tokens))
  if not conditions:
    return false()
  return or_(*conditions)


class DeviceRegistrationRepository:
  """Persist and query device registrations in Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _sessions(self) -> async_sessionmaker[AsyncSession]:
    session_factory = self._session_factory or get_session_factory()
    if session_factory is None:
      raise RuntimeError("Database connection is not configured (PUSHCAST_PG_DSN is missing).")
    return session_factory

  async def upsert(self, entry: DeviceRegistrationEntry) -> DeviceRegistration:
    """Insert or update a registration keyed by token."""
    async with self._sessions()() as session:
      return await self._upsert_with_session(session=session, entry=entry.normalized())

  async def _upsert_with_session(self, *, session: AsyncSession, entry: DeviceRegistrationEntry) -> DeviceRegistration:
    # Upsert by token so app reinstalls and account switches rebind the same device.
    stmt = insert(DeviceRegistrationRow).values(token=entry.token, recipient_id=entry.recipient_id, contact_address=entry.contact_address, platform=entry.platform)
    stmt = stmt.on_conflict_do_update(
      index_elements=["token"],
      set_={
        "recipient_id": stmt.excluded.recipient_id,
        "contact_address": func.coalesce(stmt.excluded.contact_address, DeviceRegistrationRow.contact_address),
        "platform": stmt.excluded.platform,
        "last_updated": func.now(),
      },
    )
    stmt = stmt.returning(DeviceRegistrationRow)
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    row = result.scalar_one()
    registration = _to_registration(row)
    await session.commit()
    return registration

  async def list_devices(self, scope: RecipientScope | None = None) -> list[DeviceRegistration]:
    """List registrations in registration order, optionally filtered by scope."""
    async with self._sessions()() as session:
      stmt = select(DeviceRegistrationRow).order_by(DeviceRegistrationRow.registered_at, DeviceRegistrationRow.token)
      if scope is not None and not scope.is_empty:
        stmt = stmt.where(_scope_clause(scope))
      result = await session.execute(stmt)
      return [_to_registration(row) for row in result.scalars().all()]

  async def count_devices(self, scope: RecipientScope | None = None) -> int:
    async with self._sessions()() as session:
      stmt = select(func.count()).select_from(DeviceRegistrationRow)
      if scope is not None and not scope.is_empty:
        stmt = stmt.where(_scope_clause(scope))
      result = await session.execute(stmt)
      return int(result.scalar_one())

  async def delete_by_token(self, token: str) -> bool:
    """Delete a registration regardless of owner; returns whether a row was removed."""
    async with self._sessions()() as session:
      # Remove invalidated tokens immediately to avoid repeated provider errors.
      result = await session.execute(delete(DeviceRegistrationRow).where(DeviceRegistrationRow.token == token))
      await session.commit()
      return bool(result.rowcount)


class InMemoryDeviceRegistrationRepository:
  """Process-local registry used when no database is configured."""

  def __init__(self, *, clock: Callable[[], datetime.datetime] | None = None) -> None:
    self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))
    self._devices: dict[str, DeviceRegistration] = {}

  async def upsert(self, entry: DeviceRegistrationEntry) -> DeviceRegistration:
    entry = entry.normalized()
    now = self._clock()
    existing = self._devices.get(entry.token)
    if existing is None:
      registration = DeviceRegistration(
        token=entry.token,
        recipient_id=entry.recipient_id or ANONYMOUS_RECIPIENT,
        contact_address=entry.contact_address,
        platform=Platform.parse(entry.platform),
        registered_at=now,
        last_updated=now,
      )
    else:
      registration = replace(
        existing,
        recipient_id=entry.recipient_id or ANONYMOUS_RECIPIENT,
        contact_address=entry.contact_address if entry.contact_address is not None else existing.contact_address,
        platform=Platform.parse(entry.platform),
        last_updated=now,
      )
    self._devices[entry.token] = registration
    return registration

  async def list_devices(self, scope: RecipientScope | None = None) -> list[DeviceRegistration]:
    devices = sorted(self._devices.values(), key=lambda device: (device.registered_at, device.token))
    if scope is None or scope.is_empty:
      return devices
    return [device for device in devices if scope.matches(device)]

  async def count_devices(self, scope: RecipientScope | None = None) -> int:
    return len(await self.list_devices(scope))

  async def delete_by_token(self, token: str) -> bool:
    return self._devices.pop(token, None) is not None
