"""Repository helpers for the durable campaign send log."""

from __future__ import annotations

import datetime
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushcast.core.database import get_session_factory
from pushcast.schema.send_logs import NotificationSendLog


@dataclass(frozen=True)
class SendKey:
  """Identify one notification occurrence for one recipient within one period."""

  recipient_id: str
  kind: str
  period_key: str


@dataclass(frozen=True)
class SendRecord:
  key: SendKey
  sent_at: datetime.datetime


class SendLogRepository:
  """Persist send records in Postgres with a unique (recipient, kind, period) key."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _sessions(self) -> async_sessionmaker[AsyncSession]:
    session_factory = self._session_factory or get_session_factory()
    if session_factory is None:
      raise RuntimeError("Database connection is not configured (PUSHCAST_PG_DSN is missing).")
    return session_factory

  async def exists(self, key: SendKey) -> bool:
    async with self._sessions()() as session:
      stmt = select(NotificationSendLog.id).where(
        NotificationSendLog.recipient_id == key.recipient_id,
        NotificationSendLog.kind == key.kind,
        NotificationSendLog.period_key == key.period_key,
      )
      result = await session.execute(stmt.limit(1))
      return result.first() is not None

  async def insert_if_absent(self, record: SendRecord) -> bool:
    """Insert the record unless the key already exists; returns whether a row was written."""
    async with self._sessions()() as session:
      key = record.key
      stmt = insert(NotificationSendLog).values(recipient_id=key.recipient_id, kind=key.kind, period_key=key.period_key, sent_at=record.sent_at)
      stmt = stmt.on_conflict_do_nothing(constraint="uq_notification_send_logs_key").returning(NotificationSendLog.id)
      result = await session.execute(stmt)
      inserted = result.first() is not None
      await session.commit()
      return inserted

  async def list_since(self, since: datetime.datetime) -> list[SendRecord]:
    async with self._sessions()() as session:
      stmt = select(NotificationSendLog).where(NotificationSendLog.sent_at >= since).order_by(NotificationSendLog.sent_at)
      result = await session.execute(stmt)
      return [SendRecord(key=SendKey(recipient_id=row.recipient_id, kind=row.kind, period_key=row.period_key), sent_at=row.sent_at) for row in result.scalars().all()]

  async def delete_older_than(self, cutoff: datetime.datetime) -> int:
    async with self._sessions()() as session:
      result = await session.execute(delete(NotificationSendLog).where(NotificationSendLog.sent_at < cutoff))
      await session.commit()
      return int(result.rowcount or 0)


class InMemorySendLogRepository:
  """Process-local send log used when no database is configured."""

  def __init__(self) -> None:
    self._records: dict[SendKey, datetime.datetime] = {}

  async def exists(self, key: SendKey) -> bool:
    return key in self._records

  async def insert_if_absent(self, record: SendRecord) -> bool:
    if record.key in self._records:
      return False
    self._records[record.key] = record.sent_at
    return True

  async def list_since(self, since: datetime.datetime) -> list[SendRecord]:
    records = [SendRecord(key=key, sent_at=sent_at) for key, sent_at in self._records.items() if sent_at >= since]
    return sorted(records, key=lambda record: record.sent_at)

  async def delete_older_than(self, cutoff: datetime.datetime) -> int:
    expired = [key for key, sent_at in self._records.items() if sent_at < cutoff]
    for key in expired:
      del self._records[key]
    return len(expired)
