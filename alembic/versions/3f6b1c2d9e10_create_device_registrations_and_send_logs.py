"""Create device registrations and notification send logs.

Revision ID: 3f6b1c2d9e10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "3f6b1c2d9e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "device_registrations",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("token", sa.Text(), nullable=False),
    sa.Column("recipient_id", sa.String(length=255), nullable=False),
    sa.Column("contact_address", sa.String(length=320), nullable=True),
    sa.Column("platform", sa.String(length=16), server_default="ios", nullable=False),
    sa.Column("registered_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index("ux_device_registrations_token", "device_registrations", ["token"], unique=True)
  op.create_index(op.f("ix_device_registrations_recipient_id"), "device_registrations", ["recipient_id"], unique=False)
  op.create_index(op.f("ix_device_registrations_contact_address"), "device_registrations", ["contact_address"], unique=False)

  op.create_table(
    "notification_send_logs",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("recipient_id", sa.String(length=255), nullable=False),
    sa.Column("kind", sa.String(length=64), nullable=False),
    sa.Column("period_key", sa.String(length=64), nullable=False),
    sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("recipient_id", "kind", "period_key", name="uq_notification_send_logs_key"),
  )
  op.create_index(op.f("ix_notification_send_logs_sent_at"), "notification_send_logs", ["sent_at"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_notification_send_logs_sent_at"), table_name="notification_send_logs")
  op.drop_table("notification_send_logs")
  op.drop_index(op.f("ix_device_registrations_contact_address"), table_name="device_registrations")
  op.drop_index(op.f("ix_device_registrations_recipient_id"), table_name="device_registrations")
  op.drop_index("ux_device_registrations_token", table_name="device_registrations")
  op.drop_table("device_registrations")
