"""SQLAlchemy ORM models for the registration database.

These are the tables the merge engine reconciles.  Primary keys are opaque
string ids (the application generates cuid-style ids), and every table carries
created_at / updated_at so preserve_newer can compare last-modified times.

Foreign keys (parent → dependents):
  roles         → permissions, admins, users
  rooms         → room_allocations
  registrations → room_allocations

sms_verifications stands alone.

The merge executor derives its parent-before-child processing order from these
foreign keys (see snapmerge.merge.schema.default_registry).
"""

from __future__ import annotations

import datetime

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Role(TimestampMixin, Base):
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    is_system: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)


class Permission(TimestampMixin, Base):
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    resource: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    action: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    role_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Admin(TimestampMixin, Base):
    __tablename__ = "admins"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    last_login: Mapped[datetime.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    role_id: Mapped[str | None] = mapped_column(
        sa.String(64), sa.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    role_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False
    )


class Registration(TimestampMixin, Base):
    __tablename__ = "registrations"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    email_address: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    phone_number: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    date_of_birth: Mapped[datetime.date | None] = mapped_column(sa.Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(sa.String(16), nullable=True)
    branch: Mapped[str | None] = mapped_column(sa.String(100), nullable=True)
    is_verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )


class Room(TimestampMixin, Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False, unique=True)
    gender: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class RoomAllocation(TimestampMixin, Base):
    __tablename__ = "room_allocations"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    room_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    registration_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("registrations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,  # one room per registrant
    )
    allocated_by: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)


class SystemConfig(TimestampMixin, Base):
    __tablename__ = "system_config"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    key: Mapped[str] = mapped_column(sa.String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(sa.Text, nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)


class Setting(TimestampMixin, Base):
    __tablename__ = "settings"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    category: Mapped[str] = mapped_column(sa.String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    value: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    type: Mapped[str] = mapped_column(sa.String(20), nullable=False, default="text")


class SmsVerification(TimestampMixin, Base):
    __tablename__ = "sms_verifications"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    phone_number: Mapped[str] = mapped_column(sa.String(32), nullable=False, index=True)
    code: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
