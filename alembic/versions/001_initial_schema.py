"""Initial schema — registration tables reconciled by the merge engine.

Revision ID: 001
Revises:
Create Date: 2024-05-01

Creates (parents before children):
- roles              : admin/user roles
- permissions        : per-role resource permissions (FK roles, cascade)
- admins             : back-office accounts (FK roles, set null)
- users              : application users (FK roles, restrict)
- registrations      : registrant records
- rooms              : accommodation rooms
- room_allocations   : registrant → room (FK rooms, registrations; one room per registrant)
- system_config      : key/value system configuration
- settings           : categorized application settings

Every table has an opaque string primary key plus created_at / updated_at;
updated_at is the last-modified column preserve_newer compares.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "roles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("resource", sa.String(100), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column(
            "role_id",
            sa.String(64),
            sa.ForeignKey("roles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_permissions_role_id", "permissions", ["role_id"])

    op.create_table(
        "admins",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "role_id",
            sa.String(64),
            sa.ForeignKey("roles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "role_id",
            sa.String(64),
            sa.ForeignKey("roles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        "registrations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("email_address", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(16), nullable=True),
        sa.Column("branch", sa.String(100), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_registrations_email_address", "registrations", ["email_address"])

    op.create_table(
        "rooms",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("gender", sa.String(16), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "room_allocations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "room_id",
            sa.String(64),
            sa.ForeignKey("rooms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "registration_id",
            sa.String(64),
            sa.ForeignKey("registrations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("allocated_by", sa.String(64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "system_config",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="text"),
        *_timestamps(),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_table("system_config")
    op.drop_table("room_allocations")
    op.drop_table("rooms")
    op.drop_index("ix_registrations_email_address", table_name="registrations")
    op.drop_table("registrations")
    op.drop_table("users")
    op.drop_table("admins")
    op.drop_index("ix_permissions_role_id", table_name="permissions")
    op.drop_table("permissions")
    op.drop_table("roles")
