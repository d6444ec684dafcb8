"""Add sms_verifications.

Revision ID: 002
Revises: 001
Create Date: 2024-06-10

Phone verification codes sent during registration.  No foreign keys; rows
are merged like every other table, keyed by id.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers used by Alembic
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "sms_verifications",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sms_verifications_phone_number", "sms_verifications", ["phone_number"])


def downgrade() -> None:
    op.drop_index("ix_sms_verifications_phone_number", table_name="sms_verifications")
    op.drop_table("sms_verifications")
