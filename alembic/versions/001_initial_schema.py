"""Initial schema: pending VAT requests and the error bin.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    op.create_table(
        "pending_vat_requests",
        sa.Column("owner_id", sa.String(50), nullable=False, comment="Telegram chat ID"),
        sa.Column("country_code", sa.String(2), nullable=False),
        sa.Column("vat_number", sa.String(50), nullable=False),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "country_code", "vat_number", name="uq_pending_vat_identity"),
    )
    op.create_index("ix_pending_vat_requests_owner_id", "pending_vat_requests", ["owner_id"])

    op.create_table(
        "vat_request_errors",
        sa.Column("owner_id", sa.String(50), nullable=False, comment="Telegram chat ID"),
        sa.Column("country_code", sa.String(2), nullable=False),
        sa.Column("vat_number", sa.String(50), nullable=False),
        sa.Column(
            "expiration_date",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="Carried over from the pending request",
        ),
        sa.Column("error_text", sa.Text(), nullable=False),
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vat_request_errors_owner_id", "vat_request_errors", ["owner_id"])


def downgrade() -> None:
    op.drop_index("ix_vat_request_errors_owner_id", table_name="vat_request_errors")
    op.drop_table("vat_request_errors")
    op.drop_index("ix_pending_vat_requests_owner_id", table_name="pending_vat_requests")
    op.drop_table("pending_vat_requests")
