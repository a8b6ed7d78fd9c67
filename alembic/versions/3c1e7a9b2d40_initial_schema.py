"""initial schema

Revision ID: 3c1e7a9b2d40
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3c1e7a9b2d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=False),
        sa.Column("role", sa.String(length=6), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_identity_user_email", "identity_user", ["email"], unique=True)
    op.create_index("ix_identity_user_role", "identity_user", ["role"])
    op.create_index("ix_identity_user_created_at", "identity_user", ["created_at"])

    op.create_table(
        "receipts_receipt",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("storage_key", sa.String(length=1024), nullable=True),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("mime_type", sa.String(length=200), nullable=False),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_result", sa.JSON(), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.UniqueConstraint("storage_key", name="uq_receipts_receipt_storage_key"),
    )
    op.create_index("ix_receipts_receipt_sha256", "receipts_receipt", ["sha256"])
    op.create_index("ix_receipts_receipt_status", "receipts_receipt", ["status"])
    op.create_index("ix_receipts_receipt_created_at", "receipts_receipt", ["created_at"])

    op.create_table(
        "expenses_expense",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column(
            "receipt_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("receipts_receipt.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("merchant", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("vat_number", sa.String(length=100), nullable=True),
        sa.Column("vat_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("vat_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False),
    )
    op.create_index("ix_expenses_expense_receipt_id", "expenses_expense", ["receipt_id"])
    op.create_index("ix_expenses_expense_date", "expenses_expense", ["date"])
    op.create_index("ix_expenses_expense_category", "expenses_expense", ["category"])
    op.create_index("ix_expenses_expense_status", "expenses_expense", ["status"])
    op.create_index("ix_expenses_expense_created_at", "expenses_expense", ["created_at"])


def downgrade() -> None:
    op.drop_table("expenses_expense")
    op.drop_table("receipts_receipt")
    op.drop_table("identity_user")
