"""customers, orders and payments

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())

    if not _table_exists(inspector, "customers"):
        op.create_table(
            "customers",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("telegram_id", sa.String(length=64), nullable=False),
            sa.Column("username", sa.String(length=255), nullable=True),
            sa.Column("first_name", sa.String(length=255), nullable=True),
            sa.Column("last_name", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_customers_telegram_id", "customers", ["telegram_id"], unique=True)

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("order_number", sa.String(length=32), nullable=False),
            sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("shipping_amount", sa.Numeric(10, 2), nullable=False, server_default="10.00"),
            sa.Column("address", sa.JSON(), nullable=True),
            sa.Column("customer_phone", sa.String(length=32), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("tracking_number", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
        op.create_index("ix_orders_customer_id", "orders", ["customer_id"], unique=False)
        op.create_index("ix_orders_status", "orders", ["status"], unique=False)
        op.create_index("ix_orders_created_at", "orders", ["created_at"], unique=False)

    if not _table_exists(inspector, "payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default="mtn_momo"),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="GHS"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("provider_reference", sa.String(length=64), nullable=True),
            sa.Column("external_id", sa.String(length=128), nullable=False),
            sa.Column("customer_phone", sa.String(length=32), nullable=False),
            sa.Column("raw_payload", sa.JSON(), nullable=True),
            sa.Column("webhook_payload", sa.JSON(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_payments_order_id", "payments", ["order_id"], unique=False)
        op.create_index("ix_payments_status", "payments", ["status"], unique=False)
        op.create_index("ix_payments_provider_reference", "payments", ["provider_reference"], unique=False)
        op.create_index("ix_payments_external_id", "payments", ["external_id"], unique=True)
        op.create_index("ix_payments_idempotency_key", "payments", ["idempotency_key"], unique=True)
        # One PENDING payment per order; closes the double-initiation race.
        op.create_index(
            "uq_payments_order_pending",
            "payments",
            ["order_id"],
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        )


def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("orders")
    op.drop_table("customers")
