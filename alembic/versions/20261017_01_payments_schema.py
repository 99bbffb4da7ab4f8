"""storefront payments schema

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _ensure_users_table(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "users"):
        return
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)


def _ensure_orders_table(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "orders"):
        return
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("external_reference", sa.String(length=64), nullable=True),
        sa.Column("checkout_request_id", sa.String(length=128), nullable=True),
        sa.Column("gateway_reference", sa.String(length=128), nullable=True),
        sa.Column("transaction_id", sa.String(length=128), nullable=True),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("phone_number", sa.String(length=16), nullable=True),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_message", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_orders_id", "orders", ["id"], unique=False)
    op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)
    op.create_index("ix_orders_external_reference", "orders", ["external_reference"], unique=True)
    op.create_index("ix_orders_checkout_request_id", "orders", ["checkout_request_id"], unique=False)


def _ensure_cart_items_table(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "cart_items"):
        return
    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_cart_items_id", "cart_items", ["id"], unique=False)
    op.create_index("ix_cart_items_user_id", "cart_items", ["user_id"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    _ensure_users_table(sa.inspect(bind))
    _ensure_orders_table(sa.inspect(bind))
    _ensure_cart_items_table(sa.inspect(bind))


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    for table_name in ("cart_items", "orders", "users"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
