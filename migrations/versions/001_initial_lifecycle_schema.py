"""
Initial order and remittance lifecycle schema

Creates the user directory, catalog, inventory ledger, order, remittance and
activity log tables with their state enums, check constraints and indexes.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True)


def _id_column() -> sa.Column:
    return sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True)


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("updated_by", sa.Uuid(as_uuid=True), nullable=True),
    ]


def _stamp(prefix: str) -> list[sa.Column]:
    """Actor and time columns for one lifecycle step."""
    return [
        sa.Column(f"{prefix}_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column(f"{prefix}_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create all lifecycle tables."""

    # Users
    op.create_table(
        "users",
        _id_column(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column(
            "role",
            _enum("user_role", "user", "manager", "admin", "super_admin"),
            nullable=False,
            server_default="user",
        ),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_timestamp_columns(),
        sa.UniqueConstraint("email", name="uq_users_email"),
        comment="Accounts that place orders, send remittances or operate them",
    )
    op.create_index("ix_users_email", "users", ["email"])

    # Catalog
    op.create_table(
        "products",
        _id_column(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "track_inventory",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_timestamp_columns(),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sa.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    op.create_table(
        "combos",
        _id_column(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_timestamp_columns(),
    )

    op.create_table(
        "combo_items",
        _id_column(),
        sa.Column(
            "combo_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("combos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.UniqueConstraint("combo_id", "product_id", name="uq_combo_items_product"),
        sa.CheckConstraint("quantity > 0", name="ck_combo_items_quantity_positive"),
    )
    op.create_index("ix_combo_items_combo_id", "combo_items", ["combo_id"])

    # Inventory ledger
    op.create_table(
        "inventory_records",
        _id_column(),
        sa.Column(
            "product_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "on_hand_quantity", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "reserved_quantity", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamp_columns(),
        sa.UniqueConstraint("product_id", name="uq_inventory_records_product_id"),
        sa.CheckConstraint(
            "reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"
        ),
        sa.CheckConstraint(
            "reserved_quantity <= on_hand_quantity",
            name="ck_inventory_reserved_within_on_hand",
        ),
    )

    op.create_table(
        "inventory_movements",
        _id_column(),
        sa.Column(
            "inventory_record_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("inventory_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column(
            "kind",
            _enum(
                "inventory_movement_kind",
                "reservation",
                "release",
                "commit",
                "restock",
            ),
            nullable=False,
        ),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("order_item_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        *_timestamp_columns(),
    )
    op.create_index(
        "ix_inventory_movements_product",
        "inventory_movements",
        ["product_id", "created_at"],
    )
    op.create_index(
        "ix_inventory_movements_order", "inventory_movements", ["order_id"]
    )

    # Orders
    op.create_table(
        "orders",
        _id_column(),
        sa.Column("order_number", sa.String(40), nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "order_status",
            _enum(
                "order_status",
                "pending",
                "processing",
                "shipped",
                "delivered",
                "completed",
                "cancelled",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "payment_status",
            _enum(
                "order_payment_status",
                "pending",
                "proof_uploaded",
                "validated",
                "rejected",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "discount", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "shipping_cost", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("shipping_zone", sa.String(100), nullable=True),
        sa.Column("payment_account_ref", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_proof_ref", sa.String(500), nullable=True),
        sa.Column(
            "payment_proof_uploaded_at", sa.DateTime(timezone=True), nullable=True
        ),
        *_stamp("payment_validated"),
        *_stamp("payment_rejected"),
        sa.Column("payment_rejection_reason", sa.Text(), nullable=True),
        *_stamp("processing_started"),
        *_stamp("shipped"),
        sa.Column("tracking_info", JSONType, nullable=True),
        *_stamp("delivered"),
        sa.Column("delivery_proof_ref", sa.String(500), nullable=True),
        *_stamp("completed"),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        *_stamp("cancelled"),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_stamp("reopened"),
        sa.Column("reopen_reason", sa.Text(), nullable=True),
        sa.Column("reopen_count", sa.Integer(), nullable=False, server_default="0"),
        *_audit_columns(),
        *_timestamp_columns(),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sa.CheckConstraint("total > 0", name="ck_orders_total_positive"),
        sa.CheckConstraint("discount >= 0", name="ck_orders_discount_non_negative"),
        sa.CheckConstraint(
            "shipping_cost >= 0", name="ck_orders_shipping_non_negative"
        ),
        sa.CheckConstraint(
            "order_status IN ('pending', 'cancelled') "
            "OR payment_status = 'validated'",
            name="ck_orders_fulfillment_requires_payment",
        ),
    )
    op.create_index("ix_orders_user_status", "orders", ["user_id", "order_status"])
    op.create_index("ix_orders_payment_status", "orders", ["payment_status"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "order_items",
        _id_column(),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "item_type",
            _enum("order_item_type", "product", "combo", "remittance"),
            nullable=False,
        ),
        sa.Column("item_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "inventory_record_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("inventory_records.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "inventory_state",
            _enum(
                "order_item_inventory_state",
                "not_tracked",
                "reserved",
                "released",
                "committed",
                "restocked",
            ),
            nullable=False,
            server_default="not_tracked",
        ),
        *_timestamp_columns(),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        sa.CheckConstraint(
            "unit_price >= 0", name="ck_order_items_price_non_negative"
        ),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    # Remittances
    op.create_table(
        "remittance_types",
        _id_column(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("currency_code", sa.String(3), nullable=False),
        sa.Column("delivery_currency", sa.String(3), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 6), nullable=False),
        sa.Column(
            "commission_type",
            _enum("commission_type", "fixed", "percentage"),
            nullable=False,
            server_default="percentage",
        ),
        sa.Column(
            "commission_percentage",
            sa.Numeric(5, 2),
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "commission_fixed", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("delivery_methods", JSONType, nullable=False),
        sa.Column(
            "max_delivery_days", sa.Integer(), nullable=False, server_default="3"
        ),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_audit_columns(),
        *_timestamp_columns(),
        sa.UniqueConstraint("name", name="uq_remittance_types_name"),
        sa.CheckConstraint(
            "exchange_rate > 0", name="ck_remittance_types_rate_positive"
        ),
        sa.CheckConstraint("min_amount > 0", name="ck_remittance_types_min_positive"),
        sa.CheckConstraint(
            "max_amount IS NULL OR max_amount >= min_amount",
            name="ck_remittance_types_bounds",
        ),
        sa.CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage <= 100",
            name="ck_remittance_types_percentage_range",
        ),
        sa.CheckConstraint(
            "commission_fixed >= 0", name="ck_remittance_types_fixed_non_negative"
        ),
        sa.CheckConstraint(
            "max_delivery_days > 0", name="ck_remittance_types_delivery_days"
        ),
    )

    op.create_table(
        "recipients",
        _id_column(),
        sa.Column(
            "sender_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "linked_user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        *_timestamp_columns(),
    )
    op.create_index("ix_recipients_sender_id", "recipients", ["sender_id"])

    op.create_table(
        "recipient_bank_accounts",
        _id_column(),
        sa.Column(
            "recipient_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("recipients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bank_name", sa.String(150), nullable=False),
        sa.Column("account_number", sa.String(64), nullable=False),
        sa.Column("account_holder", sa.String(200), nullable=False),
        sa.Column("account_type", sa.String(40), nullable=True),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamp_columns(),
    )
    op.create_index(
        "ix_recipient_bank_accounts_recipient_id",
        "recipient_bank_accounts",
        ["recipient_id"],
    )

    op.create_table(
        "remittances",
        _id_column(),
        sa.Column("remittance_number", sa.String(32), nullable=False),
        sa.Column(
            "sender_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "remittance_type_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("remittance_types.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("recipients.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "recipient_bank_account_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("recipient_bank_accounts.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 6), nullable=False),
        sa.Column("delivery_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency_code", sa.String(3), nullable=False),
        sa.Column("delivery_currency", sa.String(3), nullable=False),
        sa.Column(
            "delivery_method",
            _enum("delivery_method", "cash", "bank_transfer", "card"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum(
                "remittance_status",
                "payment_pending",
                "payment_proof_uploaded",
                "payment_validated",
                "payment_rejected",
                "processing",
                "delivered",
                "completed",
                "cancelled",
            ),
            nullable=False,
            server_default="payment_pending",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_proof_ref", sa.String(500), nullable=True),
        sa.Column(
            "payment_proof_uploaded_at", sa.DateTime(timezone=True), nullable=True
        ),
        *_stamp("payment_validated"),
        *_stamp("payment_rejected"),
        sa.Column("payment_rejection_reason", sa.Text(), nullable=True),
        sa.Column("max_delivery_date", sa.DateTime(timezone=True), nullable=True),
        *_stamp("processing_started"),
        sa.Column("delivery_proof_ref", sa.String(500), nullable=True),
        sa.Column("delivery_notes", sa.Text(), nullable=True),
        *_stamp("delivered"),
        *_stamp("completed"),
        *_stamp("cancelled"),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_audit_columns(),
        *_timestamp_columns(),
        sa.UniqueConstraint(
            "remittance_number", name="uq_remittances_remittance_number"
        ),
        sa.CheckConstraint("amount > 0", name="ck_remittances_amount_positive"),
        sa.CheckConstraint(
            "commission >= 0",
            name="ck_remittances_commission",
        ),
        sa.CheckConstraint(
            "delivery_method = 'cash' OR recipient_bank_account_id IS NOT NULL",
            name="ck_remittances_bank_account_for_non_cash",
        ),
    )
    op.create_index(
        "ix_remittances_sender_status", "remittances", ["sender_id", "status"]
    )
    op.create_index("ix_remittances_status", "remittances", ["status"])

    op.create_table(
        "bank_transfer_records",
        _id_column(),
        sa.Column(
            "remittance_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("remittances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "recipient_bank_account_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("recipient_bank_accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "status",
            _enum(
                "bank_transfer_status",
                "pending",
                "processing",
                "completed",
                "failed",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("reference_number", sa.String(100), nullable=True),
        sa.Column("amount_transferred", sa.Numeric(14, 2), nullable=False),
        sa.Column("processed_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint(
            "remittance_id", "attempt", name="uq_bank_transfer_attempt"
        ),
    )
    op.create_index(
        "ix_bank_transfer_records_status", "bank_transfer_records", ["status"]
    )

    # Activity log
    op.create_table(
        "activity_logs",
        _id_column(),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(80), nullable=False),
        sa.Column("from_state", sa.String(50), nullable=True),
        sa.Column("to_state", sa.String(50), nullable=True),
        sa.Column("performed_by", sa.String(255), nullable=False),
        sa.Column("performed_by_user_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("details", JSONType, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        comment="Append-only audit trail of lifecycle operations",
    )
    op.create_index(
        "ix_activity_logs_entity",
        "activity_logs",
        ["entity_type", "entity_id", "created_at"],
    )
    op.create_index(
        "ix_activity_logs_user", "activity_logs", ["performed_by_user_id"]
    )


def downgrade() -> None:
    """Drop all lifecycle tables in reverse dependency order."""
    op.drop_index("ix_activity_logs_user", table_name="activity_logs")
    op.drop_index("ix_activity_logs_entity", table_name="activity_logs")
    op.drop_table("activity_logs")

    op.drop_index(
        "ix_bank_transfer_records_status", table_name="bank_transfer_records"
    )
    op.drop_table("bank_transfer_records")

    op.drop_index("ix_remittances_status", table_name="remittances")
    op.drop_index("ix_remittances_sender_status", table_name="remittances")
    op.drop_table("remittances")

    op.drop_index(
        "ix_recipient_bank_accounts_recipient_id",
        table_name="recipient_bank_accounts",
    )
    op.drop_table("recipient_bank_accounts")
    op.drop_index("ix_recipients_sender_id", table_name="recipients")
    op.drop_table("recipients")
    op.drop_table("remittance_types")

    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_orders_created_at", table_name="orders")
    op.drop_index("ix_orders_payment_status", table_name="orders")
    op.drop_index("ix_orders_user_status", table_name="orders")
    op.drop_table("orders")

    op.drop_index("ix_inventory_movements_order", table_name="inventory_movements")
    op.drop_index(
        "ix_inventory_movements_product", table_name="inventory_movements"
    )
    op.drop_table("inventory_movements")
    op.drop_table("inventory_records")

    op.drop_index("ix_combo_items_combo_id", table_name="combo_items")
    op.drop_table("combo_items")
    op.drop_table("combos")
    op.drop_table("products")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
