"""
Order and order line models.

An order carries two independent status columns: ``order_status`` for
fulfillment and ``payment_status`` for money. A table-level CHECK keeps the
cross-axis rule true in storage as well as in the engine: an order is only
past PENDING (and not CANCELLED) when its payment is VALIDATED.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import AuditedModel, BaseModel, JSONType, enum_values
from marketplace.services.inventory.enums import InventoryState
from marketplace.services.orders.enums import OrderItemType, OrderStatus, PaymentStatus


class Order(AuditedModel):
    """
    Customer order.

    Attributes:
        order_number: Human-readable number ``ORD-YYYYMMDD-NNNNN``
        user_id: Buyer who owns the order
        subtotal: Sum of line totals
        discount: Discount applied to the subtotal
        shipping_cost: Shipping charge
        total: ``subtotal - discount + shipping_cost``
        currency: ISO currency code
        shipping_zone: Delivery zone chosen by the buyer
        payment_account_ref: Payment account the buyer paid into
        order_status: Fulfillment axis
        payment_status: Money axis
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Buyer who placed the order",
    )

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0.00")
    )
    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0.00")
    )
    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    shipping_zone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_account_ref: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status axes
    order_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="Fulfillment status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="order_payment_status",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Payment validation status",
    )

    # Payment phase
    payment_proof_ref: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True, comment="Reference returned by the proof store"
    )
    payment_proof_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_validated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    payment_validated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    payment_rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_rejection_reason: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )

    # Fulfillment phase
    processing_started_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    shipped_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    tracking_info: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True, comment="Carrier and tracking number"
    )
    delivered_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivery_proof_ref: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    completed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Cancellation and reopen
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reopened_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    reopened_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reopen_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        CheckConstraint("total > 0", name="ck_orders_total_positive"),
        CheckConstraint("discount >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint(
            "shipping_cost >= 0", name="ck_orders_shipping_non_negative"
        ),
        CheckConstraint(
            "order_status IN ('pending', 'cancelled') "
            "OR payment_status = 'validated'",
            name="ck_orders_fulfillment_requires_payment",
        ),
        Index("ix_orders_user_status", "user_id", "order_status"),
        Index("ix_orders_payment_status", "payment_status"),
        Index("ix_orders_created_at", "created_at"),
        {"comment": "Customer orders"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number='{self.order_number}', "
            f"order_status={self.order_status}, payment_status={self.payment_status})>"
        )


class OrderItem(BaseModel):
    """
    One order line.

    Unit price, name and ``stock_components`` are snapshots taken at
    creation. Only ``inventory_state`` changes afterwards; every stock move
    replays ``stock_components`` so the line gives back exactly what it
    reserved.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    item_type: Mapped[OrderItemType] = mapped_column(
        SQLEnum(
            OrderItemType,
            name="order_item_type",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
    )

    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        comment="Product, combo or remittance type id",
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    line_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )

    inventory_record_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_records.id", ondelete="SET NULL"),
        nullable=True,
        comment="Inventory record a product line reserved against",
    )

    inventory_state: Mapped[InventoryState] = mapped_column(
        SQLEnum(
            InventoryState,
            name="order_item_inventory_state",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=InventoryState.NOT_TRACKED,
    )

    stock_components: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Tracked product demand held by this line, fixed at creation",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price_non_negative"),
        Index("ix_order_items_order_id", "order_id"),
    )
