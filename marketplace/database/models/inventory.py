"""
Inventory ledger models.

``InventoryRecord`` holds per-product stock counters. Available stock is
never stored: it is always ``on_hand_quantity - reserved_quantity``. The
database enforces ``0 <= reserved_quantity <= on_hand_quantity`` so that a
lost update can never persist an oversold row.

``InventoryMovement`` is the append-only trail of every mutation.
"""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel, enum_values
from marketplace.services.inventory.enums import MovementKind

if TYPE_CHECKING:
    from marketplace.database.models.catalog import Product


class InventoryRecord(BaseModel):
    """
    Stock counters for one product.

    Attributes:
        product_id: Product the counters belong to (one record per product)
        on_hand_quantity: Physical units held
        reserved_quantity: Units held for unpaid orders
        version: Incremented on every counter change
    """

    __tablename__ = "inventory_records"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Product the counters belong to",
    )

    on_hand_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Physical units held",
    )

    reserved_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units held for orders awaiting payment validation",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Incremented on every counter change",
    )

    product: Mapped["Product"] = relationship(
        "Product",
        back_populates="inventory",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"
        ),
        CheckConstraint(
            "reserved_quantity <= on_hand_quantity",
            name="ck_inventory_reserved_within_on_hand",
        ),
        {"comment": "Per-product stock counters"},
    )

    @property
    def available_quantity(self) -> int:
        """Units that can still be reserved."""
        return self.on_hand_quantity - self.reserved_quantity


class InventoryMovement(BaseModel):
    """
    Append-only record of one stock mutation.

    ``delta`` is signed by its effect on available stock: reservations are
    negative, releases positive. Commits and restocks move ``on_hand`` and
    ``reserved`` together, so their delta records the on-hand change.
    """

    __tablename__ = "inventory_movements"

    inventory_record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_records.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
    )

    kind: Mapped[MovementKind] = mapped_column(
        SQLEnum(
            MovementKind,
            name="inventory_movement_kind",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
    )

    delta: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Signed quantity change",
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Order that caused the movement",
    )

    order_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Order line that caused the movement",
    )

    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_inventory_movements_product", "product_id", "created_at"),
        Index("ix_inventory_movements_order", "order_id"),
    )
