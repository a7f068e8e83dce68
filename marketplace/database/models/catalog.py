"""
Catalog models: products and combos.

A combo is a fixed bundle of products sold as one line. Stock is only ever
tracked per product, so combo lines are expanded to their components before
any inventory mutation.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel

if TYPE_CHECKING:
    from marketplace.database.models.inventory import InventoryRecord


class Product(BaseModel):
    """
    Catalog product.

    Attributes:
        name: Product name
        sku: Stock keeping unit, unique
        price: Current list price
        track_inventory: Whether orders reserve stock for this product
        is_active: Inactive products cannot be ordered
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Product name",
    )

    sku: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
        comment="Stock keeping unit",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Current list price",
    )

    track_inventory: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether orders reserve stock for this product",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    inventory: Mapped[Optional["InventoryRecord"]] = relationship(
        "InventoryRecord",
        back_populates="product",
        uselist=False,
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        {"comment": "Catalog products"},
    )


class Combo(BaseModel):
    """Fixed bundle of products sold as a single line."""

    __tablename__ = "combos"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    items: Mapped[list["ComboItem"]] = relationship(
        "ComboItem",
        back_populates="combo",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class ComboItem(BaseModel):
    """
    One component of a combo.

    Attributes:
        combo_id: Owning combo
        product_id: Component product
        quantity: Units of the product per combo unit
    """

    __tablename__ = "combo_items"

    combo_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("combos.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    combo: Mapped["Combo"] = relationship("Combo", back_populates="items")

    __table_args__ = (
        UniqueConstraint("combo_id", "product_id", name="uq_combo_items_product"),
        CheckConstraint("quantity > 0", name="ck_combo_items_quantity_positive"),
        Index("ix_combo_items_combo_id", "combo_id"),
    )
