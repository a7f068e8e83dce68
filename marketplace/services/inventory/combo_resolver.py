"""
Batch expansion of order lines into per-product stock demand.

A naive implementation queries each combo's components and then each
component's product, one line at a time. ``ComboResolver`` instead collects
every distinct id first and issues at most two queries for any number of
lines: one for the components of all combos and one for the tracking flag
and inventory record of every product involved.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import NotFoundError, ValidationError
from marketplace.core.logging import get_logger
from marketplace.database.models import Combo, ComboItem, InventoryRecord, Product
from marketplace.services.orders.enums import OrderItemType

logger = get_logger(__name__)


@dataclass
class ResolvedLine:
    """
    Stock demand of one order line.

    Attributes:
        index: Position of the line in the resolved sequence
        components: ``(product_id, quantity)`` pairs for tracked products
        inventory_record_id: Record a product line reserves against
    """

    index: int
    components: list[tuple[uuid.UUID, int]] = field(default_factory=list)
    inventory_record_id: Optional[uuid.UUID] = None

    @property
    def tracked(self) -> bool:
        return bool(self.components)

    def snapshot(self) -> list[dict[str, Any]]:
        """JSON form stored on the order line as ``stock_components``."""
        return [
            {"product_id": str(product_id), "quantity": quantity}
            for product_id, quantity in self.components
        ]


@dataclass(frozen=True)
class _ProductInfo:
    track_inventory: bool
    inventory_record_id: Optional[uuid.UUID]


class ComboResolver:
    """Resolves order lines to tracked product quantities in batch."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, lines: Sequence[Any]) -> list[ResolvedLine]:
        """
        Expand lines into tracked product demand.

        Args:
            lines: Objects exposing ``item_type``, ``item_id`` and ``quantity``
                (order items or creation input lines)

        Returns:
            One ``ResolvedLine`` per input line, in input order. Remittance
            lines and untracked products resolve to no components.

        Raises:
            NotFoundError: If a product or combo does not exist, or a tracked
                product has no inventory record
            ValidationError: If a combo exists but has no components
        """
        combo_ids = {
            line.item_id
            for line in lines
            if OrderItemType(line.item_type) == OrderItemType.COMBO
        }
        product_ids = {
            line.item_id
            for line in lines
            if OrderItemType(line.item_type) == OrderItemType.PRODUCT
        }

        components = await self._load_combo_components(combo_ids)
        for parts in components.values():
            product_ids.update(product_id for product_id, _ in parts)

        products = await self._load_products(product_ids)

        resolved: list[ResolvedLine] = []
        for index, line in enumerate(lines):
            item_type = OrderItemType(line.item_type)
            entry = ResolvedLine(index=index)

            if item_type == OrderItemType.PRODUCT:
                info = self._product(products, line.item_id)
                if info.track_inventory:
                    entry.components.append((line.item_id, line.quantity))
                    entry.inventory_record_id = info.inventory_record_id
            elif item_type == OrderItemType.COMBO:
                for product_id, per_combo in components[line.item_id]:
                    info = self._product(products, product_id)
                    if info.track_inventory:
                        entry.components.append((product_id, per_combo * line.quantity))

            resolved.append(entry)

        logger.debug(
            "Order lines resolved",
            lines=len(lines),
            combos=len(combo_ids),
            products=len(product_ids),
        )
        return resolved

    async def _load_combo_components(
        self, combo_ids: set[uuid.UUID]
    ) -> dict[uuid.UUID, list[tuple[uuid.UUID, int]]]:
        if not combo_ids:
            return {}

        result = await self.session.execute(
            select(ComboItem.combo_id, ComboItem.product_id, ComboItem.quantity).where(
                ComboItem.combo_id.in_(combo_ids)
            )
        )
        components: dict[uuid.UUID, list[tuple[uuid.UUID, int]]] = {}
        for combo_id, product_id, quantity in result.all():
            components.setdefault(combo_id, []).append((product_id, quantity))

        missing = combo_ids - components.keys()
        if missing:
            await self._reject_missing_combos(missing)
        return components

    async def _reject_missing_combos(self, combo_ids: set[uuid.UUID]) -> None:
        """Tell an unknown combo apart from a bundle with no components."""
        result = await self.session.execute(
            select(Combo.id).where(Combo.id.in_(combo_ids))
        )
        empty = set(result.scalars().all())

        unknown = combo_ids - empty
        if unknown:
            raise NotFoundError("Combo", sorted(unknown)[0])
        raise ValidationError(
            "Combo has no items to reserve",
            combo_id=str(sorted(empty)[0]),
        )

    async def _load_products(
        self, product_ids: set[uuid.UUID]
    ) -> dict[uuid.UUID, _ProductInfo]:
        if not product_ids:
            return {}

        result = await self.session.execute(
            select(Product.id, Product.track_inventory, InventoryRecord.id)
            .outerjoin(InventoryRecord, InventoryRecord.product_id == Product.id)
            .where(Product.id.in_(product_ids))
        )
        products = {
            product_id: _ProductInfo(bool(track), record_id)
            for product_id, track, record_id in result.all()
        }

        missing = product_ids - products.keys()
        if missing:
            raise NotFoundError("Product", sorted(missing)[0])
        return products

    @staticmethod
    def _product(
        products: dict[uuid.UUID, _ProductInfo], product_id: uuid.UUID
    ) -> _ProductInfo:
        info = products[product_id]
        if info.track_inventory and info.inventory_record_id is None:
            raise NotFoundError("InventoryRecord", product_id)
        return info
