"""
Inventory reservation manager.

Tracks on-hand against reserved stock per product and applies the four
ledger mutations (reserve, release, commit, restock). Every mutation is a
batch internally: requests are aggregated per product, all affected rows
are locked with a single query, new counters are computed and validated in
memory, and the changed rows are written back in one flush. Single-product
calls are one-element batches.

Movement rows are an audit side path. They are written inside a savepoint
after the counters are flushed, so a failed movement insert is logged and
never undoes the counter change.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from marketplace.core.logging import get_logger
from marketplace.database.models import InventoryMovement, InventoryRecord
from marketplace.services.inventory.enums import MovementKind
from marketplace.services.inventory.repository import InventoryRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class StockRequest:
    """
    One requested stock mutation.

    Attributes:
        product_id: Product to mutate
        quantity: Positive number of units
        order_id: Order causing the mutation, recorded on the movement
        order_item_id: Order line causing the mutation
    """

    product_id: uuid.UUID
    quantity: int
    order_id: Optional[uuid.UUID] = None
    order_item_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class StockLevel:
    """Snapshot of a product's counters."""

    product_id: uuid.UUID
    on_hand: int
    reserved: int

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved

    @classmethod
    def of(cls, record: InventoryRecord) -> "StockLevel":
        return cls(
            product_id=record.product_id,
            on_hand=record.on_hand_quantity,
            reserved=record.reserved_quantity,
        )


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of a single-product mutation."""

    product_id: uuid.UUID
    quantity: int
    kind: MovementKind
    stock: StockLevel


class InventoryReservationManager:
    """
    Serialized stock mutations for orders.

    Example:
        manager = InventoryReservationManager(session)
        await manager.reserve_many([
            StockRequest(product_id=p1, quantity=2, order_id=order.id),
            StockRequest(product_id=p2, quantity=1, order_id=order.id),
        ])
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = InventoryRepository(session)

    # ============================================================================
    # Single-product operations
    # ============================================================================

    async def reserve(
        self,
        product_id: uuid.UUID,
        quantity: int,
        order_id: Optional[uuid.UUID] = None,
        order_item_id: Optional[uuid.UUID] = None,
    ) -> ReservationResult:
        """
        Hold stock for an order.

        Raises:
            InsufficientStockError: If available stock is below ``quantity``
        """
        return await self._single(
            MovementKind.RESERVATION, product_id, quantity, order_id, order_item_id
        )

    async def release(
        self,
        product_id: uuid.UUID,
        quantity: int,
        order_id: Optional[uuid.UUID] = None,
        order_item_id: Optional[uuid.UUID] = None,
    ) -> ReservationResult:
        """Return held stock; the reserved counter is floored at zero."""
        return await self._single(
            MovementKind.RELEASE, product_id, quantity, order_id, order_item_id
        )

    async def commit(
        self,
        product_id: uuid.UUID,
        quantity: int,
        order_id: Optional[uuid.UUID] = None,
        order_item_id: Optional[uuid.UUID] = None,
    ) -> ReservationResult:
        """
        Consume held stock permanently.

        Raises:
            InsufficientStockError: If less than ``quantity`` is reserved
        """
        return await self._single(
            MovementKind.COMMIT, product_id, quantity, order_id, order_item_id
        )

    async def restock(
        self,
        product_id: uuid.UUID,
        quantity: int,
        order_id: Optional[uuid.UUID] = None,
        order_item_id: Optional[uuid.UUID] = None,
    ) -> ReservationResult:
        """Put consumed stock back on the shelf."""
        return await self._single(
            MovementKind.RESTOCK, product_id, quantity, order_id, order_item_id
        )

    # ============================================================================
    # Batch operations
    # ============================================================================

    async def reserve_many(
        self, requests: Sequence[StockRequest]
    ) -> dict[uuid.UUID, StockLevel]:
        return await self._apply(MovementKind.RESERVATION, requests)

    async def release_many(
        self, requests: Sequence[StockRequest]
    ) -> dict[uuid.UUID, StockLevel]:
        return await self._apply(MovementKind.RELEASE, requests)

    async def commit_many(
        self, requests: Sequence[StockRequest]
    ) -> dict[uuid.UUID, StockLevel]:
        return await self._apply(MovementKind.COMMIT, requests)

    async def restock_many(
        self, requests: Sequence[StockRequest]
    ) -> dict[uuid.UUID, StockLevel]:
        return await self._apply(MovementKind.RESTOCK, requests)

    async def get_availability(
        self, product_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, StockLevel]:
        """
        Read current counters.

        Args:
            product_ids: Products to read

        Returns:
            Stock levels keyed by product id; untracked products are absent
        """
        records = await self.repository.get_records(product_ids)
        return {product_id: StockLevel.of(r) for product_id, r in records.items()}

    # ============================================================================
    # Internals
    # ============================================================================

    async def _single(
        self,
        kind: MovementKind,
        product_id: uuid.UUID,
        quantity: int,
        order_id: Optional[uuid.UUID],
        order_item_id: Optional[uuid.UUID],
    ) -> ReservationResult:
        levels = await self._apply(
            kind,
            [StockRequest(product_id, quantity, order_id, order_item_id)],
        )
        return ReservationResult(
            product_id=product_id,
            quantity=quantity,
            kind=kind,
            stock=levels[product_id],
        )

    async def _apply(
        self,
        kind: MovementKind,
        requests: Sequence[StockRequest],
    ) -> dict[uuid.UUID, StockLevel]:
        """
        Apply one kind of mutation to every requested product.

        Nothing is written unless every product passes its check, so a
        failing batch leaves all counters as they were.

        Args:
            kind: Mutation to apply
            requests: Requests, possibly several per product

        Returns:
            Stock levels after the mutation, keyed by product id

        Raises:
            ValidationError: If a quantity is not positive
            NotFoundError: If a product has no inventory record
            InsufficientStockError: If a reserve or commit cannot be honoured
        """
        if not requests:
            return {}

        totals: dict[uuid.UUID, int] = {}
        for request in requests:
            if request.quantity <= 0:
                raise ValidationError(
                    "Stock quantities must be positive",
                    product_id=str(request.product_id),
                    quantity=request.quantity,
                )
            totals[request.product_id] = (
                totals.get(request.product_id, 0) + request.quantity
            )

        records = await self.repository.lock_records(totals.keys())

        updates: dict[uuid.UUID, tuple[int, int]] = {}
        for product_id in sorted(totals):
            record = records.get(product_id)
            if record is None:
                raise NotFoundError("InventoryRecord", product_id)
            updates[product_id] = self._next_counters(
                kind, record, totals[product_id]
            )

        for product_id, (on_hand, reserved) in updates.items():
            record = records[product_id]
            record.on_hand_quantity = on_hand
            record.reserved_quantity = reserved
            record.version = record.version + 1

        await self.session.flush()

        logger.info(
            "Inventory updated",
            kind=kind.value,
            products=len(updates),
            lines=len(requests),
        )

        await self._record_movements(kind, requests, records)
        return {pid: StockLevel.of(records[pid]) for pid in updates}

    @staticmethod
    def _next_counters(
        kind: MovementKind, record: InventoryRecord, quantity: int
    ) -> tuple[int, int]:
        on_hand = record.on_hand_quantity
        reserved = record.reserved_quantity

        if kind == MovementKind.RESERVATION:
            available = on_hand - reserved
            if quantity > available:
                raise InsufficientStockError(record.product_id, quantity, available)
            reserved += quantity
        elif kind == MovementKind.RELEASE:
            reserved = max(0, reserved - quantity)
        elif kind == MovementKind.COMMIT:
            if quantity > reserved:
                raise InsufficientStockError(
                    record.product_id, quantity, reserved, reason="not_reserved"
                )
            on_hand -= quantity
            reserved -= quantity
        elif kind == MovementKind.RESTOCK:
            on_hand += quantity

        return on_hand, reserved

    async def _record_movements(
        self,
        kind: MovementKind,
        requests: Sequence[StockRequest],
        records: dict[uuid.UUID, InventoryRecord],
    ) -> None:
        sign = 1 if kind in (MovementKind.RELEASE, MovementKind.RESTOCK) else -1
        movements = [
            InventoryMovement(
                inventory_record_id=records[request.product_id].id,
                product_id=request.product_id,
                kind=kind,
                delta=sign * request.quantity,
                order_id=request.order_id,
                order_item_id=request.order_item_id,
            )
            for request in requests
        ]

        try:
            async with self.session.begin_nested():
                await self.repository.add_movements(movements)
        except Exception as e:
            logger.warning(
                "Failed to record inventory movements",
                kind=kind.value,
                count=len(movements),
                error=str(e),
                error_type=type(e).__name__,
            )
