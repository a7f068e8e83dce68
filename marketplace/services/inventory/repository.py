"""
Inventory data access.

All counter reads that precede a write go through ``lock_records`` so that
concurrent reservations against the same product are serialized by the
database row lock.
"""

import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import InventoryMovement, InventoryRecord


class InventoryRepository:
    """Repository for inventory counters and movements."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_records(
        self, product_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, InventoryRecord]:
        """
        Load and row-lock the inventory records of several products at once.

        Rows are locked in primary-key order so two batches touching the
        same products cannot deadlock. Locked values replace whatever the
        session already held for those rows.

        Args:
            product_ids: Products to lock

        Returns:
            Records keyed by product id; products without a record are absent
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        stmt = (
            select(InventoryRecord)
            .where(InventoryRecord.product_id.in_(ids))
            .order_by(InventoryRecord.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return {record.product_id: record for record in result.scalars().all()}

    async def get_records(
        self, product_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, InventoryRecord]:
        """Read records without locking."""
        ids = list(set(product_ids))
        if not ids:
            return {}

        stmt = (
            select(InventoryRecord)
            .where(InventoryRecord.product_id.in_(ids))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return {record.product_id: record for record in result.scalars().all()}

    async def add_movements(self, movements: Sequence[InventoryMovement]) -> None:
        """Insert movement rows in one flush."""
        self.session.add_all(movements)
        await self.session.flush()

    async def list_movements(
        self,
        product_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
    ) -> list[InventoryMovement]:
        stmt = select(InventoryMovement).order_by(InventoryMovement.created_at)
        if product_id is not None:
            stmt = stmt.where(InventoryMovement.product_id == product_id)
        if order_id is not None:
            stmt = stmt.where(InventoryMovement.order_id == order_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
