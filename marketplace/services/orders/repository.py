"""
Order data access.

Status columns are never assigned on a loaded instance. ``compare_and_set``
issues ``UPDATE ... WHERE id = :id AND order_status = :expected AND
payment_status = :expected`` so that of two concurrent transitions from the
same state exactly one affects the row.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now
from marketplace.database.models import Order
from marketplace.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)


class OrderRepository:
    """Repository for orders and their lines."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID with its lines, bypassing any stale cached copy.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise
        """
        logger.debug("Fetching order by ID", order_id=str(order_id))

        result = await self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def number_exists(self, order_number: str) -> bool:
        result = await self.session.execute(
            select(exists().where(Order.order_number == order_number))
        )
        return bool(result.scalar())

    async def insert(self, order: Order) -> bool:
        """
        Flush a new order and its lines inside a savepoint.

        Returns:
            True once stored, False when another order already holds
            ``order.order_number``. Only the savepoint is rolled back, so
            the caller can retry under a new number. Any other integrity
            failure propagates.
        """
        try:
            async with self.session.begin_nested():
                self.session.add(order)
                await self.session.flush()
        except IntegrityError as e:
            if "order_number" not in str(e.orig):
                raise
            logger.warning(
                "Order number taken concurrently",
                order_number=order.order_number,
            )
            return False
        return True

    async def list_orders(
        self,
        user_id: Optional[uuid.UUID] = None,
        order_status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders newest first with pagination.

        Args:
            user_id: Restrict to one buyer
            order_status: Optional fulfillment filter
            payment_status: Optional payment filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)
        """
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if order_status is not None:
            conditions.append(Order.order_status == order_status)
        if payment_status is not None:
            conditions.append(Order.payment_status == payment_status)

        stmt = select(Order).order_by(Order.created_at.desc()).offset(skip).limit(limit)
        count_stmt = select(func.count()).select_from(Order)
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        result = await self.session.execute(stmt)
        count_result = await self.session.execute(count_stmt)

        orders = result.scalars().all()
        total_count = count_result.scalar_one()

        logger.debug(
            "Orders fetched",
            user_id=str(user_id) if user_id else None,
            count=len(orders),
            total=total_count,
        )
        return orders, total_count

    async def compare_and_set(
        self,
        order: Order,
        expected_order_status: OrderStatus,
        expected_payment_status: PaymentStatus,
        **values: Any,
    ) -> bool:
        """
        Apply column changes only if both status axes still hold the
        expected values.

        The loaded instance is synchronized with the new values on success.

        Args:
            order: Order being transitioned
            expected_order_status: Fulfillment status read by the caller
            expected_payment_status: Payment status read by the caller
            **values: Columns to set

        Returns:
            True if the row was updated, False if another transition won
        """
        values.setdefault("updated_at", utc_now())

        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.order_status == expected_order_status,
                Order.payment_status == expected_payment_status,
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )

        if result.rowcount != 1:
            logger.warning(
                "Order status changed concurrently",
                order_id=str(order.id),
                expected_order_status=expected_order_status.value,
                expected_payment_status=expected_payment_status.value,
            )
            return False
        return True

    async def refresh(self, order: Order) -> Order:
        await self.session.refresh(order)
        return order
