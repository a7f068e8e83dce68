"""
Remittance data access.

Like orders, remittance and bank-transfer statuses are only changed through
``compare_and_set`` so that concurrent transitions from the same status
cannot both apply.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now
from marketplace.database.models import (
    BankTransferRecord,
    Recipient,
    Remittance,
    RemittanceType,
)
from marketplace.services.remittances.enums import BankTransferStatus, RemittanceStatus

logger = get_logger(__name__)


class RemittanceRepository:
    """Repository for remittances, their types, recipients and transfers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, entity: Any) -> None:
        self.session.add(entity)

    # ============================================================================
    # Remittances
    # ============================================================================

    async def get_by_id(self, remittance_id: uuid.UUID) -> Optional[Remittance]:
        """Get a remittance by ID, bypassing any stale cached copy."""
        logger.debug("Fetching remittance by ID", remittance_id=str(remittance_id))

        result = await self.session.execute(
            select(Remittance)
            .where(Remittance.id == remittance_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def latest_number(self, year: int) -> Optional[str]:
        """
        Highest remittance number issued in ``year``.

        Counters may outgrow four digits, so longer numbers sort first.
        """
        result = await self.session.execute(
            select(Remittance.remittance_number)
            .where(Remittance.remittance_number.like(f"REM-{year}-%"))
            .order_by(
                func.length(Remittance.remittance_number).desc(),
                Remittance.remittance_number.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def number_exists(self, remittance_number: str) -> bool:
        result = await self.session.execute(
            select(exists().where(Remittance.remittance_number == remittance_number))
        )
        return bool(result.scalar())

    async def insert(self, remittance: Remittance) -> bool:
        """
        Flush a new remittance inside a savepoint.

        Returns:
            True once stored, False when another remittance already holds
            ``remittance.remittance_number``. Only the savepoint is rolled
            back, so the caller can retry under a new number. Any other
            integrity failure propagates.
        """
        try:
            async with self.session.begin_nested():
                self.session.add(remittance)
                await self.session.flush()
        except IntegrityError as e:
            if "remittance_number" not in str(e.orig):
                raise
            logger.warning(
                "Remittance number taken concurrently",
                remittance_number=remittance.remittance_number,
            )
            return False
        return True

    async def list_remittances(
        self,
        sender_id: Optional[uuid.UUID] = None,
        status: Optional[RemittanceStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Remittance], int]:
        """
        List remittances newest first with pagination.

        Returns:
            Tuple of (remittances, total_count)
        """
        conditions = []
        if sender_id is not None:
            conditions.append(Remittance.sender_id == sender_id)
        if status is not None:
            conditions.append(Remittance.status == status)

        stmt = (
            select(Remittance)
            .order_by(Remittance.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Remittance)
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        result = await self.session.execute(stmt)
        count_result = await self.session.execute(count_stmt)
        return result.scalars().all(), count_result.scalar_one()

    async def list_awaiting_delivery(
        self, statuses: Sequence[RemittanceStatus]
    ) -> Sequence[Remittance]:
        """Remittances in ``statuses`` that have a delivery deadline."""
        result = await self.session.execute(
            select(Remittance)
            .where(
                Remittance.status.in_(statuses),
                Remittance.max_delivery_date.is_not(None),
            )
            .order_by(Remittance.max_delivery_date)
        )
        return result.scalars().all()

    async def compare_and_set(
        self,
        remittance: Remittance,
        expected_status: RemittanceStatus,
        **values: Any,
    ) -> bool:
        """
        Apply column changes only if the status still equals
        ``expected_status``.

        Returns:
            True if the row was updated, False if another transition won
        """
        values.setdefault("updated_at", utc_now())

        result = await self.session.execute(
            update(Remittance)
            .where(
                Remittance.id == remittance.id,
                Remittance.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )

        if result.rowcount != 1:
            logger.warning(
                "Remittance status changed concurrently",
                remittance_id=str(remittance.id),
                expected_status=expected_status.value,
            )
            return False
        return True

    async def refresh(self, entity: Any) -> Any:
        await self.session.refresh(entity)
        return entity

    # ============================================================================
    # Types
    # ============================================================================

    async def get_type(self, type_id: uuid.UUID) -> Optional[RemittanceType]:
        result = await self.session.execute(
            select(RemittanceType).where(RemittanceType.id == type_id)
        )
        return result.scalar_one_or_none()

    async def type_name_exists(
        self, name: str, exclude_id: Optional[uuid.UUID] = None
    ) -> bool:
        condition = RemittanceType.name == name
        if exclude_id is not None:
            condition = and_(condition, RemittanceType.id != exclude_id)
        result = await self.session.execute(select(exists().where(condition)))
        return bool(result.scalar())

    async def list_types(self, active_only: bool = True) -> Sequence[RemittanceType]:
        stmt = select(RemittanceType).order_by(RemittanceType.name)
        if active_only:
            stmt = stmt.where(RemittanceType.is_active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalars().all()

    # ============================================================================
    # Recipients
    # ============================================================================

    async def get_recipient(self, recipient_id: uuid.UUID) -> Optional[Recipient]:
        result = await self.session.execute(
            select(Recipient).where(Recipient.id == recipient_id)
        )
        return result.scalar_one_or_none()

    async def list_recipients(self, sender_id: uuid.UUID) -> Sequence[Recipient]:
        result = await self.session.execute(
            select(Recipient)
            .where(Recipient.sender_id == sender_id)
            .order_by(Recipient.full_name)
        )
        return result.scalars().all()

    # ============================================================================
    # Bank transfers
    # ============================================================================

    async def get_transfer(
        self, transfer_id: uuid.UUID
    ) -> Optional[BankTransferRecord]:
        result = await self.session.execute(
            select(BankTransferRecord)
            .where(BankTransferRecord.id == transfer_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def next_transfer_attempt(self, remittance_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(BankTransferRecord.attempt), 0)).where(
                BankTransferRecord.remittance_id == remittance_id
            )
        )
        return int(result.scalar_one()) + 1

    async def transfer_compare_and_set(
        self,
        transfer: BankTransferRecord,
        expected_status: BankTransferStatus,
        **values: Any,
    ) -> bool:
        values.setdefault("updated_at", utc_now())

        result = await self.session.execute(
            update(BankTransferRecord)
            .where(
                BankTransferRecord.id == transfer.id,
                BankTransferRecord.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1
