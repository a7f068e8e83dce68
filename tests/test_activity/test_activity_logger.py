"""Tests for ActivityLogger."""

import uuid

from sqlalchemy import func, select

from marketplace.database.models import ActivityLog, User
from marketplace.services.activity.logger import ActivityLogger
from marketplace.services.orders.enums import OrderStatus


class TestActivityLogger:
    async def test_records_entry_with_display_name_and_states(
        self, db_session, buyer
    ):
        entity_id = uuid.uuid4()

        entry = await ActivityLogger(db_session).record(
            entity_type="order",
            entity_id=entity_id,
            action="order_shipped",
            actor=buyer,
            description="Order ORD-1 shipped",
            from_state=OrderStatus.PROCESSING,
            to_state=OrderStatus.SHIPPED,
            details={"carrier": "Nova Poshta"},
        )
        await db_session.commit()

        assert entry is not None
        stored = await db_session.scalar(
            select(ActivityLog).where(ActivityLog.entity_id == entity_id)
        )
        assert stored.performed_by == "Olena Buyer"
        assert stored.performed_by_user_id == buyer.user_id
        assert (stored.from_state, stored.to_state) == ("processing", "shipped")
        assert stored.details == {"carrier": "Nova Poshta"}

    async def test_failed_write_does_not_abort_the_primary_change(
        self, db_session, admin
    ):
        user_id = uuid.uuid4()
        db_session.add(User(id=user_id, email="late@example.com"))

        entry = await ActivityLogger(db_session).record(
            entity_type="user",
            entity_id=user_id,
            action="user_created",
            actor=admin,
            description=None,
        )
        await db_session.commit()

        assert entry is None
        assert await db_session.get(User, user_id) is not None
        count = await db_session.scalar(
            select(func.count())
            .select_from(ActivityLog)
            .where(ActivityLog.entity_id == user_id)
        )
        assert count == 0
