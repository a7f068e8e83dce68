"""
Test suite for OrderLifecycleEngine.

Runs every operation against a real (SQLite) session so that stock counters,
compare-and-set updates, the activity trail and rollbacks are exercised the
way they run in production.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import func, select, update

from marketplace.core.exceptions import (
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace.database.models import ActivityLog, ComboItem, Order, Product
from marketplace.services.inventory.enums import InventoryState
from marketplace.services.orders.enums import (
    OrderItemType,
    OrderStatus,
    PaymentStatus,
)
from marketplace.services.orders.numbering import OrderNumberAllocator
from marketplace.services.orders.service import (
    OrderFilters,
    OrderLifecycleEngine,
    OrderLineInput,
)


def product_line(product, quantity=1, unit_price=None) -> OrderLineInput:
    return OrderLineInput(
        item_type=OrderItemType.PRODUCT,
        item_id=product.id,
        name=product.name,
        quantity=quantity,
        unit_price=unit_price if unit_price is not None else product.price,
    )


async def place(engine, buyer, *lines, **kwargs) -> Order:
    kwargs.setdefault("shipping_zone", "Kyiv")
    kwargs.setdefault("currency", "usd")
    return await engine.create_order(buyer, list(lines), **kwargs)


async def paid_order(engine, buyer, admin, *lines) -> Order:
    order = await place(engine, buyer, *lines)
    await engine.upload_payment_proof(order.id, "receipts/1.png", buyer)
    return await engine.validate_payment(order.id, admin)


# ============================================================================
# Creation
# ============================================================================


class TestCreateOrder:
    """Tests for order creation and pricing."""

    async def test_create_reserves_stock_and_prices_server_side(
        self, order_engine, buyer, product_factory, stock_of
    ):
        product = await product_factory(price=Decimal("10.00"), on_hand=5)

        order = await place(
            order_engine,
            buyer,
            product_line(product, 2),
            discount=Decimal("5"),
            shipping_cost=Decimal("3.50"),
        )

        assert order.order_status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.subtotal == Decimal("20.00")
        assert order.total == Decimal("18.50")
        assert order.currency == "USD"
        assert order.order_number.startswith("ORD-")
        assert order.items[0].inventory_state == InventoryState.RESERVED
        level = await stock_of(product)
        assert (level.on_hand, level.reserved) == (5, 2)

    async def test_insufficient_stock_creates_nothing(
        self, db_session, order_engine, buyer, product_factory, stock_of
    ):
        product = await product_factory(on_hand=1)

        with pytest.raises(InsufficientStockError):
            await place(order_engine, buyer, product_line(product, 2))

        count = await db_session.scalar(select(func.count()).select_from(Order))
        assert count == 0
        assert (await stock_of(product)).reserved == 0

    async def test_combo_line_reserves_every_component(
        self, order_engine, buyer, product_factory, combo_factory, stock_of
    ):
        rice = await product_factory(name="Rice", on_hand=10)
        oil = await product_factory(name="Oil", on_hand=10)
        combo = await combo_factory([(rice, 2), (oil, 1)])

        order = await place(
            order_engine,
            buyer,
            OrderLineInput(
                OrderItemType.COMBO, combo.id, combo.name, 2, Decimal("25.00")
            ),
        )

        assert order.items[0].inventory_state == InventoryState.RESERVED
        assert (await stock_of(rice)).reserved == 4
        assert (await stock_of(oil)).reserved == 2
        assert sorted(
            (c["product_id"], c["quantity"]) for c in order.items[0].stock_components
        ) == sorted([(str(rice.id), 4), (str(oil.id), 2)])

    async def test_untracked_product_is_not_reserved(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory(track_inventory=False)

        order = await place(order_engine, buyer, product_line(product, 3))

        assert order.items[0].inventory_state == InventoryState.NOT_TRACKED

    async def test_empty_cart_rejected(self, order_engine, buyer):
        with pytest.raises(ValidationError):
            await order_engine.create_order(buyer, [], "Kyiv", "USD")

    async def test_non_positive_total_rejected(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory(price=Decimal("10.00"))

        with pytest.raises(ValidationError):
            await place(
                order_engine, buyer, product_line(product), discount=Decimal("10")
            )

    async def test_invalid_currency_rejected(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory()

        with pytest.raises(ValidationError):
            await place(order_engine, buyer, product_line(product), currency="US")

    async def test_unknown_product_is_not_found(self, order_engine, buyer):
        line = OrderLineInput(
            OrderItemType.PRODUCT, uuid.uuid4(), "Ghost", 1, Decimal("1.00")
        )
        with pytest.raises(NotFoundError):
            await order_engine.create_order(buyer, [line], "Kyiv", "USD")

    async def test_creation_is_logged(
        self, db_session, order_engine, buyer, product_factory
    ):
        product = await product_factory()

        order = await place(order_engine, buyer, product_line(product))

        entries = (
            await db_session.scalars(
                select(ActivityLog).where(ActivityLog.entity_id == order.id)
            )
        ).all()
        assert [e.action for e in entries] == ["order_created"]
        assert entries[0].performed_by == buyer.display_name
        assert entries[0].to_state == "pending"



    async def test_number_taken_after_the_existence_check_is_retried(
        self,
        db_session,
        notifier,
        clock,
        test_settings,
        buyer,
        product_factory,
        stock_of,
    ):
        product = await product_factory(on_hand=5)
        rng = Mock(randint=Mock(return_value=4821))

        def engine() -> OrderLifecycleEngine:
            # The existence check never sees the other order's number
            allocator = OrderNumberAllocator(
                AsyncMock(return_value=False), clock=clock, rng=rng
            )
            return OrderLifecycleEngine(
                db_session,
                notifier=notifier,
                clock=clock,
                number_allocator=allocator,
                settings=test_settings,
            )

        first = await place(engine(), buyer, product_line(product))
        second = await place(engine(), buyer, product_line(product))

        assert first.order_number == "ORD-20251007-04821"
        assert second.order_number == "ORD-20251007-04821-123456"
        assert [item.order_id for item in second.items] == [second.id]
        count = await db_session.scalar(select(func.count()).select_from(Order))
        assert count == 2
        assert (await stock_of(product)).reserved == 2


# ============================================================================
# Payment axis
# ============================================================================


class TestPayment:
    """Tests for proof upload, validation, rejection and resubmission."""

    async def test_validation_commits_stock_and_starts_processing(
        self, order_engine, buyer, admin, product_factory, stock_of, notifier
    ):
        product = await product_factory(on_hand=5)

        order = await paid_order(order_engine, buyer, admin, product_line(product, 2))

        assert order.payment_status == PaymentStatus.VALIDATED
        assert order.order_status == OrderStatus.PROCESSING
        assert order.payment_validated_by == admin.user_id
        assert order.items[0].inventory_state == InventoryState.COMMITTED
        level = await stock_of(product)
        assert (level.on_hand, level.reserved) == (3, 0)

        event = notifier.dispatch.call_args.args[0]
        assert event.transition == "payment_validated"
        assert event.recipient_user_id == buyer.user_id

    async def test_validation_requires_uploaded_proof(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await order_engine.validate_payment(order.id, admin)

        assert exc_info.value.current_state == PaymentStatus.PENDING

    async def test_second_validation_is_rejected_and_stock_committed_once(
        self, order_engine, buyer, admin, product_factory, stock_of
    ):
        product = await product_factory(on_hand=5)
        order = await paid_order(order_engine, buyer, admin, product_line(product, 2))

        with pytest.raises(InvalidStateTransitionError):
            await order_engine.validate_payment(order.id, admin)

        level = await stock_of(product)
        assert (level.on_hand, level.reserved) == (3, 0)

    async def test_only_admin_validates(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))
        await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)

        with pytest.raises(PermissionDeniedError):
            await order_engine.validate_payment(order.id, buyer)

    async def test_stranger_cannot_upload_proof(
        self, order_engine, buyer, stranger, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(PermissionDeniedError):
            await order_engine.upload_payment_proof(order.id, "proof.pdf", stranger)

    async def test_empty_proof_rejected(self, order_engine, buyer, product_factory):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(ValidationError):
            await order_engine.upload_payment_proof(order.id, "   ", buyer)

    async def test_rejection_releases_reservation(
        self, order_engine, buyer, admin, product_factory, stock_of
    ):
        product = await product_factory(on_hand=5)
        order = await place(order_engine, buyer, product_line(product, 2))
        await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)

        order = await order_engine.reject_payment(order.id, admin, "Blurry receipt")

        assert order.payment_status == PaymentStatus.REJECTED
        assert order.order_status == OrderStatus.PENDING
        assert order.payment_rejection_reason == "Blurry receipt"
        assert order.items[0].inventory_state == InventoryState.RELEASED
        level = await stock_of(product)
        assert (level.reserved, level.available) == (0, 5)

    async def test_rejection_requires_reason(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(ValidationError):
            await order_engine.reject_payment(order.id, admin, "")

    async def test_resubmission_reserves_again(
        self, order_engine, buyer, admin, product_factory, stock_of
    ):
        product = await product_factory(on_hand=5)
        order = await place(order_engine, buyer, product_line(product, 2))
        await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)
        await order_engine.reject_payment(order.id, admin, "Wrong amount")

        order = await order_engine.resubmit_payment(order.id, buyer)

        assert order.payment_status == PaymentStatus.PENDING
        assert order.payment_proof_ref is None
        assert order.payment_rejection_reason is None
        assert order.items[0].inventory_state == InventoryState.RESERVED
        assert (await stock_of(product)).reserved == 2

    async def test_payment_cannot_move_once_fulfillment_left_pending(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await paid_order(order_engine, buyer, admin, product_line(product))

        with pytest.raises(InvalidStateTransitionError):
            await order_engine.reject_payment(order.id, admin, "Too late")

    async def test_cancelled_order_names_its_state_when_payment_is_blocked(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))
        await order_engine.cancel(order.id, buyer, "Changed my mind")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)

        assert "'cancelled'" in exc_info.value.message
        assert exc_info.value.context["reason"] == "order_not_pending"


# ============================================================================
# Fulfillment axis
# ============================================================================


class TestFulfillment:
    """Tests for shipping, delivery, completion and cancellation."""

    async def test_full_lifecycle(
        self, db_session, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await paid_order(order_engine, buyer, admin, product_line(product))

        await order_engine.mark_shipped(
            order.id, admin, {"carrier": "Nova Poshta", "number": "59000"}
        )
        await order_engine.mark_delivered(order.id, admin, "signature.png")
        order = await order_engine.complete(order.id, admin, "Thanks")

        assert order.order_status == OrderStatus.COMPLETED
        assert order.tracking_info == {"carrier": "Nova Poshta", "number": "59000"}
        assert order.delivery_proof_ref == "signature.png"
        assert order.completion_notes == "Thanks"

        actions = (
            await db_session.scalars(
                select(ActivityLog.action)
                .where(ActivityLog.entity_id == order.id)
                .order_by(ActivityLog.created_at)
            )
        ).all()
        assert actions == [
            "order_created",
            "payment_proof_uploaded",
            "payment_validated",
            "order_shipped",
            "order_delivered",
            "order_completed",
        ]

    async def test_unpaid_order_cannot_start_processing(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await order_engine.start_processing(order.id, admin)

        assert exc_info.value.context["reason"] == "payment_not_validated"

    async def test_cannot_skip_shipping(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await paid_order(order_engine, buyer, admin, product_line(product))

        with pytest.raises(InvalidStateTransitionError):
            await order_engine.mark_delivered(order.id, admin)

    async def test_cancel_pending_releases_stock(
        self, order_engine, buyer, product_factory, stock_of, notifier
    ):
        product = await product_factory(on_hand=5)
        order = await place(order_engine, buyer, product_line(product, 2))

        order = await order_engine.cancel(order.id, buyer, "Changed my mind")

        assert order.order_status == OrderStatus.CANCELLED
        assert order.cancelled_by == buyer.user_id
        assert order.items[0].inventory_state == InventoryState.RELEASED
        assert (await stock_of(product)).reserved == 0
        assert notifier.dispatch.call_args.args[0].transition == "order_cancelled"

    async def test_cancel_processing_restocks_committed_stock(
        self, order_engine, buyer, admin, product_factory, stock_of
    ):
        product = await product_factory(on_hand=5)
        order = await paid_order(order_engine, buyer, admin, product_line(product, 2))

        order = await order_engine.cancel(order.id, admin)

        assert order.items[0].inventory_state == InventoryState.RESTOCKED
        level = await stock_of(product)
        assert (level.on_hand, level.reserved) == (5, 0)

    async def test_shipped_order_cannot_be_cancelled(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await paid_order(order_engine, buyer, admin, product_line(product))
        await order_engine.mark_shipped(order.id, admin)

        with pytest.raises(InvalidStateTransitionError):
            await order_engine.cancel(order.id, admin)

    async def test_stranger_cannot_cancel(
        self, order_engine, buyer, stranger, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(PermissionDeniedError):
            await order_engine.cancel(order.id, stranger)


# ============================================================================
# Reopen
# ============================================================================


class TestReopen:
    """Tests for bringing cancelled orders back."""

    async def test_reopen_resets_both_axes_and_reserves(
        self, order_engine, buyer, admin, product_factory, stock_of
    ):
        product = await product_factory(on_hand=5)
        order = await paid_order(order_engine, buyer, admin, product_line(product, 2))
        await order_engine.cancel(order.id, admin, "Customer request")

        order = await order_engine.reopen(order.id, admin, "Customer called back")

        assert order.order_status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.reopen_count == 1
        assert order.reopen_reason == "Customer called back"
        assert order.cancelled_at is None
        assert order.payment_validated_at is None
        assert order.items[0].inventory_state == InventoryState.RESERVED
        level = await stock_of(product)
        assert (level.on_hand, level.reserved) == (5, 2)

    async def test_reopen_only_from_cancelled(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(InvalidStateTransitionError):
            await order_engine.reopen(order.id, buyer)

    async def test_admin_reopen_requires_reason(
        self, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))
        await order_engine.cancel(order.id, buyer)

        with pytest.raises(ValidationError):
            await order_engine.reopen(order.id, admin)

    async def test_reopen_without_stock_keeps_order_cancelled(
        self, order_engine, buyer, stranger, product_factory, stock_of
    ):
        product = await product_factory(on_hand=2)
        first = await place(order_engine, buyer, product_line(product, 2))
        await order_engine.cancel(first.id, buyer)
        await place(order_engine, stranger, product_line(product, 2))

        with pytest.raises(InsufficientStockError):
            await order_engine.reopen(first.id, buyer)

        first = await order_engine.get_order(first.id, buyer)
        assert first.order_status == OrderStatus.CANCELLED
        assert first.reopen_count == 0
        assert (await stock_of(product)).reserved == 2


# ============================================================================
# Line stock snapshot
# ============================================================================


class TestStockSnapshot:
    """Stock moves replay what each line held at creation."""

    async def test_combo_edit_does_not_change_what_a_line_releases(
        self,
        db_session,
        order_engine,
        buyer,
        admin,
        product_factory,
        combo_factory,
        stock_of,
    ):
        rice = await product_factory(name="Rice", on_hand=5)
        combo = await combo_factory([(rice, 1)])
        combo_order = await place(
            order_engine,
            buyer,
            OrderLineInput(
                OrderItemType.COMBO, combo.id, combo.name, 2, Decimal("25.00")
            ),
        )
        await place(order_engine, buyer, product_line(rice, 2))
        assert (await stock_of(rice)).reserved == 4

        await db_session.execute(
            update(ComboItem)
            .where(ComboItem.combo_id == combo.id)
            .values(quantity=2)
        )
        await db_session.commit()

        await order_engine.upload_payment_proof(combo_order.id, "proof.pdf", buyer)
        await order_engine.reject_payment(combo_order.id, admin, "Wrong amount")

        level = await stock_of(rice)
        assert (level.on_hand, level.reserved, level.available) == (5, 2, 3)

    async def test_disabling_tracking_still_commits_reserved_stock(
        self, db_session, order_engine, buyer, admin, product_factory, stock_of
    ):
        product = await product_factory(on_hand=5)
        order = await place(order_engine, buyer, product_line(product, 2))

        await db_session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(track_inventory=False)
        )
        await db_session.commit()

        await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)
        order = await order_engine.validate_payment(order.id, admin)

        assert order.items[0].inventory_state == InventoryState.COMMITTED
        level = await stock_of(product)
        assert (level.on_hand, level.reserved) == (3, 0)


# ============================================================================
# Concurrency
# ============================================================================


class TestCompareAndSet:
    """Lost races surface as invalid transitions."""

    async def test_state_changed_underneath_is_reported_against_stored_state(
        self, db_session, order_engine, buyer, admin, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))
        await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)

        real_compare_and_set = order_engine.repository.compare_and_set

        async def racing(target, *args, **values):
            # Another request rejects the payment first
            await db_session.execute(
                update(Order)
                .where(Order.id == target.id)
                .values(payment_status=PaymentStatus.REJECTED)
                .execution_options(synchronize_session=False)
            )
            return await real_compare_and_set(target, *args, **values)

        order_engine.repository.compare_and_set = racing

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await order_engine.validate_payment(order.id, admin)

        assert exc_info.value.current_state == PaymentStatus.REJECTED

    async def test_lost_update_with_unchanged_state_is_concurrent_update(
        self, order_engine, buyer, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))
        order_engine.repository.compare_and_set = AsyncMock(return_value=False)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await order_engine.upload_payment_proof(order.id, "proof.pdf", buyer)

        assert exc_info.value.context["reason"] == "concurrent_update"


# ============================================================================
# Reads
# ============================================================================


class TestReads:
    async def test_users_only_list_their_own_orders(
        self, order_engine, buyer, stranger, admin, product_factory
    ):
        product = await product_factory()
        await place(order_engine, buyer, product_line(product))
        await place(order_engine, stranger, product_line(product))

        mine, total = await order_engine.list_orders(
            buyer, OrderFilters(user_id=stranger.user_id)
        )
        assert total == 1
        assert mine[0].user_id == buyer.user_id

        _, everything = await order_engine.list_orders(admin)
        assert everything == 2

    async def test_stranger_cannot_read_order(
        self, order_engine, buyer, stranger, product_factory
    ):
        product = await product_factory()
        order = await place(order_engine, buyer, product_line(product))

        with pytest.raises(PermissionDeniedError):
            await order_engine.get_order(order.id, stranger)

    async def test_days_in_processing(self, order_engine):
        order = Order(
            processing_started_at=order_engine.clock() - timedelta(days=3, hours=2)
        )
        assert order_engine.days_in_processing(order) == 3
        assert order_engine.days_in_processing(Order()) is None
