"""
Order lifecycle engine.

Owns the fulfillment and payment state machines of an order, order number
allocation, and the inventory side effects of each transition:

- creation reserves stock for every tracked line
- payment validation commits the reservation and starts processing
- payment rejection and cancellation from PENDING release it
- cancellation from PROCESSING puts committed stock back on hand
- resubmission and reopen reserve released lines again

Each line records the tracked product demand it reserved at creation, and
later moves replay that record rather than the current catalog, so editing
a combo never changes what an existing order gives back.

Every operation runs in one unit of work. Status columns are changed with a
compare-and-set update, so concurrent transitions from the same state cannot
both succeed. Activity entries are written for every transition and
notifications are dispatched only after the unit of work commits.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.actor import Actor
from marketplace.core.config import Settings, get_settings
from marketplace.core.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.core.logging import get_logger, log_performance
from marketplace.database.base import as_utc, utc_now
from marketplace.database.models import Order, OrderItem
from marketplace.services.activity.logger import ActivityLogger
from marketplace.services.inventory.combo_resolver import ComboResolver
from marketplace.services.inventory.enums import InventoryState
from marketplace.services.inventory.service import (
    InventoryReservationManager,
    StockLevel,
    StockRequest,
)
from marketplace.services.lifecycle.operation import lifecycle_operation
from marketplace.services.lifecycle.transitions import (
    allowed_transitions,
    validate_transition,
)
from marketplace.services.notifications.dispatcher import (
    NotificationDispatcher,
    NullDispatcher,
)
from marketplace.services.notifications.events import LifecycleEvent
from marketplace.services.orders.enums import (
    ORDER_STATUS_TRANSITIONS,
    PAYMENT_GATED_STATUSES,
    PAYMENT_STATUS_TRANSITIONS,
    OrderItemType,
    OrderStatus,
    PaymentStatus,
)
from marketplace.services.orders.numbering import OrderNumberAllocator
from marketplace.services.orders.repository import OrderRepository

logger = get_logger(__name__)

CENT = Decimal("0.01")
ENTITY = "order"


@dataclass(frozen=True)
class OrderLineInput:
    """
    One requested line of a new order.

    Attributes:
        item_type: Product, combo or remittance type
        item_id: Id of the referenced catalog entity
        name: Name snapshot shown on the order
        quantity: Units ordered, positive
        unit_price: Price snapshot per unit, non-negative
    """

    item_type: OrderItemType
    item_id: uuid.UUID
    name: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class OrderFilters:
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    user_id: Optional[uuid.UUID] = None
    skip: int = 0
    limit: int = 20


StockOperation = Callable[
    [Sequence[StockRequest]], Awaitable[dict[uuid.UUID, StockLevel]]
]


class OrderLifecycleEngine:
    """
    Engine for every order state change.

    Args:
        session: Session the engine works in; the engine commits it
        notifier: Receiver of lifecycle events after commit
        clock: Source of the current time
        number_allocator: Order number generator
        settings: Application settings
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
        number_allocator: Optional[OrderNumberAllocator] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.session = session
        self.repository = OrderRepository(session)
        self.inventory = InventoryReservationManager(session)
        self.resolver = ComboResolver(session)
        self.activity = ActivityLogger(session)
        self.notifier = notifier or NullDispatcher()
        self.clock = clock
        self.numbers = number_allocator or OrderNumberAllocator(
            self.repository.number_exists,
            max_attempts=settings.order_number_max_attempts,
            clock=clock,
        )

    # ============================================================================
    # Creation
    # ============================================================================

    async def create_order(
        self,
        buyer: Actor,
        items: Sequence[OrderLineInput],
        shipping_zone: Optional[str],
        currency: str,
        discount: Decimal = Decimal("0"),
        shipping_cost: Decimal = Decimal("0"),
        payment_account_ref: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create an order and reserve its stock in one unit.

        Args:
            buyer: Owner of the new order
            items: Requested lines
            shipping_zone: Delivery zone
            currency: ISO currency code
            discount: Discount applied to the subtotal
            shipping_cost: Shipping charge
            payment_account_ref: Account the buyer will pay into
            notes: Free-form buyer notes

        Returns:
            The created order with its lines

        Raises:
            ValidationError: Empty cart, bad quantities or non-positive total
            NotFoundError: Unknown product or combo
            InsufficientStockError: A tracked product lacks stock
        """
        with log_performance(logger, "create_order", user_id=str(buyer.user_id)):
            async with lifecycle_operation(
                self.session, "create_order", user_id=str(buyer.user_id)
            ):
                currency = self._validate_currency(currency)
                lines, subtotal, discount, shipping_cost, total = self._price(
                    items, discount, shipping_cost
                )

                resolved = await self.resolver.resolve(items)
                now = self.clock()

                order = Order(
                    id=uuid.uuid4(),
                    user_id=buyer.user_id,
                    subtotal=subtotal,
                    discount=discount,
                    shipping_cost=shipping_cost,
                    total=total,
                    currency=currency,
                    shipping_zone=shipping_zone,
                    payment_account_ref=payment_account_ref,
                    notes=notes,
                    order_status=OrderStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    reopen_count=0,
                    created_by=buyer.user_id,
                    updated_by=buyer.user_id,
                    created_at=now,
                    updated_at=now,
                )

                requests: list[StockRequest] = []
                for position, (line, line_total, demand) in enumerate(
                    zip(items, lines, resolved)
                ):
                    item = OrderItem(
                        id=uuid.uuid4(),
                        order_id=order.id,
                        position=position,
                        item_type=OrderItemType(line.item_type),
                        item_id=line.item_id,
                        name=line.name,
                        quantity=line.quantity,
                        unit_price=Decimal(line.unit_price).quantize(CENT),
                        line_total=line_total,
                        inventory_record_id=demand.inventory_record_id,
                        stock_components=demand.snapshot(),
                        inventory_state=(
                            InventoryState.RESERVED
                            if demand.tracked
                            else InventoryState.NOT_TRACKED
                        ),
                    )
                    order.items.append(item)
                    requests.extend(
                        StockRequest(product_id, quantity, order.id, item.id)
                        for product_id, quantity in demand.components
                    )

                async def store(number: str) -> bool:
                    order.order_number = number
                    return await self.repository.insert(order)

                await self.numbers.claim(store)
                await self.inventory.reserve_many(requests)

                await self.activity.record(
                    entity_type=ENTITY,
                    entity_id=order.id,
                    action="order_created",
                    actor=buyer,
                    to_state=OrderStatus.PENDING,
                    description=(
                        f"Order {order.order_number} placed with {len(items)} "
                        f"item(s) for {order.total} {order.currency}"
                    ),
                    details={"reserved_lines": len(requests)},
                )

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            total=str(order.total),
        )
        return order

    # ============================================================================
    # Payment axis
    # ============================================================================

    async def upload_payment_proof(
        self, order_id: uuid.UUID, proof_ref: str, actor: Actor
    ) -> Order:
        """
        Attach a payment proof reference.

        Raises:
            ValidationError: If ``proof_ref`` is empty
            PermissionDeniedError: If the actor is neither owner nor admin
        """
        async with lifecycle_operation(
            self.session, "upload_payment_proof", order_id=str(order_id)
        ):
            proof_ref = self._require_text(proof_ref, "proof_ref")
            order = await self._load(order_id)
            actor.require_owner_or_admin(order.user_id, "upload_payment_proof")

            previous = order.payment_status
            await self._transition(
                order,
                actor,
                payment_status=PaymentStatus.PROOF_UPLOADED,
                payment_proof_ref=proof_ref,
                payment_proof_uploaded_at=self.clock(),
            )
            await self._log(
                order,
                actor,
                "payment_proof_uploaded",
                f"Payment proof uploaded for order {order.order_number}",
                previous,
                order.payment_status,
            )
        return order

    async def validate_payment(self, order_id: uuid.UUID, admin: Actor) -> Order:
        """
        Validate the payment, commit stock and start processing.

        Both status axes move in the same compare-and-set update. Every line
        commits the component demand recorded when it was reserved, in one
        batched ledger call however many lines and combos the order has.

        Raises:
            PermissionDeniedError: If the actor is not an admin
            InvalidStateTransitionError: If payment is not PROOF_UPLOADED,
                including when a concurrent call validated it first
            InsufficientStockError: If the reservation can no longer be
                committed
        """
        admin.require_admin("validate_payment")

        with log_performance(logger, "validate_payment", order_id=str(order_id)):
            async with lifecycle_operation(
                self.session, "validate_payment", order_id=str(order_id)
            ):
                order = await self._load(order_id)
                previous = order.payment_status
                now = self.clock()

                await self._transition(
                    order,
                    admin,
                    order_status=OrderStatus.PROCESSING,
                    payment_status=PaymentStatus.VALIDATED,
                    payment_validated_by=admin.user_id,
                    payment_validated_at=now,
                    processing_started_by=admin.user_id,
                    processing_started_at=now,
                )
                await self._move_stock(
                    order,
                    {InventoryState.RESERVED},
                    InventoryState.COMMITTED,
                    self.inventory.commit_many,
                )
                await self._log(
                    order,
                    admin,
                    "payment_validated",
                    f"Payment for order {order.order_number} validated; "
                    f"order is now processing",
                    previous,
                    order.payment_status,
                )

        self._notify(order, "payment_validated", admin)
        return order

    async def reject_payment(
        self, order_id: uuid.UUID, admin: Actor, reason: str
    ) -> Order:
        """
        Reject the payment and release reserved stock.

        Raises:
            ValidationError: If ``reason`` is empty
            PermissionDeniedError: If the actor is not an admin
        """
        admin.require_admin("reject_payment")

        async with lifecycle_operation(
            self.session, "reject_payment", order_id=str(order_id)
        ):
            reason = self._require_text(reason, "reason")
            order = await self._load(order_id)
            previous = order.payment_status

            await self._transition(
                order,
                admin,
                payment_status=PaymentStatus.REJECTED,
                payment_rejected_by=admin.user_id,
                payment_rejected_at=self.clock(),
                payment_rejection_reason=reason,
            )
            await self._move_stock(
                order,
                {InventoryState.RESERVED},
                InventoryState.RELEASED,
                self.inventory.release_many,
            )
            await self._log(
                order,
                admin,
                "payment_rejected",
                f"Payment for order {order.order_number} rejected: {reason}",
                previous,
                order.payment_status,
            )

        self._notify(order, "payment_rejected", admin, reason=reason)
        return order

    async def resubmit_payment(self, order_id: uuid.UUID, actor: Actor) -> Order:
        """
        Reopen the payment axis after a rejection.

        Stock released by the rejection is reserved again; the buyer then
        uploads a new proof.

        Raises:
            PermissionDeniedError: If the actor is neither owner nor admin
            InsufficientStockError: If released stock was sold meanwhile
        """
        async with lifecycle_operation(
            self.session, "resubmit_payment", order_id=str(order_id)
        ):
            order = await self._load(order_id)
            actor.require_owner_or_admin(order.user_id, "resubmit_payment")
            previous = order.payment_status

            await self._transition(
                order,
                actor,
                payment_status=PaymentStatus.PENDING,
                payment_proof_ref=None,
                payment_proof_uploaded_at=None,
                payment_rejected_by=None,
                payment_rejected_at=None,
                payment_rejection_reason=None,
            )
            await self._move_stock(
                order,
                {InventoryState.RELEASED},
                InventoryState.RESERVED,
                self.inventory.reserve_many,
            )
            await self._log(
                order,
                actor,
                "payment_resubmitted",
                f"Payment for order {order.order_number} reopened for a new proof",
                previous,
                order.payment_status,
            )
        return order

    # ============================================================================
    # Fulfillment axis
    # ============================================================================

    async def start_processing(self, order_id: uuid.UUID, admin: Actor) -> Order:
        """
        Move a paid order from PENDING to PROCESSING.

        Payment validation already performs this move; this operation only
        succeeds for orders whose payment is VALIDATED while still PENDING.
        """
        admin.require_admin("start_processing")
        return await self._fulfillment_step(
            order_id,
            admin,
            OrderStatus.PROCESSING,
            "processing_started",
            "Order {number} is now processing",
            processing_started_by=admin.user_id,
            processing_started_at=self.clock(),
        )

    async def mark_shipped(
        self,
        order_id: uuid.UUID,
        admin: Actor,
        tracking_info: Optional[dict[str, Any]] = None,
    ) -> Order:
        admin.require_admin("mark_shipped")
        order = await self._fulfillment_step(
            order_id,
            admin,
            OrderStatus.SHIPPED,
            "order_shipped",
            "Order {number} shipped",
            shipped_by=admin.user_id,
            shipped_at=self.clock(),
            tracking_info=tracking_info or None,
        )
        self._notify(order, "order_shipped", admin, tracking_info=tracking_info)
        return order

    async def mark_delivered(
        self,
        order_id: uuid.UUID,
        admin: Actor,
        proof_ref: Optional[str] = None,
    ) -> Order:
        admin.require_admin("mark_delivered")
        order = await self._fulfillment_step(
            order_id,
            admin,
            OrderStatus.DELIVERED,
            "order_delivered",
            "Order {number} delivered",
            delivered_by=admin.user_id,
            delivered_at=self.clock(),
            delivery_proof_ref=proof_ref,
        )
        self._notify(order, "order_delivered", admin)
        return order

    async def complete(
        self,
        order_id: uuid.UUID,
        admin: Actor,
        notes: Optional[str] = None,
    ) -> Order:
        admin.require_admin("complete")
        return await self._fulfillment_step(
            order_id,
            admin,
            OrderStatus.COMPLETED,
            "order_completed",
            "Order {number} completed",
            completed_by=admin.user_id,
            completed_at=self.clock(),
            completion_notes=notes,
        )

    async def cancel(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Cancel a PENDING or PROCESSING order.

        Reserved stock is released; stock already committed by payment
        validation is returned to on-hand.

        Raises:
            PermissionDeniedError: If the actor is neither owner nor admin
        """
        async with lifecycle_operation(self.session, "cancel", order_id=str(order_id)):
            order = await self._load(order_id)
            actor.require_owner_or_admin(order.user_id, "cancel")
            previous = order.order_status

            await self._transition(
                order,
                actor,
                order_status=OrderStatus.CANCELLED,
                cancelled_by=actor.user_id,
                cancelled_at=self.clock(),
                cancellation_reason=reason,
            )
            await self._move_stock(
                order,
                {InventoryState.RESERVED},
                InventoryState.RELEASED,
                self.inventory.release_many,
            )
            await self._move_stock(
                order,
                {InventoryState.COMMITTED},
                InventoryState.RESTOCKED,
                self.inventory.restock_many,
            )
            description = f"Order {order.order_number} cancelled"
            if reason:
                description = f"{description}: {reason}"
            await self._log(
                order,
                actor,
                "order_cancelled",
                description,
                previous,
                order.order_status,
            )

        self._notify(order, "order_cancelled", actor, reason=reason)
        return order

    async def reopen(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Bring a CANCELLED order back to PENDING.

        Both axes return to PENDING and cancellation metadata is cleared.
        Every line that gave its stock back is reserved again in the same
        unit; when stock is short the reopen fails and the order stays
        CANCELLED.

        Args:
            order_id: Order to reopen
            actor: Owner (self-service) or admin
            reason: Why the order is reopened; mandatory for admins

        Raises:
            PermissionDeniedError: If the actor is neither owner nor admin
            ValidationError: If an admin gives no reason
            InvalidStateTransitionError: If the order is not CANCELLED
            InsufficientStockError: If stock cannot be reserved again
        """
        async with lifecycle_operation(self.session, "reopen", order_id=str(order_id)):
            order = await self._load(order_id)
            actor.require_owner_or_admin(order.user_id, "reopen")
            if actor.is_admin:
                reason = self._require_text(reason, "reason")

            previous = order.order_status
            self._validate(order, OrderStatus.PENDING, None)
            await self._compare_and_set(
                order,
                actor,
                OrderStatus.PENDING,
                None,
                order_status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                payment_proof_ref=None,
                payment_proof_uploaded_at=None,
                payment_validated_by=None,
                payment_validated_at=None,
                payment_rejected_by=None,
                payment_rejected_at=None,
                payment_rejection_reason=None,
                processing_started_by=None,
                processing_started_at=None,
                cancelled_by=None,
                cancelled_at=None,
                cancellation_reason=None,
                reopened_by=actor.user_id,
                reopened_at=self.clock(),
                reopen_reason=reason,
                reopen_count=order.reopen_count + 1,
            )

            await self._move_stock(
                order,
                {InventoryState.RELEASED, InventoryState.RESTOCKED},
                InventoryState.RESERVED,
                self.inventory.reserve_many,
            )

            description = f"Order {order.order_number} reopened"
            if reason:
                description = f"{description}: {reason}"
            await self._log(
                order,
                actor,
                "order_reopened",
                description,
                previous,
                order.order_status,
            )

        return order

    # ============================================================================
    # Reads
    # ============================================================================

    async def get_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self._load(order_id)
        actor.require_owner_or_admin(order.user_id, "get_order")
        return order

    async def list_orders(
        self, actor: Actor, filters: Optional[OrderFilters] = None
    ) -> tuple[Sequence[Order], int]:
        """List orders; non-admins only ever see their own."""
        filters = filters or OrderFilters()
        user_id = filters.user_id if actor.is_admin else actor.user_id
        return await self.repository.list_orders(
            user_id=user_id,
            order_status=filters.order_status,
            payment_status=filters.payment_status,
            skip=filters.skip,
            limit=filters.limit,
        )

    def days_in_processing(
        self, order: Order, now: Optional[datetime] = None
    ) -> Optional[int]:
        """
        Whole days an order has spent since processing started.

        Counting stops when the order ships. Returns None for orders that
        never reached processing.
        """
        started = as_utc(order.processing_started_at)
        if started is None:
            return None
        end = as_utc(order.shipped_at) or now or self.clock()
        return max(0, (end - started).days)

    # ============================================================================
    # Internals
    # ============================================================================

    async def _fulfillment_step(
        self,
        order_id: uuid.UUID,
        admin: Actor,
        target: OrderStatus,
        action: str,
        description: str,
        **values: Any,
    ) -> Order:
        async with lifecycle_operation(
            self.session, action, order_id=str(order_id), target=target.value
        ):
            order = await self._load(order_id)
            previous = order.order_status
            await self._transition(order, admin, order_status=target, **values)
            await self._log(
                order,
                admin,
                action,
                description.format(number=order.order_number),
                previous,
                order.order_status,
            )
        return order

    async def _load(self, order_id: uuid.UUID) -> Order:
        order = await self.repository.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def _validate(
        self,
        order: Order,
        order_status: Optional[OrderStatus],
        payment_status: Optional[PaymentStatus],
    ) -> None:
        """Check requested moves on both axes plus the cross-axis rule."""
        context = {"order_id": str(order.id)}

        if payment_status is not None:
            validate_transition(
                order.payment_status,
                payment_status,
                PAYMENT_STATUS_TRANSITIONS,
                axis="payment_status",
                **context,
            )
            if order_status is None and order.order_status != OrderStatus.PENDING:
                raise InvalidStateTransitionError(
                    order.payment_status,
                    payment_status,
                    (),
                    message=(
                        f"Payment cannot move to '{payment_status.value}' while "
                        f"the order is '{order.order_status.value}'; payment "
                        f"changes require a pending order"
                    ),
                    axis="payment_status",
                    order_status=order.order_status,
                    reason="order_not_pending",
                    **context,
                )

        if order_status is not None:
            validate_transition(
                order.order_status,
                order_status,
                ORDER_STATUS_TRANSITIONS,
                axis="order_status",
                **context,
            )
            target_payment = payment_status or order.payment_status
            if (
                order_status in PAYMENT_GATED_STATUSES
                and target_payment != PaymentStatus.VALIDATED
            ):
                raise InvalidStateTransitionError(
                    order.order_status,
                    order_status,
                    allowed_transitions(order.order_status, ORDER_STATUS_TRANSITIONS),
                    axis="order_status",
                    payment_status=target_payment,
                    reason="payment_not_validated",
                    **context,
                )

    async def _transition(
        self,
        order: Order,
        actor: Actor,
        order_status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        **values: Any,
    ) -> None:
        self._validate(order, order_status, payment_status)
        if order_status is not None:
            values["order_status"] = order_status
        if payment_status is not None:
            values["payment_status"] = payment_status
        await self._compare_and_set(
            order, actor, order_status, payment_status, **values
        )

    async def _compare_and_set(
        self,
        order: Order,
        actor: Actor,
        requested_order: Optional[OrderStatus],
        requested_payment: Optional[PaymentStatus],
        **values: Any,
    ) -> None:
        """
        Write ``values`` only if neither status axis moved since ``order``
        was loaded.

        ``values`` carries the new ``order_status``/``payment_status``
        columns; ``requested_order`` and ``requested_payment`` are the moves
        re-validated against the stored row when another transition won.
        """
        expected_order = order.order_status
        expected_payment = order.payment_status

        applied = await self.repository.compare_and_set(
            order,
            expected_order,
            expected_payment,
            updated_by=actor.user_id,
            **values,
        )
        if applied:
            return

        # Lost the race: report against the state that is stored now
        await self.repository.refresh(order)
        self._validate(order, requested_order, requested_payment)

        if requested_payment is not None:
            current, requested = order.payment_status, requested_payment
        else:
            current, requested = order.order_status, requested_order
        raise InvalidStateTransitionError(
            current,
            requested,
            order_id=str(order.id),
            reason="concurrent_update",
        )

    async def _move_stock(
        self,
        order: Order,
        from_states: set[InventoryState],
        to_state: InventoryState,
        operation: StockOperation,
    ) -> None:
        """
        Apply one batched ledger operation to every line in ``from_states``.

        Quantities come from each line's ``stock_components`` snapshot, never
        from the current combo composition or tracking flags.
        """
        lines: list[OrderItem] = [
            item for item in order.items if item.inventory_state in from_states
        ]
        if not lines:
            return

        requests = [
            StockRequest(
                uuid.UUID(component["product_id"]),
                int(component["quantity"]),
                order.id,
                line.id,
            )
            for line in lines
            for component in line.stock_components
        ]
        if requests:
            await operation(requests)

        for line in lines:
            line.inventory_state = to_state

    async def _log(
        self,
        order: Order,
        actor: Actor,
        action: str,
        description: str,
        from_state: Any,
        to_state: Any,
    ) -> None:
        await self.activity.record(
            entity_type=ENTITY,
            entity_id=order.id,
            action=action,
            actor=actor,
            description=description,
            from_state=from_state,
            to_state=to_state,
            details={
                "order_number": order.order_number,
                "order_status": order.order_status.value,
                "payment_status": order.payment_status.value,
            },
        )

    def _notify(
        self, order: Order, transition: str, actor: Actor, **payload: Any
    ) -> None:
        self.notifier.dispatch(
            LifecycleEvent(
                entity_type=ENTITY,
                entity_id=order.id,
                transition=transition,
                actor_identity=actor.display_name,
                recipient_user_id=order.user_id,
                payload={
                    "order_number": order.order_number,
                    "total": str(order.total),
                    "currency": order.currency,
                    **{k: v for k, v in payload.items() if v is not None},
                },
            )
        )

    @staticmethod
    def _price(
        items: Sequence[OrderLineInput],
        discount: Decimal,
        shipping_cost: Decimal,
    ) -> tuple[list[Decimal], Decimal, Decimal, Decimal, Decimal]:
        """Validate lines and compute line totals, subtotal and total."""
        if not items:
            raise ValidationError("An order needs at least one item")

        line_totals = []
        for index, line in enumerate(items):
            if line.quantity is None or line.quantity <= 0:
                raise ValidationError(
                    "Item quantity must be positive", line=index, quantity=line.quantity
                )
            unit_price = Decimal(line.unit_price)
            if unit_price < 0:
                raise ValidationError(
                    "Item price cannot be negative", line=index, unit_price=unit_price
                )
            line_totals.append((unit_price * line.quantity).quantize(CENT))

        discount = Decimal(discount or 0).quantize(CENT)
        shipping_cost = Decimal(shipping_cost or 0).quantize(CENT)
        if discount < 0 or shipping_cost < 0:
            raise ValidationError(
                "Discount and shipping cost cannot be negative",
                discount=discount,
                shipping_cost=shipping_cost,
            )

        subtotal = sum(line_totals, Decimal("0")).quantize(CENT)
        total = (subtotal - discount + shipping_cost).quantize(CENT)
        if total <= 0:
            raise ValidationError("Order total must be positive", total=total)

        return line_totals, subtotal, discount, shipping_cost, total

    @staticmethod
    def _validate_currency(currency: str) -> str:
        code = (currency or "").strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValidationError("Currency must be a 3-letter code", currency=currency)
        return code

    @staticmethod
    def _require_text(value: Optional[str], field: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationError(f"{field} is required", field=field)
        return text
