"""
Order lifecycle API endpoints.

Handlers translate requests into engine calls with an explicit actor; all
state and permission checks happen in ``OrderLifecycleEngine``. Domain
errors are rendered by the application's exception handlers.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from marketplace.api.deps import CurrentActor, OrderEngine
from marketplace.core.logging import get_logger
from marketplace.schemas.common import (
    NotesRequest,
    OptionalReasonRequest,
    ProofRequest,
    ReasonRequest,
)
from marketplace.schemas.orders import (
    DeliverRequest,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    ShipRequest,
)
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.service import OrderFilters, OrderLineInput

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
    description="Create an order and reserve stock for its tracked lines",
)
async def create_order(
    request: OrderCreateRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    logger.info(
        "Creating order",
        user_id=str(actor.user_id),
        item_count=len(request.items),
    )
    order = await engine.create_order(
        actor,
        [
            OrderLineInput(
                item_type=item.item_type,
                item_id=item.item_id,
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in request.items
        ],
        shipping_zone=request.shipping_zone,
        currency=request.currency,
        discount=request.discount,
        shipping_cost=request.shipping_cost,
        payment_account_ref=request.payment_account_ref,
        notes=request.notes,
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/",
    response_model=OrderListResponse,
    summary="List orders",
    description="Paginated orders; non-admins only see their own",
)
async def list_orders(
    actor: CurrentActor,
    engine: OrderEngine,
    order_status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    user_id: Optional[UUID] = Query(None, description="Admin-only buyer filter"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum records to return"),
) -> OrderListResponse:
    orders, total = await engine.list_orders(
        actor,
        OrderFilters(
            order_status=order_status,
            payment_status=payment_status,
            user_id=user_id,
            skip=skip,
            limit=limit,
        ),
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order")
async def get_order(
    order_id: UUID, actor: CurrentActor, engine: OrderEngine
) -> OrderResponse:
    return OrderResponse.model_validate(await engine.get_order(order_id, actor))


# ============================================================================
# Payment
# ============================================================================


@router.post(
    "/{order_id}/payment-proof",
    response_model=OrderResponse,
    summary="Upload payment proof",
)
async def upload_payment_proof(
    order_id: UUID,
    request: ProofRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.upload_payment_proof(order_id, request.proof_ref, actor)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/payment/validate",
    response_model=OrderResponse,
    summary="Validate payment",
    description="Admin only. Commits reserved stock and starts processing",
)
async def validate_payment(
    order_id: UUID, actor: CurrentActor, engine: OrderEngine
) -> OrderResponse:
    return OrderResponse.model_validate(await engine.validate_payment(order_id, actor))


@router.post(
    "/{order_id}/payment/reject",
    response_model=OrderResponse,
    summary="Reject payment",
)
async def reject_payment(
    order_id: UUID,
    request: ReasonRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.reject_payment(order_id, actor, request.reason)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/payment/resubmit",
    response_model=OrderResponse,
    summary="Resubmit payment after rejection",
)
async def resubmit_payment(
    order_id: UUID, actor: CurrentActor, engine: OrderEngine
) -> OrderResponse:
    return OrderResponse.model_validate(await engine.resubmit_payment(order_id, actor))


# ============================================================================
# Fulfillment
# ============================================================================


@router.post("/{order_id}/process", response_model=OrderResponse)
async def start_processing(
    order_id: UUID, actor: CurrentActor, engine: OrderEngine
) -> OrderResponse:
    return OrderResponse.model_validate(await engine.start_processing(order_id, actor))


@router.post("/{order_id}/ship", response_model=OrderResponse)
async def mark_shipped(
    order_id: UUID,
    request: ShipRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.mark_shipped(order_id, actor, request.tracking_info)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/deliver", response_model=OrderResponse)
async def mark_delivered(
    order_id: UUID,
    request: DeliverRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.mark_delivered(order_id, actor, request.proof_ref)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: UUID,
    request: NotesRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.complete(order_id, actor, request.notes)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    request: OptionalReasonRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.cancel(order_id, actor, request.reason)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/reopen",
    response_model=OrderResponse,
    summary="Reopen cancelled order",
    description="Owner or admin; admins must give a reason",
)
async def reopen_order(
    order_id: UUID,
    request: OptionalReasonRequest,
    actor: CurrentActor,
    engine: OrderEngine,
) -> OrderResponse:
    order = await engine.reopen(order_id, actor, request.reason)
    return OrderResponse.model_validate(order)
