"""Inventory availability endpoint."""

from uuid import UUID

from fastapi import APIRouter

from marketplace.api.deps import CurrentActor, InventoryManager
from marketplace.core.exceptions import NotFoundError
from marketplace.schemas.inventory import StockLevelResponse

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get(
    "/{product_id}",
    response_model=StockLevelResponse,
    summary="Get product availability",
)
async def get_availability(
    product_id: UUID,
    actor: CurrentActor,
    manager: InventoryManager,
) -> StockLevelResponse:
    levels = await manager.get_availability([product_id])
    level = levels.get(product_id)
    if level is None:
        raise NotFoundError("InventoryRecord", product_id)
    return StockLevelResponse(
        product_id=level.product_id,
        on_hand=level.on_hand,
        reserved=level.reserved,
        available=level.available,
    )
