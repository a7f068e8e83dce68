"""Inventory Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict


class StockLevelResponse(BaseModel):
    """Current counters of one tracked product."""

    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    on_hand: int
    reserved: int
    available: int
