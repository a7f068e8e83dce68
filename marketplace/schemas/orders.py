"""
Order Pydantic schemas for API request/response validation.

Prices on request lines are snapshots the engine re-validates; totals are
always computed server side.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.services.inventory.enums import InventoryState
from marketplace.services.orders.enums import (
    OrderItemType,
    OrderStatus,
    PaymentStatus,
)


class OrderItemRequest(BaseModel):
    """Single line of a new order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    item_type: OrderItemType = Field(..., description="product, combo or remittance")
    item_id: UUID = Field(..., description="Referenced catalog entity")
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., ge=1, le=1000, description="Units ordered")
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)


class OrderCreateRequest(BaseModel):
    """Request to place an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=100)
    currency: str = Field(..., min_length=3, max_length=3)
    shipping_zone: Optional[str] = Field(None, max_length=100)
    discount: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    shipping_cost: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    payment_account_ref: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Normalize currency code."""
        if not v.isalpha():
            raise ValueError("Currency must be a 3-letter code")
        return v.upper()


class ShipRequest(BaseModel):
    tracking_info: Optional[dict[str, Any]] = Field(
        None, description="Carrier, tracking number and similar"
    )


class DeliverRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    proof_ref: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    item_type: OrderItemType
    item_id: UUID
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    inventory_state: InventoryState


class OrderResponse(BaseModel):
    """Order with its lines and lifecycle metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    order_status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Decimal
    discount: Decimal
    shipping_cost: Decimal
    total: Decimal
    currency: str
    shipping_zone: Optional[str] = None
    payment_account_ref: Optional[str] = None
    notes: Optional[str] = None

    payment_proof_ref: Optional[str] = None
    payment_proof_uploaded_at: Optional[datetime] = None
    payment_validated_at: Optional[datetime] = None
    payment_rejected_at: Optional[datetime] = None
    payment_rejection_reason: Optional[str] = None

    processing_started_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    tracking_info: Optional[dict[str, Any]] = None
    delivered_at: Optional[datetime] = None
    delivery_proof_ref: Optional[str] = None
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None

    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    reopened_at: Optional[datetime] = None
    reopen_reason: Optional[str] = None
    reopen_count: int = 0

    items: list[OrderItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    skip: int
    limit: int
