"""
Remittance Pydantic schemas for API request/response validation.

Quote fields on responses are the values the engine computed and stored;
no request schema accepts a commission or total.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from marketplace.services.remittances.enums import (
    AlertLevel,
    BankTransferStatus,
    CommissionType,
    DeliveryMethod,
    RemittanceStatus,
)


def _currency(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if len(v) != 3 or not v.isalpha():
        raise ValueError("Currency must be a 3-letter code")
    return v.upper()


# ============================================================================
# Remittance types
# ============================================================================


class RemittanceTypeCreateRequest(BaseModel):
    """Admin request to configure a remittance type."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    currency_code: str = Field(..., min_length=3, max_length=3)
    delivery_currency: str = Field(..., min_length=3, max_length=3)
    exchange_rate: Decimal = Field(..., gt=0)
    commission_type: CommissionType = CommissionType.PERCENTAGE
    commission_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    commission_fixed: Decimal = Field(Decimal("0"), ge=0)
    min_amount: Decimal = Field(..., gt=0)
    max_amount: Optional[Decimal] = Field(None, gt=0)
    delivery_methods: list[DeliveryMethod] = Field(..., min_length=1)
    max_delivery_days: int = Field(3, ge=1, le=365)

    @field_validator("currency_code", "delivery_currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        """Normalize currency codes."""
        return _currency(v)

    @model_validator(mode="after")
    def validate_bounds(self) -> "RemittanceTypeCreateRequest":
        """Ensure max_amount is not below min_amount."""
        if self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError("max_amount cannot be below min_amount")
        return self


class RemittanceTypeUpdateRequest(BaseModel):
    """Partial update; only fields that are set are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    delivery_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    commission_type: Optional[CommissionType] = None
    commission_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    commission_fixed: Optional[Decimal] = Field(None, ge=0)
    min_amount: Optional[Decimal] = Field(None, gt=0)
    max_amount: Optional[Decimal] = Field(None, gt=0)
    delivery_methods: Optional[list[DeliveryMethod]] = Field(None, min_length=1)
    max_delivery_days: Optional[int] = Field(None, ge=1, le=365)
    is_active: Optional[bool] = None

    @field_validator("currency_code", "delivery_currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        """Normalize currency codes."""
        return _currency(v)


class RemittanceTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    currency_code: str
    delivery_currency: str
    exchange_rate: Decimal
    commission_type: CommissionType
    commission_percentage: Decimal
    commission_fixed: Decimal
    min_amount: Decimal
    max_amount: Optional[Decimal] = None
    delivery_methods: list[DeliveryMethod]
    max_delivery_days: int
    is_active: bool


class QuoteRequest(BaseModel):
    remittance_type_id: UUID
    amount: Decimal = Field(..., gt=0)


class QuoteResponse(BaseModel):
    """Computed amounts for a prospective remittance."""

    model_config = ConfigDict(from_attributes=True)

    remittance_type_id: UUID
    amount: Decimal
    commission: Decimal
    total_charged: Decimal
    exchange_rate: Decimal
    delivery_amount: Decimal
    currency_code: str
    delivery_currency: str


# ============================================================================
# Recipients
# ============================================================================


class BankAccountRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    bank_name: str = Field(..., min_length=1, max_length=150)
    account_number: str = Field(..., min_length=1, max_length=64)
    account_holder: str = Field(..., min_length=1, max_length=200)
    account_type: Optional[str] = Field(None, max_length=40)
    is_default: bool = False


class RecipientCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=40)
    address: Optional[str] = Field(None, max_length=1000)
    city: Optional[str] = Field(None, max_length=100)
    linked_user_id: Optional[UUID] = Field(
        None, description="Recipient-side user allowed to confirm delivery"
    )
    bank_accounts: list[BankAccountRequest] = Field(default_factory=list)


class BankAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    bank_name: str
    account_number: str
    account_holder: str
    account_type: Optional[str] = None
    is_default: bool


class RecipientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: UUID
    linked_user_id: Optional[UUID] = None
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    bank_accounts: list[BankAccountResponse] = Field(default_factory=list)


# ============================================================================
# Remittances
# ============================================================================


class RemittanceCreateRequest(BaseModel):
    """Request to send a remittance; amounts are recomputed server side."""

    model_config = ConfigDict(str_strip_whitespace=True)

    remittance_type_id: UUID
    amount: Decimal = Field(..., gt=0)
    recipient_id: UUID
    delivery_method: DeliveryMethod
    recipient_bank_account_id: Optional[UUID] = None
    proof_ref: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)


class ConfirmDeliveryRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    proof_ref: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)


class DeliveryAlertResponse(BaseModel):
    level: AlertLevel
    message: str
    hours_remaining: Optional[float] = None


class BankTransferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    remittance_id: UUID
    recipient_bank_account_id: UUID
    attempt: int
    status: BankTransferStatus
    reference_number: Optional[str] = None
    amount_transferred: Decimal
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    notes: Optional[str] = None


class RemittanceResponse(BaseModel):
    """Remittance with its stored quote and lifecycle metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    remittance_number: str
    sender_id: UUID
    remittance_type_id: UUID
    recipient_id: UUID
    recipient_bank_account_id: Optional[UUID] = None
    status: RemittanceStatus

    amount: Decimal
    commission: Decimal
    total_amount: Decimal
    exchange_rate: Decimal
    delivery_amount: Decimal
    currency_code: str
    delivery_currency: str
    delivery_method: DeliveryMethod
    notes: Optional[str] = None

    payment_proof_ref: Optional[str] = None
    payment_proof_uploaded_at: Optional[datetime] = None
    payment_validated_at: Optional[datetime] = None
    payment_rejected_at: Optional[datetime] = None
    payment_rejection_reason: Optional[str] = None
    max_delivery_date: Optional[datetime] = None

    processing_started_at: Optional[datetime] = None
    delivery_proof_ref: Optional[str] = None
    delivery_notes: Optional[str] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    bank_transfers: list[BankTransferResponse] = Field(default_factory=list)
    delivery_alert: Optional[DeliveryAlertResponse] = None
    created_at: datetime
    updated_at: datetime


class RemittanceListResponse(BaseModel):
    items: list[RemittanceResponse]
    total: int
    skip: int
    limit: int


class RemittanceAlertResponse(BaseModel):
    remittance: RemittanceResponse
    alert: DeliveryAlertResponse


# ============================================================================
# Bank transfers
# ============================================================================


class BankTransferCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class BankTransferStatusRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: BankTransferStatus
    reference_number: Optional[str] = Field(None, max_length=100)
    error_message: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)
