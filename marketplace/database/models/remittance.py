"""
Remittance models.

``RemittanceType`` is admin configuration consumed read-only by the engine.
``Remittance`` stores the quote computed at creation time together with
its single lifecycle status. Recipients and their bank accounts are owned
by the sender; ``BankTransferRecord`` is the sub-ledger of non-cash payouts.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import AuditedModel, BaseModel, JSONType, enum_values
from marketplace.services.remittances.enums import (
    BankTransferStatus,
    CommissionType,
    DeliveryMethod,
    RemittanceStatus,
)


class RemittanceType(AuditedModel):
    """
    Remittance product configuration.

    Attributes:
        name: Display name
        currency_code: Currency the sender pays in
        delivery_currency: Currency the recipient receives
        exchange_rate: Delivery currency units per source unit
        commission_type: ``fixed`` or ``percentage``
        commission_percentage: Rate used by the percentage model
        commission_fixed: Amount used by the fixed model
        min_amount: Smallest accepted source amount
        max_amount: Largest accepted source amount, ``None`` when unbounded
        delivery_methods: Allowed delivery methods
        max_delivery_days: Days after payment validation the payout is due
        is_active: Inactive types cannot be quoted or used
    """

    __tablename__ = "remittance_types"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    delivery_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=6), nullable=False
    )

    commission_type: Mapped[CommissionType] = mapped_column(
        SQLEnum(
            CommissionType,
            name="commission_type",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=CommissionType.PERCENTAGE,
    )
    commission_percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2), nullable=False, default=Decimal("0.00")
    )
    commission_fixed: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0.00")
    )

    min_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    max_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=12, scale=2), nullable=True
    )

    delivery_methods: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    max_delivery_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("exchange_rate > 0", name="ck_remittance_types_rate_positive"),
        CheckConstraint("min_amount > 0", name="ck_remittance_types_min_positive"),
        CheckConstraint(
            "max_amount IS NULL OR max_amount >= min_amount",
            name="ck_remittance_types_bounds",
        ),
        CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage <= 100",
            name="ck_remittance_types_percentage_range",
        ),
        CheckConstraint(
            "commission_fixed >= 0", name="ck_remittance_types_fixed_non_negative"
        ),
        CheckConstraint(
            "max_delivery_days > 0", name="ck_remittance_types_delivery_days"
        ),
    )

    def allows(self, method: DeliveryMethod) -> bool:
        return method.value in (self.delivery_methods or [])


class Recipient(BaseModel):
    """
    Person a sender pays out to.

    ``linked_user_id`` designates the recipient-side user allowed to confirm
    delivery on their own remittances.
    """

    __tablename__ = "recipients"

    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Sender who owns this recipient",
    )
    linked_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Recipient-side user allowed to confirm delivery",
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    bank_accounts: Mapped[list["RecipientBankAccount"]] = relationship(
        "RecipientBankAccount",
        back_populates="recipient",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_recipients_sender_id", "sender_id"),)


class RecipientBankAccount(BaseModel):
    """Bank account a non-cash remittance is paid into."""

    __tablename__ = "recipient_bank_accounts"

    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("recipients.id", ondelete="CASCADE"),
        nullable=False,
    )
    bank_name: Mapped[str] = mapped_column(String(150), nullable=False)
    account_number: Mapped[str] = mapped_column(String(64), nullable=False)
    account_holder: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    recipient: Mapped["Recipient"] = relationship(
        "Recipient", back_populates="bank_accounts"
    )

    __table_args__ = (
        Index("ix_recipient_bank_accounts_recipient_id", "recipient_id"),
    )


class Remittance(AuditedModel):
    """
    Money transfer from a sender to a recipient.

    Quote fields (``commission``, ``total_amount``, ``exchange_rate``,
    ``delivery_amount``) are computed by the engine at creation and never
    accepted from the client.
    """

    __tablename__ = "remittances"

    remittance_number: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    remittance_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("remittance_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("recipients.id", ondelete="RESTRICT"),
        nullable=False,
    )
    recipient_bank_account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("recipient_bank_accounts.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Quote
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    commission: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False
    )
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=6), nullable=False
    )
    delivery_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    delivery_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    delivery_method: Mapped[DeliveryMethod] = mapped_column(
        SQLEnum(
            DeliveryMethod,
            name="delivery_method",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
    )

    status: Mapped[RemittanceStatus] = mapped_column(
        SQLEnum(
            RemittanceStatus,
            name="remittance_status",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=RemittanceStatus.PAYMENT_PENDING,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Payment phase
    payment_proof_ref: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    payment_proof_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_validated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    payment_validated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    payment_rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_rejection_reason: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )
    max_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Delivery phase
    processing_started_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivery_proof_ref: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivered_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    remittance_type: Mapped["RemittanceType"] = relationship(
        "RemittanceType", lazy="selectin"
    )
    recipient: Mapped["Recipient"] = relationship("Recipient", lazy="selectin")
    bank_transfers: Mapped[list["BankTransferRecord"]] = relationship(
        "BankTransferRecord",
        back_populates="remittance",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="BankTransferRecord.attempt",
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_remittances_amount_positive"),
        CheckConstraint("commission >= 0", name="ck_remittances_commission"),
        CheckConstraint(
            "delivery_method = 'cash' OR recipient_bank_account_id IS NOT NULL",
            name="ck_remittances_bank_account_for_non_cash",
        ),
        Index("ix_remittances_sender_status", "sender_id", "status"),
        Index("ix_remittances_status", "status"),
    )


class BankTransferRecord(BaseModel):
    """
    One payout attempt of a non-cash remittance.

    Attributes:
        remittance_id: Remittance being paid out
        attempt: 1-based attempt number per remittance
        status: pending, processing, completed or failed
        reference_number: Bank reference of the transfer
        amount_transferred: Amount sent to the bank, in delivery currency
        processed_by: Admin who last updated the transfer
        processed_at: When the transfer was last updated
        error_message: Failure reason reported by the bank
    """

    __tablename__ = "bank_transfer_records"

    remittance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("remittances.id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_bank_account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("recipient_bank_accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[BankTransferStatus] = mapped_column(
        SQLEnum(
            BankTransferStatus,
            name="bank_transfer_status",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=BankTransferStatus.PENDING,
    )
    reference_number: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    amount_transferred: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    remittance: Mapped["Remittance"] = relationship(
        "Remittance", back_populates="bank_transfers"
    )

    __table_args__ = (
        UniqueConstraint("remittance_id", "attempt", name="uq_bank_transfer_attempt"),
        Index("ix_bank_transfer_records_status", "status"),
    )
