"""Remittance, delivery, commission and bank-transfer enums.

Unlike orders, a remittance walks one status chain: the payment phase must
finish before delivery preparation starts, so the two phases are sequential
states of a single field.
"""

from enum import Enum


class RemittanceStatus(str, Enum):
    """Remittance lifecycle.

    Valid transitions:
    - PAYMENT_PENDING -> PAYMENT_PROOF_UPLOADED, CANCELLED
    - PAYMENT_PROOF_UPLOADED -> PAYMENT_VALIDATED, PAYMENT_REJECTED, CANCELLED
    - PAYMENT_REJECTED -> PAYMENT_PENDING (retry), CANCELLED
    - PAYMENT_VALIDATED -> PROCESSING, CANCELLED
    - PROCESSING -> DELIVERED
    - DELIVERED -> COMPLETED
    """

    PAYMENT_PENDING = "payment_pending"
    PAYMENT_PROOF_UPLOADED = "payment_proof_uploaded"
    PAYMENT_VALIDATED = "payment_validated"
    PAYMENT_REJECTED = "payment_rejected"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeliveryMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"

    @property
    def requires_bank_account(self) -> bool:
        return self != DeliveryMethod.CASH


class CommissionType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class BankTransferStatus(str, Enum):
    """Bank-transfer sub-ledger.

    Valid transitions:
    - PENDING -> PROCESSING
    - PROCESSING -> COMPLETED, FAILED
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertLevel(str, Enum):
    """Urgency of a remittance delivery deadline."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


REMITTANCE_STATUS_TRANSITIONS: dict[RemittanceStatus, frozenset[RemittanceStatus]] = {
    RemittanceStatus.PAYMENT_PENDING: frozenset(
        {RemittanceStatus.PAYMENT_PROOF_UPLOADED, RemittanceStatus.CANCELLED}
    ),
    RemittanceStatus.PAYMENT_PROOF_UPLOADED: frozenset(
        {
            RemittanceStatus.PAYMENT_VALIDATED,
            RemittanceStatus.PAYMENT_REJECTED,
            RemittanceStatus.CANCELLED,
        }
    ),
    RemittanceStatus.PAYMENT_REJECTED: frozenset(
        {RemittanceStatus.PAYMENT_PENDING, RemittanceStatus.CANCELLED}
    ),
    RemittanceStatus.PAYMENT_VALIDATED: frozenset(
        {RemittanceStatus.PROCESSING, RemittanceStatus.CANCELLED}
    ),
    RemittanceStatus.PROCESSING: frozenset({RemittanceStatus.DELIVERED}),
    RemittanceStatus.DELIVERED: frozenset({RemittanceStatus.COMPLETED}),
    RemittanceStatus.COMPLETED: frozenset(),
    RemittanceStatus.CANCELLED: frozenset(),
}

BANK_TRANSFER_TRANSITIONS: dict[BankTransferStatus, frozenset[BankTransferStatus]] = {
    BankTransferStatus.PENDING: frozenset({BankTransferStatus.PROCESSING}),
    BankTransferStatus.PROCESSING: frozenset(
        {BankTransferStatus.COMPLETED, BankTransferStatus.FAILED}
    ),
    BankTransferStatus.COMPLETED: frozenset(),
    BankTransferStatus.FAILED: frozenset(),
}
