"""Order status and payment status enums with their transition graphs.

The two axes are independent: ``OrderStatus`` tracks fulfillment and
``PaymentStatus`` tracks money. They are tied together by one rule,
enforced by the engine: fulfillment only moves forward out of PENDING
when payment is VALIDATED.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Fulfillment axis.

    Valid transitions:
    - PENDING -> PROCESSING, CANCELLED
    - PROCESSING -> SHIPPED, CANCELLED
    - SHIPPED -> DELIVERED
    - DELIVERED -> COMPLETED
    - CANCELLED -> PENDING (reopen)
    - COMPLETED -> (terminal state)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Money axis.

    Valid transitions:
    - PENDING -> PROOF_UPLOADED, REJECTED
    - PROOF_UPLOADED -> VALIDATED, REJECTED
    - REJECTED -> PENDING (resubmission)
    - VALIDATED -> (terminal state)
    """

    PENDING = "pending"
    PROOF_UPLOADED = "proof_uploaded"
    VALIDATED = "validated"
    REJECTED = "rejected"


class OrderItemType(str, Enum):
    """What an order line refers to."""

    PRODUCT = "product"
    COMBO = "combo"
    REMITTANCE = "remittance"


ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PENDING}),
}

PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROOF_UPLOADED, PaymentStatus.REJECTED}
    ),
    PaymentStatus.PROOF_UPLOADED: frozenset(
        {PaymentStatus.VALIDATED, PaymentStatus.REJECTED}
    ),
    PaymentStatus.REJECTED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.VALIDATED: frozenset(),
}

# Fulfillment states that may only be entered once payment is VALIDATED
PAYMENT_GATED_STATUSES = frozenset(
    {
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
    }
)
