"""
Error taxonomy shared by the order and remittance engines.

Every recoverable failure carries a stable machine-readable ``code`` and a
human-readable message; ``context`` holds structured details that the API
layer returns to the caller. ``InternalError`` is the only opaque member:
its message is generic and its details are never rendered.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import UUID


class LifecycleError(Exception):
    """Base exception for lifecycle engine errors."""

    code = "LIFECYCLE_ERROR"
    http_status = 400

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses."""
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: _plain(v) for k, v in self.context.items()},
        }


class ValidationError(LifecycleError):
    """Raised on bad input or out-of-bounds amounts."""

    code = "VALIDATION_ERROR"
    http_status = 422


class InvalidStateTransitionError(LifecycleError):
    """Raised when a lifecycle move is not allowed from the current state."""

    code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(
        self,
        current_state: Any,
        requested_state: Any,
        allowed: Optional[Iterable[Any]] = None,
        message: Optional[str] = None,
        **context: Any,
    ):
        current = _plain(current_state)
        requested = _plain(requested_state)
        super().__init__(
            message or f"Cannot move from '{current}' to '{requested}'",
            current_state=current,
            requested_state=requested,
            allowed=sorted(_plain(s) for s in (allowed or ())),
            **context,
        )
        self.current_state = current_state
        self.requested_state = requested_state


class InsufficientStockError(LifecycleError):
    """Raised when a reservation or commit exceeds available stock."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, product_id: Any, requested: int, available: int, **context: Any):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}",
            product_id=str(product_id),
            requested=requested,
            available=available,
            **context,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class NotFoundError(LifecycleError):
    """Raised when a referenced entity does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any, **context: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            entity=entity,
            entity_id=str(entity_id),
            **context,
        )


class PermissionDeniedError(LifecycleError):
    """Raised when the caller lacks the role or ownership an operation needs."""

    code = "PERMISSION_DENIED"
    http_status = 403


class DeliveryProofRequiredError(LifecycleError):
    """Raised when delivery is confirmed with no evidence on file or supplied."""

    code = "DELIVERY_PROOF_REQUIRED"
    http_status = 422

    def __init__(self, entity_id: Any, **context: Any):
        super().__init__(
            "Delivery evidence is required to confirm delivery",
            entity_id=str(entity_id),
            **context,
        )


class InternalError(LifecycleError):
    """Opaque wrapper for storage failures and other unexpected errors."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str = "An internal error occurred", **context: Any):
        super().__init__(message, **context)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": "An internal error occurred", "details": {}}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return value
