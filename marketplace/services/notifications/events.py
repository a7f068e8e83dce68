"""Lifecycle events handed to the notification collaborator."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from marketplace.database.base import utc_now


@dataclass(frozen=True)
class LifecycleEvent:
    """
    Fire-and-forget message describing one transition.

    Attributes:
        entity_type: ``order`` or ``remittance``
        entity_id: Id of the entity that changed
        transition: Machine name of the transition (``payment_validated``)
        actor_identity: Display name of whoever performed it
        recipient_user_id: User the notification is addressed to
        payload: Extra fields for message templates (numbers, amounts)
        occurred_at: When the transition committed
    """

    entity_type: str
    entity_id: uuid.UUID
    transition: str
    actor_identity: str
    recipient_user_id: Optional[uuid.UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)

    def to_message(self) -> dict[str, Any]:
        """JSON-serializable form used as the task payload."""
        return {
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "transition": self.transition,
            "actor_identity": self.actor_identity,
            "recipient_user_id": (
                str(self.recipient_user_id) if self.recipient_user_id else None
            ),
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }
