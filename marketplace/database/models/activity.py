"""
Activity log model.

Append-only, human-readable audit trail of every lifecycle transition.
``performed_by`` always holds a display name, never only an id.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base, JSONType, UUIDMixin, utc_now


class ActivityLog(Base, UUIDMixin):
    """
    One audit entry.

    Attributes:
        entity_type: ``order``, ``remittance``, ``bank_transfer`` ...
        entity_id: Id of the entity that changed
        action: Machine name of the transition (``payment_validated``)
        from_state: State before the transition, when applicable
        to_state: State after the transition, when applicable
        performed_by: Display name of the actor
        performed_by_user_id: Id of the actor
        description: Sentence describing the change for end users
        details: Structured extra data
    """

    __tablename__ = "activity_logs"

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    action: Mapped[str] = mapped_column(String(80), nullable=False)
    from_state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    performed_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_activity_logs_entity", "entity_type", "entity_id", "created_at"),
        Index("ix_activity_logs_user", "performed_by_user_id"),
    )
