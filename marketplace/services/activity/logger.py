"""
Activity trail writer.

Entries are written inside a SAVEPOINT of the caller's transaction: when the
insert fails the savepoint is rolled back, a warning is logged, and the
primary transition carries on and commits.
"""

import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.actor import Actor
from marketplace.core.logging import get_logger
from marketplace.database.models import ActivityLog

logger = get_logger(__name__)


def _state(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", str(value))


class ActivityLogger:
    """Best-effort writer of ``ActivityLog`` rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        *,
        entity_type: str,
        entity_id: uuid.UUID,
        action: str,
        actor: Actor,
        description: str,
        from_state: Any = None,
        to_state: Any = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[ActivityLog]:
        """
        Append one entry for a lifecycle transition.

        Args:
            entity_type: Kind of entity that changed
            entity_id: Id of the entity
            action: Machine name of the transition
            actor: Who performed it; their display name is stored
            description: Sentence shown to end users
            from_state: State before the transition
            to_state: State after the transition
            details: Extra structured data

        Returns:
            The stored entry, or None when the write failed
        """
        # Primary changes must hit the database outside the savepoint
        await self.session.flush()

        entry = ActivityLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            from_state=_state(from_state),
            to_state=_state(to_state),
            performed_by=actor.display_name,
            performed_by_user_id=actor.user_id,
            description=description,
            details=details,
        )

        try:
            async with self.session.begin_nested():
                self.session.add(entry)
        except Exception as e:
            logger.warning(
                "Failed to write activity log entry",
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        return entry
