"""
Explicit caller identity passed into every engine operation.

There is no ambient "current user": handlers build an ``Actor`` from the
authenticated user and hand it to the engine, which performs its own role
and ownership checks before mutating anything.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from marketplace.core.exceptions import PermissionDeniedError


class ActorRole(str, Enum):
    """Roles recognised by the lifecycle engines."""

    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES = frozenset({ActorRole.ADMIN, ActorRole.SUPER_ADMIN})


@dataclass(frozen=True)
class Actor:
    """
    Caller identity.

    Attributes:
        user_id: Surrogate id of the acting user
        display_name: Human-readable identity written to the activity log
        role: Role used for authorization checks
    """

    user_id: uuid.UUID
    display_name: str
    role: ActorRole = ActorRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @classmethod
    def from_user(cls, user: Any) -> "Actor":
        """Build an actor from a ``User`` row, preferring the full name."""
        return cls(
            user_id=user.id,
            display_name=user.display_name,
            role=ActorRole(user.role),
        )

    def require_admin(self, operation: str) -> None:
        """
        Ensure the actor holds an admin role.

        Raises:
            PermissionDeniedError: If the actor is not an admin
        """
        if not self.is_admin:
            raise PermissionDeniedError(
                f"Operation '{operation}' requires an administrator",
                operation=operation,
                user_id=str(self.user_id),
            )

    def require_owner_or_admin(
        self, owner_id: Optional[uuid.UUID], operation: str
    ) -> None:
        """
        Ensure the actor owns the entity or is an admin.

        Raises:
            PermissionDeniedError: If neither condition holds
        """
        if self.is_admin or (owner_id is not None and owner_id == self.user_id):
            return
        raise PermissionDeniedError(
            f"Operation '{operation}' is restricted to the owner or an administrator",
            operation=operation,
            user_id=str(self.user_id),
        )
