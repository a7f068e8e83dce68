"""
User model.

Only the fields the lifecycle engines need: identity, display name for the
activity trail, and the role used to resolve admin privileges.
"""

from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.core.actor import ActorRole
from marketplace.database.base import BaseModel, enum_values


class User(BaseModel):
    """
    Marketplace user.

    Attributes:
        id: Unique user identifier (UUID)
        email: Login email, unique
        full_name: Name shown in the activity trail
        role: Privilege level
        is_active: Inactive users cannot authenticate
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    full_name: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        comment="Display name",
    )

    role: Mapped[ActorRole] = mapped_column(
        SQLEnum(
            ActorRole,
            name="user_role",
            values_callable=enum_values,
            native_enum=False,
            create_constraint=True,
        ),
        nullable=False,
        default=ActorRole.USER,
        comment="Privilege level",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the user may authenticate",
    )

    __table_args__ = (
        Index("ix_users_email", "email"),
        {"comment": "Marketplace users"},
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
