"""
FastAPI dependencies for authentication, sessions and engines.

The authenticated ``User`` row is turned into an explicit ``Actor`` that is
handed to the engines; the engines perform their own role and ownership
checks.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.actor import Actor
from marketplace.core.config import get_settings
from marketplace.core.logging import bind_actor, get_logger
from marketplace.database.connection import get_db
from marketplace.database.models import User
from marketplace.services.inventory.service import InventoryReservationManager
from marketplace.services.notifications.dispatcher import (
    NotificationDispatcher,
    NullDispatcher,
)
from marketplace.services.orders.service import OrderLifecycleEngine
from marketplace.services.remittances.service import RemittanceLifecycleEngine

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DatabaseSession,
) -> User:
    """
    Validate the bearer JWT and load the user it names.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names an
            unknown user; 403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    settings = get_settings()
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning(
            "Authentication failed: JWT validation error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise credentials_exception from e

    subject = payload.get("sub")
    try:
        user_id = UUID(str(subject))
    except ValueError as e:
        logger.warning("Authentication failed: Invalid subject", subject=subject)
        raise credentials_exception from e

    user = await db.get(User, user_id)
    if user is None:
        logger.warning("Authentication failed: User not found", user_id=str(user_id))
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: Inactive user", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    bind_actor(str(user.id), user.role)
    return user


async def get_current_actor(
    user: Annotated[User, Depends(get_current_user)],
) -> Actor:
    return Actor.from_user(user)


def get_notifier(request: Request) -> NotificationDispatcher:
    """Application-wide dispatcher created in the lifespan."""
    notifier = getattr(request.app.state, "notifier", None)
    return notifier or NullDispatcher()


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Notifier = Annotated[NotificationDispatcher, Depends(get_notifier)]


def get_order_engine(db: DatabaseSession, notifier: Notifier) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(db, notifier=notifier)


def get_remittance_engine(
    db: DatabaseSession, notifier: Notifier
) -> RemittanceLifecycleEngine:
    return RemittanceLifecycleEngine(db, notifier=notifier)


def get_inventory_manager(db: DatabaseSession) -> InventoryReservationManager:
    return InventoryReservationManager(db)


OrderEngine = Annotated[OrderLifecycleEngine, Depends(get_order_engine)]
RemittanceEngine = Annotated[RemittanceLifecycleEngine, Depends(get_remittance_engine)]
InventoryManager = Annotated[InventoryReservationManager, Depends(get_inventory_manager)]
