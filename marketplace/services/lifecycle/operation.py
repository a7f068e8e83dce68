"""
Transaction and error boundary wrapped around every engine operation.

Domain errors pass through untouched so the caller sees the stable code.
Anything else is logged with full context and re-raised as an opaque
``InternalError``. In both cases the unit of work has been rolled back.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import InternalError, LifecycleError
from marketplace.core.logging import get_logger
from marketplace.database.connection import unit_of_work

logger = get_logger(__name__)


@asynccontextmanager
async def lifecycle_operation(
    session: AsyncSession,
    operation: str,
    **context: Any,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Run an engine operation as one atomic unit with error classification.

    Args:
        session: Session the operation mutates
        operation: Operation name used in log events
        **context: Identifiers bound to every log event

    Yields:
        The session, inside an open unit of work

    Raises:
        LifecycleError: Domain failures, unchanged
        InternalError: Any other failure
    """
    log = logger.bind(operation=operation, **context)
    log.info("Lifecycle operation started")

    try:
        async with unit_of_work(session):
            yield session
    except LifecycleError as e:
        log.warning(
            "Lifecycle operation rejected",
            error_code=e.code,
            error=e.message,
        )
        raise
    except Exception as e:
        log.error(
            "Lifecycle operation failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise InternalError(operation=operation) from e

    log.info("Lifecycle operation completed")
