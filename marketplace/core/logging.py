"""
Structured logging for the lifecycle engines.

structlog is configured once per process. Events are rendered as JSON
outside development and on a colored console in development. The request
id and the acting user are kept in structlog's own contextvars, so every
event logged while serving a request carries them. Identifier-like values
(UUIDs, Decimals, enums) are flattened to strings before rendering so
order ids, amounts and statuses read the same in every sink.
"""

import logging
import sys
import time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog
from structlog.types import EventDict, Processor

from marketplace.core.config import get_settings

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
    "httpx": logging.WARNING,
}


def flatten_identifiers(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Render UUID, Decimal and Enum values as plain strings."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = str(value.value)
        elif isinstance(value, (UUID, Decimal)):
            event_dict[key] = str(value)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        flatten_identifiers,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Safe to call more than once; the last call wins.
    """
    settings = get_settings()
    processors = _shared_processors()

    if settings.is_development:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind the correlation id for the current request.

    Args:
        request_id: Id supplied by the caller; a UUID4 is generated if absent

    Returns:
        The bound request id
    """
    request_id = request_id or str(uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def get_request_id() -> str:
    return structlog.contextvars.get_contextvars().get("request_id", "")


def bind_actor(user_id: str, role: Any) -> None:
    """Attach the authenticated caller to every subsequent event."""
    structlog.contextvars.bind_contextvars(
        user_id=user_id,
        actor_role=role.value if isinstance(role, Enum) else str(role),
    )


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class OperationTimer:
    """
    Time a lifecycle operation and log its outcome.

    Operations slower than ``slow_threshold_ms`` are logged at WARNING.
    An operation left through an exception is logged as aborted with the
    exception type; the exception itself propagates unchanged.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_threshold_ms: float = 500.0,
        **context: Any,
    ):
        self.logger = logger.bind(operation=operation, **context)
        self.slow_threshold_ms = slow_threshold_ms
        self._started: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return round((time.perf_counter() - self._started) * 1000, 2)

    def __enter__(self) -> "OperationTimer":
        self._started = time.perf_counter()
        self.logger.debug("Operation started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration_ms = self.elapsed_ms

        if exc_type is not None:
            self.logger.warning(
                "Operation aborted",
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
            )
            return

        if duration_ms > self.slow_threshold_ms:
            self.logger.warning("Slow operation", duration_ms=duration_ms)
        else:
            self.logger.info("Operation completed", duration_ms=duration_ms)


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> OperationTimer:
    """
    Shorthand for :class:`OperationTimer`.

    Example:
        >>> with log_performance(logger, "validate_payment", order_id=oid):
        ...     await engine.validate_payment(oid, admin)
    """
    return OperationTimer(logger, operation, **context)
