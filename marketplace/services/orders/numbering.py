"""
Order number allocation.

Numbers look like ``ORD-20251007-04821``. When the candidate is already
taken, the current microsecond is appended as a six digit suffix
(``ORD-20251007-04821-739204``) and the claim is repeated, drawing a new
base from the second retry on, up to a bounded number of attempts.

A number is only considered allocated once the row carrying it is stored.
The existence check filters out numbers that are visibly taken; a number
taken by a concurrent transaction between that check and the insert is
rejected by the unique constraint and treated as one more collision.
"""

import random
from datetime import datetime
from typing import Awaitable, Callable, Optional

from marketplace.core.exceptions import InternalError
from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "ORD"


class OrderNumberAllocator:
    """
    Generates unique order numbers.

    Args:
        exists: Coroutine returning True when a number is already used
        max_attempts: Candidates tried before giving up
        clock: Source of the current time
        rng: Source of the five random digits
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self._exists = exists
        self._max_attempts = max_attempts
        self._clock = clock
        self._rng = rng or random.SystemRandom()

    def candidate(self) -> str:
        """Build a fresh base number for today."""
        today = self._clock().strftime("%Y%m%d")
        return f"{ORDER_NUMBER_PREFIX}-{today}-{self._rng.randint(0, 99999):05d}"

    async def claim(self, insert: Callable[[str], Awaitable[bool]]) -> str:
        """
        Store a record under the first number nobody else holds.

        Args:
            insert: Coroutine persisting the record under the given number;
                returns False when the unique constraint rejected it

        Returns:
            The number the record was stored under

        Raises:
            InternalError: If every attempt collided
        """
        base = self.candidate()
        number = base

        for attempt in range(1, self._max_attempts + 1):
            if await self._exists(number):
                collision = "existing"
            elif await insert(number):
                if attempt > 1:
                    logger.info(
                        "Order number allocated after collision",
                        order_number=number,
                        attempts=attempt,
                    )
                return number
            else:
                collision = "concurrent_insert"

            logger.warning(
                "Order number collision",
                order_number=number,
                attempt=attempt,
                collision=collision,
            )
            if attempt > 1:
                base = self.candidate()
            number = f"{base}-{self._clock().microsecond:06d}"

        logger.error(
            "Order number allocation exhausted",
            max_attempts=self._max_attempts,
        )
        raise InternalError(
            "Could not allocate a unique order number",
            attempts=self._max_attempts,
        )
