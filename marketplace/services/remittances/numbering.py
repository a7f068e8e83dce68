"""
Remittance number allocation.

Numbers are ``REM-<year>-<counter>`` with a four digit, zero padded counter
that restarts every year (``REM-2025-0001``). The next counter is derived
from the highest number issued this year. When the candidate is already
stored, or a concurrent transaction stores it first and the unique
constraint rejects the insert, the counter is advanced and the claim
repeated, a bounded number of times.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

from marketplace.core.exceptions import InternalError
from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now

logger = get_logger(__name__)

REMITTANCE_NUMBER_PREFIX = "REM"


def parse_counter(number: Optional[str]) -> int:
    """Counter part of a remittance number, 0 for None or malformed input."""
    if not number:
        return 0
    try:
        return int(number.rsplit("-", 1)[1])
    except (IndexError, ValueError):
        return 0


class RemittanceNumberAllocator:
    """
    Generates sequential per-year remittance numbers.

    Args:
        latest: Coroutine returning the highest number issued for a year
        exists: Coroutine returning True when a number is already used
        max_attempts: Candidates tried before giving up
        clock: Source of the current time
    """

    def __init__(
        self,
        latest: Callable[[int], Awaitable[Optional[str]]],
        exists: Callable[[str], Awaitable[bool]],
        max_attempts: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._latest = latest
        self._exists = exists
        self._max_attempts = max_attempts
        self._clock = clock

    async def claim(self, insert: Callable[[str], Awaitable[bool]]) -> str:
        """
        Store a record under the next free number for the current year.

        Args:
            insert: Coroutine persisting the record under the given number;
                returns False when the unique constraint rejected it

        Returns:
            The number the record was stored under

        Raises:
            InternalError: If every attempt collided
        """
        year = self._clock().year
        counter = parse_counter(await self._latest(year))

        for attempt in range(1, self._max_attempts + 1):
            counter += 1
            number = f"{REMITTANCE_NUMBER_PREFIX}-{year}-{counter:04d}"
            if await self._exists(number):
                collision = "existing"
            elif await insert(number):
                return number
            else:
                collision = "concurrent_insert"
            logger.warning(
                "Remittance number collision",
                remittance_number=number,
                attempt=attempt,
                collision=collision,
            )

        logger.error(
            "Remittance number allocation exhausted",
            max_attempts=self._max_attempts,
        )
        raise InternalError(
            "Could not allocate a unique remittance number",
            attempts=self._max_attempts,
        )
