"""
Order number generation.

Format: <prefix><YYYYmmddHHMMSSffffff><6 hex digits>
Example: ORD20261019143015123456a3f9c0

The timestamp keeps numbers roughly sortable; the random suffix makes
collisions unlikely. Unlikely is not unique, so every candidate is checked
against the order store and regenerated on a clash.
"""
import secrets
from typing import Callable, Optional, Protocol

import structlog

from commerce_core.config import get_settings
from commerce_core.domain.errors import DuplicateResourceError
from commerce_core.domain.value_objects import utc_now

logger = structlog.get_logger(__name__)


class OrderNumberLookup(Protocol):
    async def exists_number(self, order_number: str) -> bool:
        ...


class OrderNumberGenerator(Protocol):
    """Produces an order number not yet present in the order store."""

    async def next_number(self, orders: OrderNumberLookup) -> str:
        ...


class TimestampOrderNumberGenerator:
    """Default generator: timestamp plus random hex, verified against the store."""

    def __init__(
        self,
        prefix: Optional[str] = None,
        max_attempts: Optional[int] = None,
        suffix_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize generator.

        Args:
            prefix: Order number prefix (default from settings)
            max_attempts: Candidates tried before giving up (default from settings)
            suffix_factory: Random suffix source (tests pin it to force collisions)
        """
        settings = get_settings()
        self.prefix = prefix if prefix is not None else settings.order_number_prefix
        self.max_attempts = max_attempts if max_attempts is not None else settings.order_number_max_attempts
        self._suffix_factory = suffix_factory or (lambda: secrets.token_hex(3))

    def candidate(self) -> str:
        return f"{self.prefix}{utc_now().strftime('%Y%m%d%H%M%S%f')}{self._suffix_factory()}"

    async def next_number(self, orders: OrderNumberLookup) -> str:
        """
        Return a number that does not exist in `orders`.

        Raises:
            DuplicateResourceError: every attempt collided
        """
        number = ""
        for attempt in range(1, self.max_attempts + 1):
            number = self.candidate()
            if not await orders.exists_number(number):
                return number
            logger.warning("order_number_collision", order_number=number, attempt=attempt)

        raise DuplicateResourceError("order", number)
