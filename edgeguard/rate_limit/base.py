"""
Rate Limit Store Interface
==========================
Persistence contract for fixed-window counters.
"""

from datetime import datetime
from typing import Optional, Protocol

from .models import RateLimitRecord


class RateLimitStore(Protocol):
    """
    Counter persistence for the limiter.

    Implementations raise ``StorageError`` on backend failures and nothing
    else. Increments are read-then-write; exact linearizability is not
    required.
    """

    async def get_live_record(
        self, key: str, endpoint: str, now: datetime
    ) -> Optional[RateLimitRecord]:
        """Return the non-expired record for (key, endpoint), if any."""
        ...

    async def create_record(self, record: RateLimitRecord) -> None:
        """Start a new window, replacing any expired record."""
        ...

    async def increment(self, record: RateLimitRecord, now: datetime) -> None:
        """Add one request to a live record and bump ``last_request_at``."""
        ...

    async def delete_expired(self, now: datetime) -> int:
        """Delete records whose window has passed. Returns rows removed."""
        ...
