"""
In-Memory Rate Limit Store
==========================
Process-local counter store for development and testing.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from .models import RateLimitRecord


class InMemoryRateLimitStore:
    """
    Dict-backed counter store.

    For development and testing only; counters are not shared between
    processes. Use SQLRateLimitStore or RedisRateLimitStore in production.
    """

    def __init__(self):
        self._records: Dict[Tuple[str, str], RateLimitRecord] = {}
        self._next_id = 1

    async def get_live_record(
        self, key: str, endpoint: str, now: datetime
    ) -> Optional[RateLimitRecord]:
        record = self._records.get((key, endpoint))
        if record is None or record.is_expired(now):
            return None
        return replace(record)

    async def create_record(self, record: RateLimitRecord) -> None:
        stored = replace(record, id=self._next_id)
        self._next_id += 1
        self._records[(record.key, record.endpoint)] = stored

    async def increment(self, record: RateLimitRecord, now: datetime) -> None:
        stored = self._records.get((record.key, record.endpoint))
        if stored is None:
            return
        stored.count += 1
        stored.last_request_at = now

    async def delete_expired(self, now: datetime) -> int:
        expired = [k for k, record in self._records.items() if record.is_expired(now)]
        for k in expired:
            del self._records[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
