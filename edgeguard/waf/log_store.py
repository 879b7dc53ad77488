"""
WAF Log Stores
==============
Append-only persistence for detected attacks.
"""

from datetime import datetime
from typing import List, Protocol

from sqlalchemy import delete, insert

from ..database import DATABASE_ERRORS, Database, as_utc
from ..errors import StorageError
from .models import WafLogEntry


class WafLogStore(Protocol):
    """Implementations raise ``StorageError`` on backend failures."""

    async def insert(self, entry: WafLogEntry) -> None:
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete entries with ``timestamp < cutoff``. Returns rows removed."""
        ...


class InMemoryWafLogStore:
    """
    List-backed log store.

    For development and testing only.
    """

    def __init__(self):
        self.entries: List[WafLogEntry] = []

    async def insert(self, entry: WafLogEntry) -> None:
        self.entries.append(entry)

    async def delete_older_than(self, cutoff: datetime) -> int:
        kept = [e for e in self.entries if as_utc(e.timestamp) >= cutoff]
        deleted = len(self.entries) - len(kept)
        self.entries = kept
        return deleted

    def __len__(self) -> int:
        return len(self.entries)


class SQLWafLogStore:
    """Rows in the ``waf_logs`` table."""

    def __init__(self, database: Database):
        self.database = database
        self.table = database.tables.waf_logs

    async def insert(self, entry: WafLogEntry) -> None:
        stmt = insert(self.table).values(**entry.to_dict())
        try:
            async with self.database.session() as session:
                await session.execute(stmt)
        except DATABASE_ERRORS as e:
            raise StorageError(f"WAF log insert failed: {e}") from e

    async def delete_older_than(self, cutoff: datetime) -> int:
        stmt = delete(self.table).where(self.table.c.timestamp < cutoff)
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
        except DATABASE_ERRORS as e:
            raise StorageError(f"WAF log cleanup failed: {e}") from e
        return result.rowcount or 0
