"""
SQL Rate Limit Store
====================
Counter records in the ``rate_limits`` table via SQLAlchemy.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, select, update

from ..database import DATABASE_ERRORS, Database, as_utc
from ..errors import StorageError
from .models import RateLimitRecord


class SQLRateLimitStore:
    """Database-backed counters shared by every process hitting the same database."""

    def __init__(self, database: Database):
        self.database = database
        self.table = database.tables.rate_limits

    async def get_live_record(
        self, key: str, endpoint: str, now: datetime
    ) -> Optional[RateLimitRecord]:
        stmt = (
            select(self.table)
            .where(
                self.table.c.key == key,
                self.table.c.endpoint == endpoint,
                self.table.c.expires_at >= now,
            )
            .order_by(self.table.c.expires_at.desc())
            .limit(1)
        )
        try:
            async with self.database.session() as session:
                row = (await session.execute(stmt)).mappings().first()
        except DATABASE_ERRORS as e:
            raise StorageError(f"Rate limit lookup failed: {e}") from e

        if row is None:
            return None

        return RateLimitRecord(
            id=row["id"],
            key=row["key"],
            endpoint=row["endpoint"],
            count=row["count"],
            first_request_at=as_utc(row["first_request_at"]),
            last_request_at=as_utc(row["last_request_at"]),
            expires_at=as_utc(row["expires_at"]),
        )

    async def create_record(self, record: RateLimitRecord) -> None:
        stmt = insert(self.table).values(
            key=record.key,
            endpoint=record.endpoint,
            count=record.count,
            first_request_at=record.first_request_at,
            last_request_at=record.last_request_at,
            expires_at=record.expires_at,
        )
        try:
            async with self.database.session() as session:
                await session.execute(stmt)
        except DATABASE_ERRORS as e:
            raise StorageError(f"Rate limit insert failed: {e}") from e

    async def increment(self, record: RateLimitRecord, now: datetime) -> None:
        stmt = (
            update(self.table)
            .where(self.table.c.id == record.id)
            .values(count=self.table.c.count + 1, last_request_at=now)
        )
        try:
            async with self.database.session() as session:
                await session.execute(stmt)
        except DATABASE_ERRORS as e:
            raise StorageError(f"Rate limit update failed: {e}") from e

    async def delete_expired(self, now: datetime) -> int:
        stmt = delete(self.table).where(self.table.c.expires_at < now)
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
        except DATABASE_ERRORS as e:
            raise StorageError(f"Rate limit cleanup failed: {e}") from e
        return result.rowcount or 0
