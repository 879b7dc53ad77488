"""
Database Module
===============
Async engine, session factory and table definitions for EdgeGuard storage.

Tables:
- rate_limits: one live counter row per (key, endpoint) window
- waf_logs: append-only audit rows for detected attacks
- profiles: role/email lookup by subject id (owned by the host application)
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
import structlog

logger = structlog.get_logger(__name__)

# Driver connection failures (asyncpg) surface as OSError, not SQLAlchemyError
DATABASE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


@dataclass
class EdgeGuardTables:
    """Table handles bound to one MetaData."""
    metadata: MetaData
    rate_limits: Table
    waf_logs: Table
    profiles: Table


def build_tables(
    rate_limit_table: str = "rate_limits",
    waf_log_table: str = "waf_logs",
    profile_table: str = "profiles",
) -> EdgeGuardTables:
    """Define the EdgeGuard tables under configurable names."""
    metadata = MetaData()

    rate_limits = Table(
        rate_limit_table,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("key", String(512), nullable=False),
        Column("endpoint", String(255), nullable=False),
        Column("count", Integer, nullable=False, default=1),
        Column("first_request_at", DateTime(timezone=True), nullable=False),
        Column("last_request_at", DateTime(timezone=True), nullable=False),
        Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
        Index(f"ix_{rate_limit_table}_key_endpoint", "key", "endpoint"),
    )

    waf_logs = Table(
        waf_log_table,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("request_id", String(64), nullable=False),
        Column("timestamp", DateTime(timezone=True), nullable=False, index=True),
        Column("ip_address", String(64), nullable=False),
        Column("user_id", String(64)),
        Column("method", String(16), nullable=False),
        Column("path", Text, nullable=False),
        Column("user_agent", Text),
        Column("attack_type", String(64), nullable=False),
        Column("rule_id", String(64), nullable=False, index=True),
        Column("rule_name", String(255), nullable=False),
        Column("location", String(255), nullable=False),
        Column("value", Text, nullable=False),
        Column("action", String(16), nullable=False),  # "block" | "log"
        Column("protection_level", String(16), nullable=False),
        Column("severity", String(16), nullable=False),
        Column("headers", JSON),
        Column("params", JSON),
    )

    profiles = Table(
        profile_table,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("role", String(64)),
        Column("email", String(255)),
    )

    return EdgeGuardTables(
        metadata=metadata,
        rate_limits=rate_limits,
        waf_logs=waf_logs,
        profiles=profiles,
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Database:
    """
    Owns the async engine and session factory.

    Construct once at process start and share; the engine is a stateless
    connection factory and safe to use from concurrent requests.
    """

    def __init__(
        self,
        database_url: str,
        tables: Optional[EdgeGuardTables] = None,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_pre_ping: bool = True,
        echo: bool = False,
    ):
        """
        Args:
            database_url: Async connection string (postgresql+asyncpg://...)
            tables: Table definitions (default names if omitted)
            pool_size: Connection pool size (ignored for SQLite)
            max_overflow: Max overflow connections (ignored for SQLite)
            pool_pre_ping: Enable connection health checks
            echo: Log SQL statements
        """
        engine_kwargs = {"pool_pre_ping": pool_pre_ping, "echo": echo}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        self.tables = tables or build_tables()
        self.engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("database_engine_initialized", dialect=self.engine.dialect.name)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session that commits on success and rolls back on exception.

        Usage:
            async with database.session() as db:
                await db.execute(...)
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create missing tables (development and tests; production uses migrations)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.tables.metadata.create_all)

    async def dispose(self) -> None:
        """Close the engine. Call during application shutdown."""
        await self.engine.dispose()
        logger.info("database_engine_closed")
