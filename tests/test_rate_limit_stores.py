"""
Unit Tests for Rate Limit Stores
================================
SQL (against SQLite) and Redis (against a mocked client) counter stores.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


class TestSQLRateLimitStore:
    """Tests for the SQLAlchemy-backed store."""

    @pytest.mark.asyncio
    async def test_window_counts_through_database(self, database, clock):
        """The limiter enforces the window against persisted rows."""
        from edgeguard.rate_limit import RateLimitConfig, RateLimiter, SQLRateLimitStore

        limiter = RateLimiter(SQLRateLimitStore(database), clock=clock)
        config = RateLimitConfig(limit=2, window=60)

        results = [
            await limiter.check_rate_limit("/login", config, ip_address="203.0.113.1")
            for _ in range(3)
        ]

        assert [r.allowed for r in results] == [True, True, False]
        assert results[2].retry_after == 60

    @pytest.mark.asyncio
    async def test_cleanup_deletes_only_expired(self, database, clock):
        """Cleanup removes past windows and keeps live ones."""
        from edgeguard.rate_limit import RateLimitConfig, RateLimiter, SQLRateLimitStore

        store = SQLRateLimitStore(database)
        limiter = RateLimiter(store, clock=clock)

        await limiter.check_rate_limit("/a", RateLimitConfig(limit=5, window=10), ip_address="203.0.113.1")
        await limiter.check_rate_limit("/b", RateLimitConfig(limit=5, window=600), ip_address="203.0.113.1")
        clock.advance(30)

        assert await limiter.cleanup_expired_records() == 1
        assert await limiter.cleanup_expired_records() == 0
        assert await store.get_live_record("ip:203.0.113.1:/b", "/b", clock()) is not None

    @pytest.mark.asyncio
    async def test_expired_record_is_absent(self, database, clock):
        """A record past expires_at is never returned."""
        from edgeguard.rate_limit import RateLimitRecord, SQLRateLimitStore

        store = SQLRateLimitStore(database)
        now = clock()
        await store.create_record(
            RateLimitRecord(
                key="ip:203.0.113.1:/x",
                endpoint="/x",
                count=1,
                first_request_at=now,
                last_request_at=now,
                expires_at=now + timedelta(seconds=60),
            )
        )

        live = await store.get_live_record("ip:203.0.113.1:/x", "/x", now)
        assert live is not None
        assert live.count == 1
        assert live.expires_at.tzinfo is not None

        later = now + timedelta(seconds=61)
        assert await store.get_live_record("ip:203.0.113.1:/x", "/x", later) is None


    @pytest.mark.asyncio
    async def test_unreachable_database_fails_open(self, unreachable_database, clock):
        """Refused connections surface as StorageError and the limiter allows."""
        from edgeguard.errors import StorageError
        from edgeguard.rate_limit import RateLimitConfig, RateLimiter, SQLRateLimitStore

        store = SQLRateLimitStore(unreachable_database)
        limiter = RateLimiter(store, clock=clock)

        result = await limiter.check_rate_limit(
            "/login", RateLimitConfig(limit=1, window=60), ip_address="203.0.113.1"
        )

        assert result.allowed is True
        assert await limiter.cleanup_expired_records() == 0
        with pytest.raises(StorageError):
            await store.get_live_record("ip:203.0.113.1:/login", "/login", clock())


class FakePipeline:
    """Records queued commands; usable as ``async with``."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return queue

    async def execute(self):
        if self.fail:
            raise RedisConnectionError("connection reset")
        return [True] * len(self.calls)


def make_redis(hash_data=None, fail=False):
    client = MagicMock()
    if fail:
        client.hgetall = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    else:
        client.hgetall = AsyncMock(return_value=hash_data or {})
    client.pipeline = MagicMock(return_value=FakePipeline(fail=fail))
    client.script_load = AsyncMock(return_value="sha-increment")
    client.evalsha = AsyncMock(return_value=1)
    client.delete = AsyncMock(return_value=1)
    return client


class TestRedisRateLimitStore:
    """Tests for the Redis hash store."""

    @pytest.mark.asyncio
    async def test_missing_key_is_absent(self):
        """No hash means no live record."""
        from edgeguard.rate_limit import RedisRateLimitStore

        store = RedisRateLimitStore(make_redis())
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)

        assert await store.get_live_record("ip:1.2.3.4:/x", "/x", now) is None

    @pytest.mark.asyncio
    async def test_reads_hash_fields(self):
        """Byte-encoded hash fields become a record."""
        from edgeguard.rate_limit import RedisRateLimitStore

        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        ts = now.timestamp()
        client = make_redis({
            b"count": b"7",
            b"first_request_at": str(ts).encode(),
            b"last_request_at": str(ts + 5).encode(),
            b"expires_at": str(ts + 60).encode(),
        })
        store = RedisRateLimitStore(client)

        record = await store.get_live_record("ip:1.2.3.4:/x", "/x", now)

        assert record.count == 7
        assert record.expires_at == now + timedelta(seconds=60)
        client.hgetall.assert_awaited_once_with("ratelimit:ip:1.2.3.4:/x")

    @pytest.mark.asyncio
    async def test_lagging_expiry_is_absent(self):
        """A hash Redis has not evicted yet still counts as expired."""
        from edgeguard.rate_limit import RedisRateLimitStore

        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        ts = now.timestamp()
        store = RedisRateLimitStore(make_redis({
            "count": "3",
            "first_request_at": str(ts - 120),
            "last_request_at": str(ts - 70),
            "expires_at": str(ts - 60),
        }))

        assert await store.get_live_record("k", "/x", now) is None

    @pytest.mark.asyncio
    async def test_create_sets_expiry_at_window_end(self):
        """New windows are written with PEXPIREAT at expires_at."""
        from edgeguard.rate_limit import RateLimitRecord, RedisRateLimitStore

        client = make_redis()
        store = RedisRateLimitStore(client, prefix="rl")
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)

        await store.create_record(RateLimitRecord(
            key="user:u1:/x",
            endpoint="/x",
            count=1,
            first_request_at=now,
            last_request_at=now,
            expires_at=now + timedelta(seconds=60),
        ))

        pipe = client.pipeline.return_value
        commands = [name for name, _, _ in pipe.calls]
        assert commands == ["delete", "hset", "pexpireat"]
        assert pipe.calls[2][1] == ("rl:user:u1:/x", int((now.timestamp() + 60) * 1000))

    @pytest.mark.asyncio
    async def test_redis_errors_become_storage_errors(self):
        """Redis failures surface as StorageError for the limiter's policy."""
        from edgeguard.errors import StorageError
        from edgeguard.rate_limit import RedisRateLimitStore

        store = RedisRateLimitStore(make_redis(fail=True))
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)

        with pytest.raises(StorageError) as exc_info:
            await store.get_live_record("k", "/x", now)
        assert exc_info.value.dependency == "redis"

    @pytest.mark.asyncio
    async def test_limiter_fails_open_on_redis_outage(self, clock):
        """An unreachable Redis does not block traffic."""
        from edgeguard.rate_limit import RateLimitConfig, RateLimiter, RedisRateLimitStore

        limiter = RateLimiter(RedisRateLimitStore(make_redis(fail=True)), clock=clock)
        result = await limiter.check_rate_limit(
            "/x", RateLimitConfig(limit=1, window=60), ip_address="203.0.113.1"
        )

        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_increment_runs_atomic_script(self):
        """Increments go through one loaded script, keyed without a repeated endpoint."""
        from edgeguard.rate_limit import RateLimitRecord, RedisRateLimitStore

        client = make_redis()
        store = RedisRateLimitStore(client)
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        record = RateLimitRecord(
            key="ip:1.2.3.4:/x",
            endpoint="/x",
            count=1,
            first_request_at=now,
            last_request_at=now,
            expires_at=now + timedelta(seconds=60),
        )

        await store.increment(record, now)
        await store.increment(record, now)

        client.script_load.assert_awaited_once()
        client.evalsha.assert_awaited_with("sha-increment", 1, "ratelimit:ip:1.2.3.4:/x", now.timestamp())

    @pytest.mark.asyncio
    async def test_increment_on_vanished_window_is_quiet(self):
        """A window that expired between read and update is not recreated or raised on."""
        from edgeguard.rate_limit import RateLimitRecord, RedisRateLimitStore

        client = make_redis()
        client.evalsha = AsyncMock(return_value=0)
        store = RedisRateLimitStore(client)
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)

        await store.increment(
            RateLimitRecord(
                key="k", endpoint="/x", count=1,
                first_request_at=now, last_request_at=now, expires_at=now,
            ),
            now,
        )

        client.pipeline.assert_not_called()

    @pytest.mark.asyncio
    async def test_partial_hash_is_discarded(self, clock):
        """A hash missing window fields counts as absent, is deleted, and a new window starts."""
        from edgeguard.rate_limit import RateLimitConfig, RateLimiter, RedisRateLimitStore

        client = make_redis({b"count": b"4", b"last_request_at": str(clock().timestamp()).encode()})
        limiter = RateLimiter(RedisRateLimitStore(client), clock=clock)

        result = await limiter.check_rate_limit(
            "/x", RateLimitConfig(limit=5, window=60), ip_address="203.0.113.1"
        )

        assert result.allowed is True
        assert result.remaining == 4
        client.delete.assert_awaited_once_with("ratelimit:ip:203.0.113.1:/x")
        commands = [name for name, _, _ in client.pipeline.return_value.calls]
        assert commands == ["delete", "hset", "pexpireat"]

    @pytest.mark.asyncio
    async def test_flushed_script_is_reloaded(self):
        """NOSCRIPT fails this update and forces a reload on the next one."""
        from redis.exceptions import NoScriptError
        from edgeguard.errors import StorageError
        from edgeguard.rate_limit import RateLimitRecord, RedisRateLimitStore

        client = make_redis()
        client.evalsha = AsyncMock(side_effect=[NoScriptError("No matching script"), 1])
        store = RedisRateLimitStore(client)
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        record = RateLimitRecord(
            key="k", endpoint="/x", count=1,
            first_request_at=now, last_request_at=now, expires_at=now + timedelta(seconds=60),
        )

        with pytest.raises(StorageError):
            await store.increment(record, now)
        await store.increment(record, now)

        assert client.script_load.await_count == 2

    @pytest.mark.asyncio
    async def test_unreachable_redis_fails_open(self, clock):
        """A Redis server that refuses connections does not block traffic."""
        import redis.asyncio as aioredis
        from edgeguard.rate_limit import RateLimitConfig, RateLimiter, RedisRateLimitStore

        client = aioredis.from_url("redis://127.0.0.1:1/0", socket_connect_timeout=1)
        limiter = RateLimiter(RedisRateLimitStore(client), clock=clock)
        try:
            result = await limiter.check_rate_limit(
                "/x", RateLimitConfig(limit=1, window=60), ip_address="203.0.113.1"
            )
        finally:
            await client.aclose()

        assert result.allowed is True
