"""
Redis Rate Limit Store
======================
Counter records as Redis hashes that expire with their window.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from redis.exceptions import NoScriptError, RedisError
import structlog

from ..errors import StorageError
from .models import RateLimitRecord

logger = structlog.get_logger(__name__)

REDIS_ERRORS = (RedisError, OSError)

# Lua script for an atomic increment that never resurrects an expired window
INCREMENT_SCRIPT = """
local key = KEYS[1]

if redis.call('EXISTS', key) == 0 then
    return 0
end

redis.call('HINCRBY', key, 'count', 1)
redis.call('HSET', key, 'last_request_at', ARGV[1])
return 1
"""


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _from_ts(value) -> datetime:
    return datetime.fromtimestamp(float(_text(value)), tz=timezone.utc)


class RedisRateLimitStore:
    """
    Redis-backed counters.

    Each window is one hash with ``PEXPIREAT`` set to the window end, so
    Redis drops expired windows itself and ``delete_expired`` has nothing to do.
    """

    def __init__(self, redis_client, prefix: str = "ratelimit"):
        """
        Args:
            redis_client: Async Redis client (redis.asyncio)
            prefix: Key namespace
        """
        self.redis = redis_client
        self.prefix = prefix
        self._script_sha: Optional[str] = None

    def get_key(self, key: str) -> str:
        # Limiter keys already end with the endpoint
        return f"{self.prefix}:{key}"

    async def _ensure_script(self) -> str:
        """Load the increment script into Redis if needed."""
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(INCREMENT_SCRIPT)
        return self._script_sha

    async def get_live_record(
        self, key: str, endpoint: str, now: datetime
    ) -> Optional[RateLimitRecord]:
        redis_key = self.get_key(key)
        try:
            data = await self.redis.hgetall(redis_key)
        except REDIS_ERRORS as e:
            raise StorageError(f"Rate limit lookup failed: {e}", dependency="redis") from e

        if not data:
            return None

        fields: Dict[str, str] = {_text(k): _text(v) for k, v in data.items()}
        try:
            record = RateLimitRecord(
                id=redis_key,
                key=key,
                endpoint=endpoint,
                count=int(fields["count"]),
                first_request_at=_from_ts(fields["first_request_at"]),
                last_request_at=_from_ts(fields["last_request_at"]),
                expires_at=_from_ts(fields["expires_at"]),
            )
        except (KeyError, ValueError):
            logger.warning("rate_limit_record_corrupt", key=redis_key, fields=sorted(fields))
            await self._discard(redis_key)
            return None

        # Key expiry can lag a few milliseconds behind the window end
        if record.is_expired(now):
            return None
        return record

    async def _discard(self, redis_key: str) -> None:
        try:
            await self.redis.delete(redis_key)
        except REDIS_ERRORS as e:
            raise StorageError(f"Rate limit cleanup failed: {e}", dependency="redis") from e

    async def create_record(self, record: RateLimitRecord) -> None:
        redis_key = self.get_key(record.key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(redis_key)
                pipe.hset(
                    redis_key,
                    mapping={
                        "count": record.count,
                        "first_request_at": record.first_request_at.timestamp(),
                        "last_request_at": record.last_request_at.timestamp(),
                        "expires_at": record.expires_at.timestamp(),
                    },
                )
                pipe.pexpireat(redis_key, int(record.expires_at.timestamp() * 1000))
                await pipe.execute()
        except REDIS_ERRORS as e:
            raise StorageError(f"Rate limit insert failed: {e}", dependency="redis") from e

    async def increment(self, record: RateLimitRecord, now: datetime) -> None:
        """Count one more request; a window that expired meanwhile is left gone."""
        redis_key = self.get_key(record.key)
        try:
            script_sha = await self._ensure_script()
            updated = await self.redis.evalsha(script_sha, 1, redis_key, now.timestamp())
        except NoScriptError as e:
            # Script cache flushed (restart or SCRIPT FLUSH): reload next time
            self._script_sha = None
            raise StorageError(f"Rate limit update failed: {e}", dependency="redis") from e
        except REDIS_ERRORS as e:
            raise StorageError(f"Rate limit update failed: {e}", dependency="redis") from e

        if not int(updated):
            logger.debug("rate_limit_window_expired_before_update", key=redis_key)

    async def delete_expired(self, now: datetime) -> int:
        return 0
