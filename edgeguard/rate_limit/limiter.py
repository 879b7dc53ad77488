"""
Rate Limiter
============
Fixed-window request limiting per IP and per user, backed by a counter store.

A request may be counted under several keys (``ip:<addr>:<endpoint>`` and
``user:<id>:<endpoint>``); the most restrictive result wins. Windows are
fixed, not sliding, so a burst straddling a window boundary can reach twice
the nominal rate.
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from starlette.requests import Request
from starlette.responses import Response
import structlog

from ..errors import FailurePolicy, RateLimitExceeded, StorageError, error_response
from ..ip_utils import UNKNOWN_IP, get_client_ip
from ..metrics import record_decision
from .base import RateLimitStore
from .models import (
    DEFAULT_ERROR_MESSAGE,
    RateLimitConfig,
    RateLimitRecord,
    RateLimitResult,
    resolve_rate_limit_config,
)

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """
    Standard rate limit headers for a check result.

    Retry-After is only present on denials.
    """
    headers = {
        "RateLimit-Limit": str(result.limit),
        "RateLimit-Remaining": str(max(0, result.remaining)),
        "RateLimit-Reset": str(result.reset),
    }
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


class RateLimiter:
    """
    Fixed-window rate limiter.

    Storage failures follow ``failure_policy``: FAIL_OPEN (default) allows the
    request so that limiting is never a single point of outage.
    """

    def __init__(
        self,
        store: RateLimitStore,
        auth_gate=None,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Counter persistence
            auth_gate: Resolves user id and admin status in ``limit_request``
            failure_policy: What a storage error means for the request
            clock: Returns the current UTC time
        """
        self.store = store
        self.auth_gate = auth_gate
        self.failure_policy = failure_policy
        self.clock = clock

    async def check_rate_limit(
        self,
        endpoint: str,
        config: RateLimitConfig,
        ip_address: Optional[str] = None,
        user_id: Optional[str] = None,
        is_admin: bool = False,
    ) -> RateLimitResult:
        """
        Check whether a request is within its limits, counting it if so.

        Args:
            endpoint: Logical route name namespacing the counters
            config: Limiter settings for this endpoint
            ip_address: Caller IP, if known
            user_id: Caller id, if authenticated
            is_admin: Whether the caller has the admin role

        Returns:
            The most restrictive result across all applicable keys
        """
        now = self.clock()

        if is_admin and config.admin_bypass:
            record_decision("rate_limit", "bypassed")
            return self._full_quota(config, now)

        keys: List[str] = []
        if config.ip_based and ip_address and ip_address != UNKNOWN_IP:
            keys.append(f"ip:{ip_address}:{endpoint}")
        if config.user_based and user_id:
            keys.append(f"user:{user_id}:{endpoint}")

        # Unidentifiable caller: nothing to count against
        if not keys:
            return self._full_quota(config, now)

        results = await asyncio.gather(
            *(self._check_single_key(key, endpoint, config, now) for key in keys)
        )
        return min(results, key=lambda r: r.remaining)

    async def _check_single_key(
        self,
        key: str,
        endpoint: str,
        config: RateLimitConfig,
        now: datetime,
    ) -> RateLimitResult:
        try:
            record = await self.store.get_live_record(key, endpoint, now)

            if record is None:
                expires_at = now + timedelta(seconds=config.window)
                await self.store.create_record(
                    RateLimitRecord(
                        key=key,
                        endpoint=endpoint,
                        count=1,
                        first_request_at=now,
                        last_request_at=now,
                        expires_at=expires_at,
                    )
                )
                return RateLimitResult(
                    allowed=True,
                    limit=config.limit,
                    remaining=config.limit - 1,
                    reset=int(expires_at.timestamp()),
                )

            reset = int(record.expires_at.timestamp())

            if record.count >= config.limit:
                seconds_left = (record.expires_at - now).total_seconds()
                return RateLimitResult(
                    allowed=False,
                    limit=config.limit,
                    remaining=0,
                    reset=reset,
                    retry_after=max(1, math.ceil(seconds_left)),
                )

            await self.store.increment(record, now)
            return RateLimitResult(
                allowed=True,
                limit=config.limit,
                remaining=config.limit - (record.count + 1),
                reset=reset,
            )
        except StorageError as e:
            return self._on_storage_error(e, key, config, now)

    def _on_storage_error(
        self,
        error: StorageError,
        key: str,
        config: RateLimitConfig,
        now: datetime,
    ) -> RateLimitResult:
        record_decision("rate_limit", "error")
        logger.error(
            "rate_limit_storage_error",
            key=key,
            error=str(error),
            policy=self.failure_policy.value,
        )
        if self.failure_policy == FailurePolicy.FAIL_CLOSED:
            return RateLimitResult(
                allowed=False,
                limit=config.limit,
                remaining=0,
                reset=int(now.timestamp()) + config.window,
                retry_after=config.window,
            )
        return self._full_quota(config, now)

    def _full_quota(self, config: RateLimitConfig, now: datetime) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            limit=config.limit,
            remaining=config.limit,
            reset=int(now.timestamp()) + config.window,
        )

    async def _resolve_identity(self, request: Request) -> Tuple[Optional[str], bool]:
        """User id and admin flag for the bearer token, if any."""
        if self.auth_gate is None:
            return None, False

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return None, False

        auth = await self.auth_gate.verify_auth(request)
        if not auth.authenticated or auth.user is None:
            return None, False
        return auth.user.id, auth.user.is_admin

    async def limit_request(
        self,
        request: Request,
        endpoint: str,
        config: Union[str, RateLimitConfig] = "default",
    ) -> Optional[Response]:
        """
        Apply rate limiting to a request.

        Args:
            request: Incoming request
            endpoint: Logical route name
            config: Profile name (see DEFAULT_RATE_LIMITS) or custom config

        Returns:
            A 429 response if limited, None to continue
        """
        limit_config = resolve_rate_limit_config(config)
        ip_address = get_client_ip(request)
        user_id, is_admin = await self._resolve_identity(request)

        result = await self.check_rate_limit(
            endpoint,
            limit_config,
            ip_address=ip_address,
            user_id=user_id,
            is_admin=is_admin,
        )
        request.state.rate_limit = result

        if result.allowed:
            record_decision("rate_limit", "allowed")
            return None

        record_decision("rate_limit", "denied")
        logger.warning(
            "rate_limit_exceeded",
            endpoint=endpoint,
            ip=ip_address,
            user_id=user_id,
            limit=result.limit,
            retry_after=result.retry_after,
        )
        exc = RateLimitExceeded(
            limit_config.error_message or DEFAULT_ERROR_MESSAGE,
            retry_after=result.retry_after,
        )
        return error_response(exc, headers=get_rate_limit_headers(result))

    def add_rate_limit_headers(self, response: Response, result: RateLimitResult) -> Response:
        """Decorate a handler response with quota headers."""
        for key, value in get_rate_limit_headers(result).items():
            response.headers[key] = value
        return response

    async def cleanup_expired_records(self) -> int:
        """
        Delete counters whose window has passed.

        Idempotent and safe alongside live traffic.

        Returns:
            Number of records deleted (0 on storage error)
        """
        try:
            deleted = await self.store.delete_expired(self.clock())
        except StorageError as e:
            logger.error("rate_limit_cleanup_failed", error=str(e))
            return 0
        logger.info("rate_limit_cleanup_completed", deleted=deleted)
        return deleted
