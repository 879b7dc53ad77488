"""
Maintenance
===========
Periodic cleanup of expired rate limit counters and old WAF log entries.

Safe to run alongside live traffic. Schedule it out of band (cron, a
Kubernetes CronJob, a task queue beat):

    python -m edgeguard.maintenance
"""

import asyncio
from typing import Dict, Optional

import structlog

from .config import EdgeGuardSettings
from .log_setup import setup_logging
from .security import SecurityGuard, create_security_guard

logger = structlog.get_logger(__name__)


async def run_maintenance(
    guard: SecurityGuard,
    retention_days: Optional[int] = None,
) -> Dict[str, int]:
    """
    Run both cleanup sweeps once.

    Args:
        guard: The guard whose stores are swept
        retention_days: WAF log retention (default: the guard's setting)

    Returns:
        {"rate_limit_records": n, "waf_logs": m}
    """
    days = retention_days if retention_days is not None else guard.waf_log_retention_days

    rate_limit_records = await guard.rate_limiter.cleanup_expired_records()
    waf_logs = await guard.waf.cleanup_old_logs(days)

    counts = {"rate_limit_records": rate_limit_records, "waf_logs": waf_logs}
    logger.info("maintenance_completed", retention_days=days, **counts)
    return counts


async def main(settings: Optional[EdgeGuardSettings] = None) -> Dict[str, int]:
    settings = settings or EdgeGuardSettings()
    setup_logging(settings.service_name)

    guard = create_security_guard(settings)
    try:
        return await run_maintenance(guard)
    finally:
        await guard.aclose()


if __name__ == "__main__":
    asyncio.run(main())
