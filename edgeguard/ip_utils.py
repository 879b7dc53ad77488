"""
IP Utility Functions
====================
Client address and user agent extraction from proxied requests.
"""

from typing import Iterable

from starlette.requests import Request

UNKNOWN_IP = "unknown"


def get_client_ip(request: Request) -> str:
    """
    Extract the real client IP.

    Order: CF-Connecting-IP, first X-Forwarded-For hop, X-Real-IP, socket peer.
    """
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host
    return UNKNOWN_IP


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent") or "unknown"


def is_trusted_ip(ip: str, trusted_ips: Iterable[str]) -> bool:
    """Exact-match check against a trusted address list."""
    if not ip or ip == UNKNOWN_IP:
        return False
    return ip in set(trusted_ips or ())
