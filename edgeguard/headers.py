"""
Security and CORS Headers
=========================
Header policy shared by denial responses and handler responses.

CORS headers go on first (handler-set values win over them), security
headers go on last (they override whatever the handler set).
"""

from typing import Dict, Iterable, Optional

from starlette.responses import Response

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, x-csrf-token, x-xsrf-token"
    ),
    "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
}

DEFAULT_SECURITY_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self'; object-src 'none'; upgrade-insecure-requests;"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": (
        "accelerometer=(), camera=(), geolocation=(), gyroscope=(), "
        "magnetometer=(), microphone=(), payment=(), usb=()"
    ),
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
}


def cors_headers(
    origins: Optional[Iterable[str]] = None,
    request_origin: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build CORS headers for a set of allowed origins.

    A wildcard (or no list) allows any origin. Otherwise the request origin
    is echoed back when allowed, and the first configured origin otherwise.
    """
    allowed = list(origins or ["*"])
    headers = dict(CORS_HEADERS)

    if "*" not in allowed:
        if request_origin and request_origin in allowed:
            headers["Access-Control-Allow-Origin"] = request_origin
        else:
            headers["Access-Control-Allow-Origin"] = allowed[0]
        headers["Vary"] = "Origin"

    return headers


def add_cors_headers(response: Response, cors: Optional[Dict[str, str]] = None) -> Response:
    """Add CORS headers without overriding ones the response already carries."""
    for key, value in (cors or CORS_HEADERS).items():
        if key not in response.headers:
            response.headers[key] = value
    return response


def add_security_headers(
    response: Response,
    custom_headers: Optional[Dict[str, str]] = None,
) -> Response:
    """Set the default security headers, then any per-profile overrides."""
    for key, value in {**DEFAULT_SECURITY_HEADERS, **(custom_headers or {})}.items():
        response.headers[key] = value
    return response


def add_cors_and_security_headers(
    response: Response,
    config,
    cors: Optional[Dict[str, str]] = None,
) -> Response:
    """
    Apply CORS headers, then security headers unless the profile disables them.

    Args:
        response: Response to decorate in place
        config: SecurityConfig (reads ``security_headers`` and ``custom_headers``)
        cors: CORS headers to use instead of the wildcard defaults
    """
    add_cors_headers(response, cors)
    if config.security_headers:
        add_security_headers(response, config.custom_headers)
    return response


def preflight_response(cors: Optional[Dict[str, str]] = None) -> Response:
    """204 answer to an OPTIONS preflight: CORS headers only, no body."""
    return Response(status_code=204, headers=dict(cors or CORS_HEADERS))
