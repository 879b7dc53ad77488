"""
Log Sanitization
================
Make attacker-controlled values safe to persist and log.

Values are truncated and stripped of line breaks (no log injection), and
anything that looks like a credential is replaced with ``[REDACTED]``.
"""

import json
from typing import Any, Dict, List, Mapping, Tuple

REDACTED = "[REDACTED]"
MAX_VALUE_LENGTH = 200

SENSITIVE_HEADERS = frozenset({
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "api-key",
    "password",
    "token",
    "secret",
    "jwt",
    "session",
})

# Substring match against lowercased keys
SENSITIVE_FIELDS = (
    "password",
    "token",
    "api_key",
    "apikey",
    "secret",
    "credential",
    "auth",
    "key",
    "jwt",
    "session",
)


def sanitize_value(value: str) -> str:
    """Truncate to 200 characters (plus ``...``) and turn CR, LF and tab into spaces."""
    if not value:
        return ""
    if len(value) > MAX_VALUE_LENGTH:
        value = value[:MAX_VALUE_LENGTH] + "..."
    return value.replace("\r", " ").replace("\n", " ").replace("\t", " ")


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Redact credential headers, sanitize the rest."""
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = REDACTED
        else:
            sanitized[key] = sanitize_value(value)
    return sanitized


def _is_sensitive_field(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def flatten_object(obj: Any, prefix: str = "") -> Dict[str, str]:
    """
    Flatten nested dicts and lists into ``a.b`` / ``a[0]`` keyed strings.

    None values are dropped; other scalars are rendered as JSON text
    (``true``, ``42``). Walks with an explicit stack, so nesting depth is
    bounded only by what the JSON parser accepted.
    """
    flattened: Dict[str, str] = {}
    if not isinstance(obj, dict):
        return flattened

    stack: List[Tuple[str, Any]] = [
        (f"{prefix}.{key}" if prefix else str(key), value)
        for key, value in reversed(list(obj.items()))
    ]
    while stack:
        key, value = stack.pop()
        if isinstance(value, dict):
            stack.extend(
                (f"{key}.{child}", item) for child, item in reversed(list(value.items()))
            )
        elif isinstance(value, list):
            stack.extend((f"{key}[{i}]", item) for i, item in reversed(list(enumerate(value))))
        elif value is not None:
            flattened[key] = _scalar_text(value)
    return flattened


def sanitize_match(location: str, key: str, value: str) -> str:
    """
    Sanitize the value a rule matched, redacting it when it sits under a
    credential header or a sensitive field name.
    """
    if location == "headers" and key.lower() in SENSITIVE_HEADERS:
        return REDACTED
    if _is_sensitive_field(key):
        return REDACTED
    return sanitize_value(value)


def sanitize_object(obj: Mapping[str, Any]) -> Dict[str, str]:
    """
    Sanitize a parameter mapping for logging.

    Keys containing a sensitive marker (``password``, ``token``, ``key``...)
    have their string values redacted. Nested values are flattened,
    sanitized recursively and stored as JSON text.
    """
    sanitized: Dict[str, str] = {}
    for key, value in obj.items():
        if isinstance(value, str):
            sanitized[key] = REDACTED if _is_sensitive_field(key) else sanitize_value(value)
        elif isinstance(value, (dict, list)):
            nested = flatten_object(value) if isinstance(value, dict) else flatten_object({key: value})
            sanitized[key] = json.dumps(sanitize_object(nested))
        else:
            sanitized[key] = _scalar_text(value)
    return sanitized
