"""
Web Application Firewall Module for EdgeGuard
=============================================
Rule catalog, inspection engine, log sanitization and attack log stores.
"""

from .models import (
    DEFAULT_WAF_CONFIG,
    AttackDetectionResult,
    Location,
    ProtectionLevel,
    WafConfig,
    WafLogEntry,
    WafRule,
    resolve_waf_config,
)
from .rules import ACCEPT_RULE, CONTENT_TYPE_RULE, CSRF_RULE, DEFAULT_WAF_RULES
from .sanitize import (
    REDACTED,
    flatten_object,
    sanitize_headers,
    sanitize_match,
    sanitize_object,
    sanitize_value,
)
from .log_store import InMemoryWafLogStore, SQLWafLogStore, WafLogStore
from .firewall import RequestFields, WebApplicationFirewall, extract_request_fields

__all__ = [
    # Models
    "DEFAULT_WAF_CONFIG",
    "AttackDetectionResult",
    "Location",
    "ProtectionLevel",
    "WafConfig",
    "WafLogEntry",
    "WafRule",
    "resolve_waf_config",
    # Rules
    "DEFAULT_WAF_RULES",
    "CSRF_RULE",
    "CONTENT_TYPE_RULE",
    "ACCEPT_RULE",
    # Sanitization
    "REDACTED",
    "flatten_object",
    "sanitize_headers",
    "sanitize_match",
    "sanitize_object",
    "sanitize_value",
    # Log stores
    "WafLogStore",
    "InMemoryWafLogStore",
    "SQLWafLogStore",
    # Engine
    "RequestFields",
    "WebApplicationFirewall",
    "extract_request_fields",
]
