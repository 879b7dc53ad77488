"""
WAF Rule Catalog
================
Default signatures, evaluated in order. First match wins.

The catalog is data: extending it never touches the evaluation engine.
Structural rules (CSRF token, Content-Type, Accept) have no pattern and are
checked by the engine after the catalog, at high and maximum levels only.
"""

import re
from typing import List

from .models import Location, ProtectionLevel, WafRule

Q, B, H, P = Location.QUERY, Location.BODY, Location.HEADERS, Location.PATH


def _rule(id, name, description, pattern, locations, min_level, category, severity, block=True):
    return WafRule(
        id=id,
        name=name,
        description=description,
        pattern=re.compile(pattern, re.IGNORECASE | re.DOTALL),
        locations=tuple(locations),
        min_level=min_level,
        category=category,
        severity=severity,
        block=block,
    )


DEFAULT_WAF_RULES: List[WafRule] = [
    # SQL Injection
    _rule(
        "sqli-001", "SQL Injection - Basic",
        "Quote followed by a SQL keyword",
        r"('|%27)\s*(or|and|union|select|insert|update|delete|drop|alter|truncate"
        r"|declare|exec|dbms_|sp_|xp_|sysobjects|syscolumns|information_schema)",
        (Q, B, P), ProtectionLevel.LOW, "Injection", "high",
    ),
    _rule(
        "sqli-002", "SQL Injection - Advanced",
        "Quote-or tautology, plain or percent-encoded",
        r"(%27|')(%6F|o|%4F)(%72|r|%52)",
        (Q, B, P), ProtectionLevel.MEDIUM, "Injection", "high",
    ),
    _rule(
        "sqli-003", "SQL Injection - Comments",
        "SQL comment sequences and stacked queries",
        r"/\*.*?\*/|--(\s|$)|;\s*(select|insert|update|delete|drop|alter|exec|union|shutdown)\b",
        (Q, B, P), ProtectionLevel.HIGH, "Injection", "medium",
    ),

    # Cross-Site Scripting
    _rule(
        "xss-001", "XSS - Basic Script Tags",
        "Inline script elements",
        r"<script[^>]*>.*?</script>",
        (Q, B, H), ProtectionLevel.LOW, "XSS", "high",
    ),
    _rule(
        "xss-002", "XSS - Event Handlers",
        "HTML event handler attributes",
        r"\bon[a-z]{3,}\s*=",
        (Q, B), ProtectionLevel.MEDIUM, "XSS", "high",
    ),
    _rule(
        "xss-003", "XSS - JavaScript URI",
        "Script-capable URI schemes",
        r"javascript:|vbscript:|livescript:|data:text/html",
        (Q, B, P), ProtectionLevel.MEDIUM, "XSS", "high",
    ),
    _rule(
        "xss-004", "XSS - Encoded Tags",
        "Any markup tag, plain or percent-encoded",
        r"(%3C|<)(%2F|/)*[a-z0-9%]+(%3E|>)",
        (Q, B), ProtectionLevel.HIGH, "XSS", "medium",
    ),

    # Path Traversal
    _rule(
        "path-001", "Path Traversal - Basic",
        "Parent directory references",
        r"\.\./",
        (Q, B, P), ProtectionLevel.LOW, "Path Traversal", "high",
    ),
    _rule(
        "path-002", "Path Traversal - Encoded",
        "Percent-encoded parent directory references",
        r"%2e%2e(/|%2f|%5c)",
        (Q, B, P), ProtectionLevel.MEDIUM, "Path Traversal", "high",
    ),
    _rule(
        "path-003", "Path Traversal - Windows",
        "Backslash parent directory references",
        r"\.\.\\",
        (Q, B, P), ProtectionLevel.MEDIUM, "Path Traversal", "high",
    ),

    # Command Injection
    _rule(
        "cmd-001", "Command Injection - Basic",
        "Shell separators and substitutions",
        r";|\||`|&&|\$\(|\$\{",
        (Q, B), ProtectionLevel.LOW, "Command Injection", "critical",
    ),
    _rule(
        "cmd-002", "Command Injection - Advanced",
        "Process execution functions",
        r"\b(system|exec|passthru|shell_exec|popen|proc_open|pcntl_exec)\s*\(",
        (Q, B), ProtectionLevel.MEDIUM, "Command Injection", "critical",
    ),

    # Server-Side Request Forgery
    _rule(
        "ssrf-001", "SSRF - Internal IP",
        "Loopback, private and link-local targets",
        r"\b(127\.0\.0\.1|localhost|10\.\d{1,3}\.\d{1,3}\.\d{1,3}"
        r"|172\.(1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3}|192\.168\.\d{1,3}\.\d{1,3}"
        r"|169\.254\.\d{1,3}\.\d{1,3})\b",
        (Q, B), ProtectionLevel.MEDIUM, "SSRF", "high",
    ),
    _rule(
        "ssrf-002", "SSRF - Protocol Handlers",
        "Non-HTTP URL schemes",
        r"\b(file|gopher|dict|ftp|ldap|tftp|ssh)://",
        (Q, B), ProtectionLevel.MEDIUM, "SSRF", "high",
    ),

    # HTTP Header Injection
    _rule(
        "header-001", "HTTP Header Injection",
        "CR/LF in header values, raw or percent-encoded",
        r"[\r\n]|%0d|%0a",
        (H,), ProtectionLevel.MEDIUM, "Header Injection", "medium",
    ),

    # Insecure Deserialization
    _rule(
        "deserial-001", "PHP Object Injection",
        "Serialized PHP object literals",
        r'O:\d+:"[^"]+":\d+:\{',
        (B,), ProtectionLevel.HIGH, "Insecure Deserialization", "high",
    ),

    # NoSQL Injection
    _rule(
        "nosql-001", "NoSQL Injection - MongoDB",
        "MongoDB query operators",
        r"\$(where|ne|gte?|lte?|regex|exists|elemMatch|all|n?in|or|and|not|nor)\b",
        (Q, B), ProtectionLevel.MEDIUM, "NoSQL Injection", "high",
    ),

    # XML External Entity
    _rule(
        "xxe-001", "XXE - DOCTYPE",
        "DOCTYPE with an external SYSTEM identifier",
        r"<!DOCTYPE[^>]*SYSTEM[^>]*>",
        (B,), ProtectionLevel.MEDIUM, "XXE", "high",
    ),
    _rule(
        "xxe-002", "XXE - Entity",
        "ENTITY with an external SYSTEM identifier",
        r"<!ENTITY[^>]*SYSTEM[^>]*>",
        (B,), ProtectionLevel.MEDIUM, "XXE", "high",
    ),
]


CSRF_RULE = WafRule(
    id="csrf-001",
    name="Missing CSRF Token",
    description="State-changing request without X-CSRF-Token or X-XSRF-Token",
    pattern=None,
    locations=(H,),
    min_level=ProtectionLevel.HIGH,
    category="CSRF",
    severity="medium",
    block=False,
)

CONTENT_TYPE_RULE = WafRule(
    id="content-001",
    name="Invalid Content-Type",
    description="State-changing request with a missing or unexpected Content-Type",
    pattern=None,
    locations=(H,),
    min_level=ProtectionLevel.HIGH,
    category="Content Validation",
    severity="low",
    block=False,
)

ACCEPT_RULE = WafRule(
    id="header-002",
    name="Missing Accept Header",
    description="Request without an Accept header",
    pattern=None,
    locations=(H,),
    min_level=ProtectionLevel.MAXIMUM,
    category="Header Validation",
    severity="low",
    block=True,
)

ALLOWED_CONTENT_TYPES = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
