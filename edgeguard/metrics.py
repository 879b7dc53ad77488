"""
Security Metrics
================
Prometheus counters for security decisions.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest

EDGEGUARD_REGISTRY = CollectorRegistry()

SECURITY_DECISIONS = Counter(
    name="edgeguard_security_decisions_total",
    documentation="Security checks by outcome",
    labelnames=["check", "outcome"],
    registry=EDGEGUARD_REGISTRY,
)

WAF_DETECTIONS = Counter(
    name="edgeguard_waf_detections_total",
    documentation="WAF rule matches by rule and action taken",
    labelnames=["rule_id", "category", "action"],
    registry=EDGEGUARD_REGISTRY,
)


def record_decision(check: str, outcome: str) -> None:
    """
    Count one security decision.

    Args:
        check: "security", "rate_limit", "waf", "auth" or "role"
        outcome: "allowed", "denied", "bypassed", "anonymous" or "error"
    """
    SECURITY_DECISIONS.labels(check=check, outcome=outcome).inc()


def record_detection(rule_id: str, category: str, action: str) -> None:
    WAF_DETECTIONS.labels(rule_id=rule_id, category=category, action=action).inc()


def get_metrics_text() -> bytes:
    """Render EdgeGuard metrics in Prometheus text format."""
    return generate_latest(EDGEGUARD_REGISTRY)
