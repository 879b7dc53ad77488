"""
WAF Models
==========
Protection levels, rules, configuration, detection results and log entries.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Pattern, Tuple


class ProtectionLevel(str, Enum):
    """Ordinal WAF strictness. Stricter levels activate strictly more rules."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAXIMUM = "maximum"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    ProtectionLevel.LOW: 1,
    ProtectionLevel.MEDIUM: 2,
    ProtectionLevel.HIGH: 3,
    ProtectionLevel.MAXIMUM: 4,
}


class Location(str, Enum):
    """Request locations a rule can inspect."""
    QUERY = "query"
    BODY = "body"
    HEADERS = "headers"
    PATH = "path"


@dataclass(frozen=True)
class WafRule:
    """A signature: pattern plus where to look and what to do on a match."""
    id: str
    name: str
    description: str
    pattern: Optional[Pattern[str]]  # None for structural rules
    locations: Tuple[Location, ...]
    min_level: ProtectionLevel
    category: str
    severity: str  # "low" | "medium" | "high" | "critical"
    block: bool = True

    def is_active(self, level: ProtectionLevel) -> bool:
        return self.min_level.rank <= level.rank

    def matches(self, value: str) -> bool:
        return self.pattern is not None and bool(self.pattern.search(value))


@dataclass(frozen=True)
class WafConfig:
    """Per-profile WAF settings."""
    protection_level: ProtectionLevel
    block_mode: bool = True
    enable_logging: bool = True
    validate_params: bool = True
    validate_headers: bool = True
    validate_body: bool = True
    trusted_ips: Tuple[str, ...] = ()
    trusted_user_agents: Tuple[str, ...] = ()
    custom_rules: Tuple[WafRule, ...] = ()


DEFAULT_WAF_CONFIG: Dict[ProtectionLevel, WafConfig] = {
    ProtectionLevel.LOW: WafConfig(
        protection_level=ProtectionLevel.LOW,
        validate_headers=False,
        validate_body=False,
    ),
    ProtectionLevel.MEDIUM: WafConfig(protection_level=ProtectionLevel.MEDIUM),
    ProtectionLevel.HIGH: WafConfig(protection_level=ProtectionLevel.HIGH),
    ProtectionLevel.MAXIMUM: WafConfig(protection_level=ProtectionLevel.MAXIMUM),
}


def resolve_waf_config(config) -> WafConfig:
    """Accept a WafConfig, a ProtectionLevel or a level name."""
    if isinstance(config, WafConfig):
        return config
    return DEFAULT_WAF_CONFIG[ProtectionLevel(config)]


@dataclass
class AttackDetectionResult:
    """Outcome of one WAF check. ``value`` is already sanitized."""
    detected: bool
    rule: Optional[WafRule] = None
    location: Optional[str] = None
    value: Optional[str] = None


@dataclass
class WafLogEntry:
    """Audit row for a detected attack. Inserted once, never updated."""
    request_id: str
    timestamp: Any  # datetime
    ip_address: str
    method: str
    path: str
    attack_type: str
    rule_id: str
    rule_name: str
    location: str
    value: str
    action: str  # "block" | "log"
    protection_level: str
    severity: str
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
