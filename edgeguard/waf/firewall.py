"""
Web Application Firewall
========================
Signature-based request inspection with ordinal protection levels.

Rules are evaluated in catalog order and the first match wins. Only the
matching value (sanitized) is reported or logged, never the raw request.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qsl

from starlette.requests import Request
from starlette.responses import Response
import structlog

from ..errors import AttackDetected, StorageError, error_response
from ..ip_utils import get_client_ip, get_user_agent, is_trusted_ip
from ..metrics import record_decision, record_detection
from .log_store import WafLogStore
from .models import (
    AttackDetectionResult,
    Location,
    ProtectionLevel,
    WafConfig,
    WafLogEntry,
    WafRule,
    resolve_waf_config,
)
from .rules import (
    ACCEPT_RULE,
    ALLOWED_CONTENT_TYPES,
    CONTENT_TYPE_RULE,
    CSRF_RULE,
    DEFAULT_WAF_RULES,
    SAFE_METHODS,
)
from .sanitize import (
    flatten_object,
    sanitize_headers,
    sanitize_match,
    sanitize_object,
    sanitize_value,
)

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RequestFields:
    """The parts of a request the WAF inspects."""
    method: str
    path: str
    ip_address: str
    user_agent: str
    query: List[Tuple[str, str]] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, str] = field(default_factory=dict)

    def values_for(self, location: Location, config: WafConfig) -> Iterable[Tuple[str, str]]:
        """(key, value) pairs at a location, honouring the config's validate toggles."""
        if location == Location.QUERY:
            return self.query if config.validate_params else ()
        if location == Location.HEADERS:
            return self.headers.items() if config.validate_headers else ()
        if location == Location.BODY:
            return self.body.items()
        if location == Location.PATH:
            return (("path", self.path),)
        return ()


async def _read_body(request: Request) -> Dict[str, str]:
    content_type = request.headers.get("content-type", "").lower()
    try:
        if "application/json" in content_type:
            raw = await request.body()
            if not raw:
                return {}
            data = json.loads(raw)
            return flatten_object(data if isinstance(data, dict) else {"body": data})

        if "application/x-www-form-urlencoded" in content_type:
            raw = await request.body()
            form: Dict[str, List[str]] = {}
            for key, value in parse_qsl(raw.decode("utf-8"), keep_blank_values=True):
                form.setdefault(key, []).append(value)
            return flatten_object({k: v[0] if len(v) == 1 else v for k, v in form.items()})
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        logger.warning("waf_body_parse_failed", content_type=content_type, error=str(e))
    return {}


async def extract_request_fields(request: Request, config: WafConfig) -> RequestFields:
    """
    Collect query, headers, path and (when enabled) the parsed body.

    The body is read through ``request.body()``, which Starlette caches, so
    the handler can still read it afterwards. Unparseable bodies count as empty.
    """
    body: Dict[str, str] = {}
    if config.validate_body and request.method not in ("GET", "HEAD"):
        body = await _read_body(request)

    return RequestFields(
        method=request.method,
        path=request.url.path,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        query=request.query_params.multi_items(),
        headers={key.lower(): value for key, value in request.headers.items()},
        body=body,
    )


class WebApplicationFirewall:
    """
    Request inspection engine.

    Usage:
        waf = WebApplicationFirewall(SQLWafLogStore(database))
        blocked = await waf.protect(request, ProtectionLevel.HIGH)
        if blocked:
            return blocked
    """

    def __init__(
        self,
        log_store: WafLogStore,
        custom_rules: Sequence[WafRule] = (),
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            log_store: Where detections are persisted
            custom_rules: Extra rules evaluated after the default catalog
            clock: Returns the current UTC time
        """
        self.log_store = log_store
        self.rules: List[WafRule] = [*DEFAULT_WAF_RULES, *custom_rules]
        self.clock = clock

    async def check_request(
        self,
        request: Request,
        config: Union[WafConfig, ProtectionLevel, str] = ProtectionLevel.MEDIUM,
        user_id: Optional[str] = None,
    ) -> AttackDetectionResult:
        """
        Inspect a request.

        Args:
            request: Incoming request
            config: WafConfig, or a protection level for the default config
            user_id: Caller id, recorded in the log if known

        Returns:
            The first detection, or ``detected=False``
        """
        config = resolve_waf_config(config)
        ip_address = get_client_ip(request)
        user_agent = get_user_agent(request)

        if is_trusted_ip(ip_address, config.trusted_ips) or any(
            trusted and trusted in user_agent for trusted in config.trusted_user_agents
        ):
            return AttackDetectionResult(detected=False)

        fields = await extract_request_fields(request, config)
        result = self._match_rules(fields, config) or self._check_structure(fields, config)
        if result is None:
            return AttackDetectionResult(detected=False)

        await self._on_detection(request, fields, config, result, user_id)
        return result

    def _match_rules(self, fields: RequestFields, config: WafConfig) -> Optional[AttackDetectionResult]:
        level = config.protection_level
        for rule in [*self.rules, *config.custom_rules]:
            if not rule.is_active(level):
                continue
            for location in rule.locations:
                for key, value in fields.values_for(location, config):
                    if isinstance(value, str) and rule.matches(value):
                        return AttackDetectionResult(
                            detected=True,
                            rule=rule,
                            location=f"{location.value}:{key}",
                            value=sanitize_match(location.value, key, value),
                        )
        return None

    def _check_structure(self, fields: RequestFields, config: WafConfig) -> Optional[AttackDetectionResult]:
        """Header-shape checks applied at high and maximum levels."""
        level = config.protection_level
        if level.rank < ProtectionLevel.HIGH.rank:
            return None

        if fields.method not in SAFE_METHODS:
            if not (fields.headers.get("x-csrf-token") or fields.headers.get("x-xsrf-token")):
                return AttackDetectionResult(
                    detected=True, rule=CSRF_RULE, location="headers:x-csrf-token", value="missing"
                )

            content_type = fields.headers.get("content-type", "").lower()
            if not any(allowed in content_type for allowed in ALLOWED_CONTENT_TYPES):
                return AttackDetectionResult(
                    detected=True,
                    rule=CONTENT_TYPE_RULE,
                    location="headers:content-type",
                    value=sanitize_value(content_type) or "missing",
                )

        if level == ProtectionLevel.MAXIMUM and not fields.headers.get("accept"):
            return AttackDetectionResult(
                detected=True, rule=ACCEPT_RULE, location="headers:accept", value="missing"
            )
        return None

    async def _on_detection(
        self,
        request: Request,
        fields: RequestFields,
        config: WafConfig,
        result: AttackDetectionResult,
        user_id: Optional[str],
    ) -> None:
        rule = result.rule
        action = "block" if config.block_mode and rule.block else "log"

        record_detection(rule.id, rule.category, action)
        logger.warning(
            "waf_attack_detected",
            rule_id=rule.id,
            category=rule.category,
            location=result.location,
            value=result.value,
            action=action,
            ip=fields.ip_address,
            path=fields.path,
        )

        if not config.enable_logging:
            return

        entry = WafLogEntry(
            request_id=getattr(request.state, "request_id", None) or str(uuid.uuid4()),
            timestamp=self.clock(),
            ip_address=fields.ip_address,
            user_id=user_id,
            method=fields.method,
            path=fields.path,
            user_agent=fields.user_agent,
            attack_type=rule.category,
            rule_id=rule.id,
            rule_name=rule.name,
            location=result.location,
            value=result.value,
            action=action,
            protection_level=config.protection_level.value,
            severity=rule.severity,
            headers=sanitize_headers(fields.headers),
            params=sanitize_object(dict(fields.query)),
        )
        try:
            await self.log_store.insert(entry)
        except StorageError as e:
            logger.error("waf_log_write_failed", rule_id=rule.id, error=str(e))

    async def protect(
        self,
        request: Request,
        config: Union[WafConfig, ProtectionLevel, str] = ProtectionLevel.MEDIUM,
        user_id: Optional[str] = None,
    ) -> Optional[Response]:
        """
        Block the request if it matches a blocking rule in block mode.

        Returns:
            A 403 response if blocked, None to continue
        """
        config = resolve_waf_config(config)
        result = await self.check_request(request, config, user_id)

        if result.detected and result.rule.block and config.block_mode:
            record_decision("waf", "denied")
            return error_response(AttackDetected(result.rule.id))

        record_decision("waf", "allowed")
        return None

    async def cleanup_old_logs(self, days_to_keep: int = 30) -> int:
        """
        Delete log entries older than ``days_to_keep`` days.

        Returns:
            Number of entries deleted (0 on storage error)
        """
        cutoff = self.clock() - timedelta(days=days_to_keep)
        try:
            deleted = await self.log_store.delete_older_than(cutoff)
        except StorageError as e:
            logger.error("waf_log_cleanup_failed", error=str(e))
            return 0
        logger.info("waf_log_cleanup_completed", deleted=deleted, days_to_keep=days_to_keep)
        return deleted
