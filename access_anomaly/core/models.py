from __future__ import annotations

import time
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN = "unknown"


class AlertType(str, Enum):
    MULTIPLE_IPS = "MULTIPLE_IPS"
    SUSPICIOUS_USER_AGENT = "SUSPICIOUS_USER_AGENT"
    EXCESSIVE_REQUESTS = "EXCESSIVE_REQUESTS"
    RAPID_LOCATION_CHANGE = "RAPID_LOCATION_CHANGE"
    UNUSUAL_TIME = "UNUSUAL_TIME"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def _first_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


class RequestSignals(BaseModel):
    """
    Canonical per-request attributes consumed by the detectors.

    Blank or missing values collapse to ``"unknown"`` instead of failing, so
    set membership in an AccessPattern stays well-defined under malformed headers.
    """

    ip: str = UNKNOWN
    user_agent: str = UNKNOWN
    location: str = UNKNOWN
    timestamp: float = Field(default_factory=time.time)

    @field_validator("ip", "user_agent", mode="before")
    @classmethod
    def blank_becomes_unknown(cls, v: Any) -> str:
        v = _first_value(v)
        if v is None:
            return UNKNOWN
        v = str(v).strip()
        return v or UNKNOWN

    @field_validator("location", mode="before")
    @classmethod
    def location_is_upper_country_code(cls, v: Any) -> str:
        v = _first_value(v)
        if v is None:
            return UNKNOWN
        v = str(v).strip()
        # a literal "unknown" header must not become a second, "UNKNOWN", location
        if not v or v.lower() == UNKNOWN:
            return UNKNOWN
        return v.upper()


class AccessPattern(BaseModel):
    """
    Accumulated access history for one user.

    Only AccessPatternStore mutates instances; detectors receive deep copies.
    """

    user_id: str
    ips: Set[str] = Field(default_factory=set)
    user_agents: Set[str] = Field(default_factory=set)
    locations: Set[str] = Field(default_factory=set)
    # ip -> timestamps inside the trailing rate window
    request_timestamps: Dict[str, Deque[float]] = Field(default_factory=dict)
    first_seen_at: float = Field(default_factory=time.time)
    last_seen_at: float = Field(default_factory=time.time)

    def request_count(self, ip: str) -> int:
        return len(self.request_timestamps.get(ip, ()))


class Alert(BaseModel):
    """A typed, severity-tagged finding produced by one detector for one call."""

    model_config = ConfigDict(frozen=True)

    type: AlertType
    severity: Severity
    user_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class AccessDecision(BaseModel):
    """Verdict of the blocking policy plus the full evidence set."""

    allowed: bool
    alerts: List[Alert] = Field(default_factory=list)

    @property
    def highest_severity(self) -> Optional[Severity]:
        if not self.alerts:
            return None
        return max((a.severity for a in self.alerts), key=lambda s: s.rank)


class AuditRecord(BaseModel):
    """Shape of one audit-log write; one record per emitted Alert."""

    event_type: str = "ANOMALY_DETECTED"
    user_id: str
    alert_type: AlertType
    severity: Severity
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float

    @classmethod
    def from_alert(cls, alert: Alert) -> "AuditRecord":
        return cls(
            user_id=alert.user_id,
            alert_type=alert.type,
            severity=alert.severity,
            details=dict(alert.details),
            timestamp=alert.timestamp,
        )


class GuardConfig(BaseModel):
    """Dependency-injected thresholds and limits for AccessGuard."""

    # Detector thresholds
    rate_window_seconds: float = 60.0
    max_distinct_ips: int = 5
    critical_distinct_ips: int = 10
    max_user_agents: int = 3
    max_requests_per_window: int = 10
    critical_requests_per_window: int = 50
    max_locations: int = 2
    unusual_hour_start: int = Field(default=2, ge=0, le=23)
    unusual_hour_end: int = Field(default=5, ge=1, le=24)

    # Blocking policy
    block_severity: Severity = Severity.CRITICAL
    high_alerts_to_block: int = Field(default=2, ge=1)

    # Store limits
    max_tracked_requests_per_ip: int = Field(default=10_000, ge=1)
    stale_pattern_seconds: Optional[float] = None  # None = patterns never expire
    eviction_interval_seconds: float = 60.0

    # Audit dispatch
    audit_timeout_seconds: float = 5.0
    max_pending_audit_writes: int = 1_000
    audit_circuit_breaker_threshold: int = 5
    audit_circuit_breaker_cooldown_seconds: float = 60.0

    # Inbound header names (matched case-insensitively)
    forwarded_for_header: str = "x-forwarded-for"
    user_agent_header: str = "user-agent"
    country_header: str = "cf-ipcountry"


def empty_window(maxlen: int) -> Deque[float]:
    return deque(maxlen=maxlen)
