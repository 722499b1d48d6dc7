"""Core domain: models, signal extraction, detectors and blocking policy."""

from .detectors import (
    Detector,
    DetectorSet,
    ExcessiveRequestsDetector,
    MultipleIPsDetector,
    RapidLocationChangeDetector,
    SuspiciousUserAgentDetector,
    UnusualTimeDetector,
)
from .models import (
    UNKNOWN,
    AccessDecision,
    AccessPattern,
    Alert,
    AlertType,
    AuditRecord,
    GuardConfig,
    RequestSignals,
    Severity,
)
from .policy import BlockingPolicy
from .signals import extract_signals, first_forwarded_ip

__all__ = [
    "UNKNOWN",
    "AccessDecision",
    "AccessPattern",
    "Alert",
    "AlertType",
    "AuditRecord",
    "BlockingPolicy",
    "Detector",
    "DetectorSet",
    "ExcessiveRequestsDetector",
    "GuardConfig",
    "MultipleIPsDetector",
    "RapidLocationChangeDetector",
    "RequestSignals",
    "Severity",
    "SuspiciousUserAgentDetector",
    "UnusualTimeDetector",
    "extract_signals",
    "first_forwarded_ip",
]
