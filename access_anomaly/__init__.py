"""
Access Anomaly Engine — public API.

Importing from ``access_anomaly`` gives access to all stable interfaces:

    from access_anomaly import AccessGuard, GuardConfig, RequestSignals
"""

from .audit import (
    AuditDispatcher,
    AuditSink,
    CircuitBreaker,
    HttpAuditSink,
    InMemoryAuditSink,
)
from .core import (
    AccessDecision,
    AccessPattern,
    Alert,
    AlertType,
    AuditRecord,
    BlockingPolicy,
    DetectorSet,
    GuardConfig,
    RequestSignals,
    Severity,
    extract_signals,
)
from .demo import main, run_main, run_simulation
from .engine import AccessGuard, AccessPatternStore

__all__ = [
    "AccessDecision",
    "AccessGuard",
    "AccessPattern",
    "AccessPatternStore",
    "Alert",
    "AlertType",
    "AuditDispatcher",
    "AuditRecord",
    "AuditSink",
    "BlockingPolicy",
    "CircuitBreaker",
    "DetectorSet",
    "GuardConfig",
    "HttpAuditSink",
    "InMemoryAuditSink",
    "RequestSignals",
    "Severity",
    "extract_signals",
    "main",
    "run_main",
    "run_simulation",
]
