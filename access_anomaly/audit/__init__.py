"""Audit: sinks, fire-and-forget dispatch and the audit circuit breaker."""

from .circuit_breaker import CircuitBreaker
from .dispatcher import AuditDispatcher
from .sink import AuditSink, HttpAuditSink, InMemoryAuditSink

__all__ = [
    "AuditDispatcher",
    "AuditSink",
    "CircuitBreaker",
    "HttpAuditSink",
    "InMemoryAuditSink",
]
