"""
Shared pytest fixtures used across the modular test suite.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from access_anomaly.audit import InMemoryAuditSink
from access_anomaly.core.models import GuardConfig, RequestSignals
from access_anomaly.engine import AccessGuard

# Local 14:30, outside the unusual-hours range, so time never adds alerts by accident.
AFTERNOON = datetime(2024, 1, 15, 14, 30).timestamp()
THREE_AM = datetime(2024, 1, 15, 3, 30).timestamp()


def make_signals(
    ip: str = "192.168.1.1",
    user_agent: str = "Mozilla/5.0",
    location: str = "US",
    timestamp: Optional[float] = None,
) -> RequestSignals:
    return RequestSignals(
        ip=ip,
        user_agent=user_agent,
        location=location,
        timestamp=AFTERNOON if timestamp is None else timestamp,
    )


def make_failing_sink(message: str = "Database error") -> AsyncMock:
    """Return a mock AuditSink whose write() always raises."""
    sink = AsyncMock()
    sink.write = AsyncMock(side_effect=Exception(message))
    return sink


def make_guard(config: GuardConfig | None = None, audit_sink=None) -> AccessGuard:
    return AccessGuard(config=config or GuardConfig(), audit_sink=audit_sink)


@pytest.fixture
def config() -> GuardConfig:
    """Production thresholds; tests exercise the documented limits directly."""
    return GuardConfig()


@pytest.fixture
def sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def guard(config: GuardConfig, sink: InMemoryAuditSink) -> AccessGuard:
    return AccessGuard(config=config, audit_sink=sink)
