from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Mapping, Optional

from ..audit import AuditDispatcher, AuditSink, CircuitBreaker
from ..core.detectors import DetectorSet
from ..core.models import AccessDecision, AccessPattern, Alert, GuardConfig, RequestSignals
from ..core.policy import BlockingPolicy
from ..core.signals import HeaderValue, extract_signals
from .store import AccessPatternStore

logger = logging.getLogger(__name__)


class AccessGuard:
    """
    Orchestrator: wires AccessPatternStore, DetectorSet, BlockingPolicy and
    AuditDispatcher together behind the per-request detection API.

    Responsibilities
    ----------------
    1. Merge the request's signals into the user's AccessPattern.
    2. Run every detector against the post-merge snapshot.
    3. Hand each alert to the AuditDispatcher without waiting for the write.
    4. Reduce the alerts to an allow/block verdict.
    5. Optionally evict idle patterns every ``config.eviction_interval_seconds``.

    Fail-open
    ---------
    No public coroutine raises. If state tracking itself fails the call
    yields no alerts and the request is allowed; the error is logged.
    """

    def __init__(
        self,
        config: GuardConfig = GuardConfig(),
        audit_sink: Optional[AuditSink] = None,
        store: Optional[AccessPatternStore] = None,
        detectors: Optional[DetectorSet] = None,
        policy: Optional[BlockingPolicy] = None,
    ) -> None:
        self._config = config

        # Composed components, each independently testable
        self._store = store or AccessPatternStore(
            rate_window_seconds=config.rate_window_seconds,
            max_tracked_requests_per_ip=config.max_tracked_requests_per_ip,
        )
        self._detectors = detectors or DetectorSet.from_config(config)
        self._policy = policy or BlockingPolicy(
            block_severity=config.block_severity,
            high_alerts_to_block=config.high_alerts_to_block,
        )
        self._audit = AuditDispatcher(
            sink=audit_sink,
            timeout_seconds=config.audit_timeout_seconds,
            max_pending=config.max_pending_audit_writes,
            circuit_breaker=CircuitBreaker(
                threshold=config.audit_circuit_breaker_threshold,
                cooldown_seconds=config.audit_circuit_breaker_cooldown_seconds,
            ),
        )

        self._eviction_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def config(self) -> GuardConfig:
        return self._config

    @property
    def store(self) -> AccessPatternStore:
        return self._store

    @property
    def audit(self) -> AuditDispatcher:
        return self._audit

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the idle-pattern eviction loop when expiry is configured."""
        self._running = True
        if self._config.stale_pattern_seconds is not None:
            self._eviction_task = asyncio.create_task(self._eviction_loop())

    async def stop(self) -> None:
        """Cancel the eviction loop, wait for in-flight audit writes and stop the audit thread."""
        self._running = False
        if self._eviction_task:
            self._eviction_task.cancel()
            try:
                await self._eviction_task
            except asyncio.CancelledError:
                pass
            self._eviction_task = None
        await self._audit.drain()
        self._audit.close()

    def close(self, timeout: Optional[float] = None) -> None:
        """Shutdown for threaded servers: flush audit writes and stop the audit thread."""
        self._audit.close(timeout)

    async def drain_audit(self) -> None:
        await self._audit.drain()

    def drain_audit_blocking(self, timeout: Optional[float] = None) -> None:
        self._audit.drain_blocking(timeout)

    async def _eviction_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.eviction_interval_seconds)
            self.evict_stale_patterns()

    # ------------------------------------------------------------------
    # Detection
    #
    # The *_sync methods are the implementation and are safe to call from
    # any worker thread; the coroutines wrap them for async handlers. Audit
    # writes run on the dispatcher's own loop in both cases.
    # ------------------------------------------------------------------

    def detect_anomalies_sync(self, signals: RequestSignals, user_id: str) -> List[Alert]:
        """
        Record the request, run every detector and dispatch audit writes.

        Returns the alerts for this call only. Never raises.
        """
        try:
            pattern = self._store.record_access(user_id, signals)
        except Exception:
            logger.exception("Failed to record access for user %s; allowing", user_id)
            return []

        alerts = self._detectors.evaluate(pattern, signals)

        for alert in alerts:
            try:
                self._audit.submit(alert)
            except Exception:
                logger.exception("Failed to dispatch %s audit record", alert.type.value)
        return alerts

    def check_and_alert_anomalies_sync(
        self, signals: RequestSignals, user_id: str
    ) -> AccessDecision:
        """Detect anomalies and apply the blocking policy to this call's alerts."""
        alerts = self.detect_anomalies_sync(signals, user_id)
        try:
            allowed = self._policy.decide(alerts)
        except Exception:
            logger.exception("Blocking policy failed for user %s; allowing", user_id)
            allowed = True
        if not allowed:
            logger.warning(
                "Blocking access for user %s due to anomalies: %s",
                user_id,
                ", ".join(f"{a.type.value}/{a.severity.value}" for a in alerts),
            )
        return AccessDecision(allowed=allowed, alerts=alerts)

    def check_request_sync(
        self,
        headers: Mapping[str, HeaderValue],
        user_id: str,
        remote_addr: Optional[str] = None,
        now: Optional[float] = None,
    ) -> AccessDecision:
        """Header-level entry point for request handlers."""
        try:
            signals = extract_signals(headers, remote_addr=remote_addr, now=now, config=self._config)
        except Exception:
            logger.exception("Could not read request signals for user %s; allowing", user_id)
            return AccessDecision(allowed=True, alerts=[])
        return self.check_and_alert_anomalies_sync(signals, user_id)

    async def detect_anomalies(self, signals: RequestSignals, user_id: str) -> List[Alert]:
        return self.detect_anomalies_sync(signals, user_id)

    async def check_and_alert_anomalies(
        self, signals: RequestSignals, user_id: str
    ) -> AccessDecision:
        return self.check_and_alert_anomalies_sync(signals, user_id)

    async def check_request(
        self,
        headers: Mapping[str, HeaderValue],
        user_id: str,
        remote_addr: Optional[str] = None,
        now: Optional[float] = None,
    ) -> AccessDecision:
        return self.check_request_sync(headers, user_id, remote_addr=remote_addr, now=now)

    # ------------------------------------------------------------------
    # Administration / introspection
    # ------------------------------------------------------------------

    def get_user_access_pattern(self, user_id: str) -> Optional[AccessPattern]:
        try:
            return self._store.get(user_id)
        except Exception:
            logger.exception("Failed to read access pattern for user %s", user_id)
            return None

    def clear_user_pattern(self, user_id: str) -> None:
        """Reset a user, e.g. after a confirmed false positive or re-verification."""
        try:
            self._store.clear(user_id)
        except Exception:
            logger.exception("Failed to clear access pattern for user %s", user_id)

    def evict_stale_patterns(self, now: Optional[float] = None) -> int:
        """Drop patterns idle longer than ``stale_pattern_seconds``; no-op when unset."""
        if self._config.stale_pattern_seconds is None:
            return 0
        try:
            return self._store.evict_stale(
                now if now is not None else time.time(),
                self._config.stale_pattern_seconds,
            )
        except Exception:
            logger.exception("Stale pattern eviction failed")
            return 0
