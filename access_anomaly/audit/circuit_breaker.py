from __future__ import annotations

import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Tracks consecutive audit-sink failures and opens after ``threshold`` of them,
    suspending audit writes for ``cooldown_seconds``.

    A slow or broken audit backend therefore costs at most ``threshold``
    timed-out writes before the dispatcher stops scheduling new ones. While
    open, every alert that is not audited is counted in ``skipped_count`` so
    the gap in the audit trail is measurable. The breaker closes again on its
    own once the cooldown has elapsed, reporting how many alerts were skipped.

    Failures are recorded from the dispatcher's loop thread while request
    threads read ``is_open``, so state changes happen under a lock.
    """

    def __init__(self, threshold: int, cooldown_seconds: float) -> None:
        self._threshold = threshold
        self._cooldown_seconds = cooldown_seconds
        self._consecutive_failures: int = 0
        self._open_at: Optional[float] = None
        self._skipped: int = 0
        self._skipped_this_trip: int = 0
        self._tripped_by: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        """
        True while audit writes should be skipped.

        Reading this after the cooldown has elapsed closes the breaker.
        """
        with self._lock:
            if self._open_at is None:
                return False
            if time.time() - self._open_at < self._cooldown_seconds:
                return True
            skipped = self._skipped_this_trip
            self._open_at = None
            self._consecutive_failures = 0
            self._skipped_this_trip = 0
            self._tripped_by = None
        logger.info("Audit circuit closed; %d alerts were not audited while open", skipped)
        return False

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def open_at(self) -> Optional[float]:
        return self._open_at

    @property
    def skipped_count(self) -> int:
        """Alerts left unaudited because the circuit was open, over the breaker's lifetime."""
        return self._skipped

    @property
    def tripped_by(self) -> Optional[str]:
        """Alert type whose failed write opened the circuit, while it is open."""
        return self._tripped_by

    def record_failure(self, alert_type: Optional[str] = None) -> None:
        with self._lock:
            self._consecutive_failures += 1
            if self._consecutive_failures < self._threshold or self._open_at is not None:
                return
            self._open_at = time.time()
            self._tripped_by = alert_type
            failures = self._consecutive_failures
        logger.error(
            "Audit circuit opened after %d consecutive failures (last: %s alert); "
            "suspending audit writes for %.0fs",
            failures,
            alert_type or "unknown",
            self._cooldown_seconds,
        )

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0

    def record_skipped(self) -> None:
        with self._lock:
            self._skipped += 1
            self._skipped_this_trip += 1
