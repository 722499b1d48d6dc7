from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional, Set

from ..core.models import Alert, AuditRecord
from .circuit_breaker import CircuitBreaker
from .sink import AuditSink

logger = logging.getLogger(__name__)


class AuditDispatcher:
    """
    Fire-and-forget delivery of alerts to an AuditSink.

    Writes run on a private event loop in a daemon thread, so they outlive
    whatever loop (or plain worker thread) the caller detected from. A
    synchronous handler that wraps one call in ``asyncio.run`` still gets its
    alerts audited. ``submit`` is thread-safe and returns immediately.

    Each write is bounded by ``timeout_seconds``; at most ``max_pending``
    writes may be in flight and further alerts are dropped. The
    CircuitBreaker stops scheduling writes while the backend keeps failing.
    Failures are logged, never raised.
    """

    def __init__(
        self,
        sink: Optional[AuditSink],
        timeout_seconds: float = 5.0,
        max_pending: int = 1_000,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._sink = sink
        self._timeout_seconds = timeout_seconds
        self._max_pending = max_pending
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            threshold=5, cooldown_seconds=60.0
        )
        self._pending: Set[concurrent.futures.Future] = set()
        self._dropped = 0
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        # caller holds self._lock
        if self._loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=self._run_loop, args=(loop,), name="audit-dispatcher", daemon=True
            )
            thread.start()
            self._loop, self._thread = loop, thread
        return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def submit(self, alert: Alert) -> bool:
        """Schedule one audit write. Returns True when a write was scheduled."""
        if self._sink is None:
            return False
        if self._circuit_breaker.is_open:
            self._circuit_breaker.record_skipped()
            with self._lock:
                self._dropped += 1
            logger.debug("Audit circuit open; not recording %s for %s", alert.type.value, alert.user_id)
            return False

        with self._lock:
            if len(self._pending) >= self._max_pending:
                self._dropped += 1
                logger.warning(
                    "Audit backlog full (%d pending); dropping %s alert for %s",
                    len(self._pending),
                    alert.type.value,
                    alert.user_id,
                )
                return False
            loop = self._ensure_loop()
            future = asyncio.run_coroutine_threadsafe(
                self._write(AuditRecord.from_alert(alert)), loop
            )
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return True

    def _discard(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    async def _write(self, record: AuditRecord) -> None:
        try:
            await asyncio.wait_for(self._sink.write(record), timeout=self._timeout_seconds)
        except Exception as exc:
            self._circuit_breaker.record_failure(record.alert_type.value)
            logger.warning(
                "Failed to write %s audit record for %s: %r",
                record.alert_type.value,
                record.user_id,
                exc,
            )
            return
        self._circuit_breaker.record_success()

    # ------------------------------------------------------------------
    # Draining / shutdown
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait, without blocking the caller's loop, for every in-flight write."""
        with self._lock:
            futures = list(self._pending)
        if futures:
            await asyncio.gather(*(asyncio.wrap_future(f) for f in futures), return_exceptions=True)

    def drain_blocking(self, timeout: Optional[float] = None) -> None:
        """Thread-side counterpart of ``drain`` for synchronous callers."""
        with self._lock:
            futures = list(self._pending)
        if futures:
            concurrent.futures.wait(futures, timeout=timeout)

    def close(self, timeout: Optional[float] = None) -> None:
        """Drain pending writes and stop the background loop. A later submit restarts it."""
        self.drain_blocking(timeout)
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout)
