from __future__ import annotations

import bisect
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..core.models import AccessPattern, RequestSignals, empty_window

logger = logging.getLogger(__name__)


class AccessPatternStore:
    """
    Process-local registry of per-user AccessPattern state.

    The only mutator of shared state. Each user has its own ``threading.Lock``
    so concurrent requests for one user serialise their read-modify-write while
    requests for different users never contend. ``_registry_lock`` is held only
    long enough to look up, create or retire a per-user lock, or to add and
    remove keys of ``_patterns``.

    Every read returns a deep copy, so callers see a consistent snapshot that
    later requests cannot change underneath them.
    """

    def __init__(
        self,
        rate_window_seconds: float = 60.0,
        max_tracked_requests_per_ip: int = 10_000,
    ) -> None:
        self._rate_window_seconds = rate_window_seconds
        self._max_tracked_requests = max_tracked_requests_per_ip
        self._patterns: Dict[str, AccessPattern] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        while True:
            with self._registry_lock:
                lock = self._locks.setdefault(user_id, threading.Lock())
            lock.acquire()
            # clear() or eviction may have retired this lock while we waited on it.
            with self._registry_lock:
                current = self._locks.get(user_id)
            if current is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def record_access(self, user_id: str, signals: RequestSignals) -> AccessPattern:
        """
        Merge one request into the user's pattern and return a post-merge snapshot.

        1. Create the pattern on first sight of ``user_id``.
        2. Add the IP, user agent and location to their sets.
        3. Append the request time to the IP's rate window.
        4. Prune every IP window of entries older than the rate window.
        """
        now = signals.timestamp
        with self._user_lock(user_id):
            pattern = self._patterns.get(user_id)
            if pattern is None:
                pattern = AccessPattern(user_id=user_id, first_seen_at=now, last_seen_at=now)
                with self._registry_lock:
                    self._patterns[user_id] = pattern

            pattern.ips.add(signals.ip)
            pattern.user_agents.add(signals.user_agent)
            pattern.locations.add(signals.location)

            window = pattern.request_timestamps.get(signals.ip)
            if window is None:
                window = empty_window(self._max_tracked_requests)
                pattern.request_timestamps[signals.ip] = window
            if window and now < window[-1]:
                # Stamped before a request that took the lock first; keep the
                # window sorted so pruning from the left stays correct.
                if len(window) == window.maxlen:
                    window.popleft()
                bisect.insort(window, now)
            else:
                window.append(now)

            self._prune_windows(pattern, now)
            pattern.last_seen_at = max(pattern.last_seen_at, now)
            return pattern.model_copy(deep=True)

    def _prune_windows(self, pattern: AccessPattern, now: float) -> None:
        cutoff = now - self._rate_window_seconds
        for ip in list(pattern.request_timestamps):
            window = pattern.request_timestamps[ip]
            while window and window[0] < cutoff:
                window.popleft()
            if not window:
                del pattern.request_timestamps[ip]

    def clear(self, user_id: str) -> None:
        """Drop all state for ``user_id``. Idempotent."""
        with self._user_lock(user_id):
            with self._registry_lock:
                self._patterns.pop(user_id, None)
                self._locks.pop(user_id, None)

    def evict_stale(self, now: float, max_idle_seconds: float) -> int:
        """
        Remove patterns whose ``last_seen_at`` is older than ``now - max_idle_seconds``.

        Users whose lock is currently held are skipped; they are being updated
        and so are not stale. Returns the number of patterns evicted.
        """
        cutoff = now - max_idle_seconds
        with self._registry_lock:
            candidates = [
                uid for uid, pattern in self._patterns.items()
                if pattern.last_seen_at < cutoff
            ]
        evicted = 0
        for user_id in candidates:
            with self._registry_lock:
                lock = self._locks.get(user_id)
                if lock is None or not lock.acquire(blocking=False):
                    continue
                try:
                    pattern = self._patterns.get(user_id)
                    if pattern is not None and pattern.last_seen_at < cutoff:
                        del self._patterns[user_id]
                        del self._locks[user_id]
                        evicted += 1
                finally:
                    lock.release()
        if evicted:
            logger.info("Evicted %d stale access patterns", evicted)
        return evicted

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[AccessPattern]:
        """Snapshot of the user's pattern, or None. Never creates state, not even a lock."""
        while True:
            with self._registry_lock:
                lock = self._locks.get(user_id)
            if lock is None:
                return None
            with lock:
                with self._registry_lock:
                    if self._locks.get(user_id) is not lock:
                        # retired by clear() or eviction while we waited; look again
                        continue
                    pattern = self._patterns.get(user_id)
                return pattern.model_copy(deep=True) if pattern is not None else None

    def user_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._patterns)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)
