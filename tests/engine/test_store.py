"""Tests for the per-user pattern store (access_anomaly.engine.store)."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from access_anomaly.engine import AccessPatternStore
from ..conftest import AFTERNOON, make_signals


def make_store(window: float = 60.0, max_tracked: int = 10_000) -> AccessPatternStore:
    return AccessPatternStore(rate_window_seconds=window, max_tracked_requests_per_ip=max_tracked)


class TestRecordAccess:
    def test_first_access_creates_pattern(self):
        store = make_store()
        pattern = store.record_access("user-1", make_signals())
        assert pattern.user_id == "user-1"
        assert pattern.ips == {"192.168.1.1"}
        assert pattern.user_agents == {"Mozilla/5.0"}
        assert pattern.locations == {"US"}
        assert pattern.request_count("192.168.1.1") == 1
        assert pattern.first_seen_at == pattern.last_seen_at == AFTERNOON

    def test_sets_merge_distinct_values(self):
        store = make_store()
        store.record_access("user-1", make_signals(ip="10.0.0.1", location="US"))
        store.record_access("user-1", make_signals(ip="10.0.0.2", location="CA"))
        pattern = store.record_access("user-1", make_signals(ip="10.0.0.1", location="US"))
        assert pattern.ips == {"10.0.0.1", "10.0.0.2"}
        assert pattern.locations == {"US", "CA"}
        assert pattern.request_count("10.0.0.1") == 2

    def test_old_timestamps_pruned(self):
        store = make_store()
        store.record_access("user-1", make_signals(timestamp=AFTERNOON - 70))
        pattern = store.record_access("user-1", make_signals(timestamp=AFTERNOON))
        assert list(pattern.request_timestamps["192.168.1.1"]) == [AFTERNOON]

    def test_recent_timestamps_retained(self):
        store = make_store()
        for i in range(3):
            pattern = store.record_access("user-1", make_signals(timestamp=AFTERNOON + i * 10))
        assert pattern.request_count("192.168.1.1") == 3

    def test_empty_ip_buckets_dropped(self):
        store = make_store()
        store.record_access("user-1", make_signals(ip="10.0.0.1", timestamp=AFTERNOON - 120))
        pattern = store.record_access("user-1", make_signals(ip="10.0.0.2", timestamp=AFTERNOON))
        assert "10.0.0.1" not in pattern.request_timestamps
        # the IP itself is still part of the history
        assert "10.0.0.1" in pattern.ips

    def test_window_is_bounded(self):
        store = make_store(max_tracked=5)
        for _ in range(20):
            pattern = store.record_access("user-1", make_signals())
        assert pattern.request_count("192.168.1.1") == 5

    def test_late_timestamp_is_inserted_in_order(self):
        store = make_store()
        store.record_access("user-1", make_signals(timestamp=AFTERNOON))
        store.record_access("user-1", make_signals(timestamp=AFTERNOON - 70))
        pattern = store.record_access("user-1", make_signals(timestamp=AFTERNOON + 1))
        window = list(pattern.request_timestamps["192.168.1.1"])
        assert window == sorted(window)
        assert window == [AFTERNOON, AFTERNOON + 1]
        assert pattern.request_count("192.168.1.1") == 2

    def test_late_timestamp_into_full_window(self):
        store = make_store(max_tracked=3)
        for i in range(3):
            store.record_access("user-1", make_signals(timestamp=AFTERNOON + i))
        pattern = store.record_access("user-1", make_signals(timestamp=AFTERNOON + 0.5))
        assert list(pattern.request_timestamps["192.168.1.1"]) == [AFTERNOON + 0.5, AFTERNOON + 1, AFTERNOON + 2]

    def test_returned_snapshot_is_isolated(self):
        store = make_store()
        snapshot = store.record_access("user-1", make_signals(ip="10.0.0.1"))
        store.record_access("user-1", make_signals(ip="10.0.0.2"))
        assert snapshot.ips == {"10.0.0.1"}
        snapshot.ips.add("6.6.6.6")
        assert "6.6.6.6" not in store.get("user-1").ips


class TestGetAndClear:
    def test_get_unknown_returns_none(self):
        store = make_store()
        assert store.get("nobody") is None
        assert "nobody" not in store

    def test_get_does_not_create_lock(self):
        store = make_store()
        store.get("nobody")
        assert "nobody" not in store._locks

    def test_clear_removes_pattern(self):
        store = make_store()
        store.record_access("user-1", make_signals())
        store.clear("user-1")
        assert store.get("user-1") is None
        assert len(store) == 0

    def test_clear_is_idempotent(self):
        store = make_store()
        store.clear("never-seen")
        store.clear("never-seen")
        assert store.get("never-seen") is None

    def test_get_after_clear_leaves_no_lock(self):
        store = make_store()
        store.record_access("user-1", make_signals())
        store.clear("user-1")
        assert store.get("user-1") is None
        assert "user-1" not in store._locks

    def test_get_waiting_on_retired_lock_returns_none(self):
        store = make_store()
        store.record_access("user-1", make_signals())
        lock = store._locks["user-1"]
        result = {}

        lock.acquire()
        reader = threading.Thread(target=lambda: result.setdefault("pattern", store.get("user-1")))
        reader.start()
        time.sleep(0.05)
        # retire the pattern the way clear() does while the reader is blocked
        with store._registry_lock:
            store._patterns.pop("user-1")
            store._locks.pop("user-1")
        lock.release()
        reader.join(timeout=2)

        assert not reader.is_alive()
        assert result["pattern"] is None
        assert "user-1" not in store._locks

    def test_access_after_clear_starts_fresh(self):
        store = make_store()
        for i in range(6):
            store.record_access("user-1", make_signals(ip=f"10.0.0.{i}"))
        store.clear("user-1")
        pattern = store.record_access("user-1", make_signals(ip="10.0.1.1"))
        assert pattern.ips == {"10.0.1.1"}


class TestEvictStale:
    def test_idle_patterns_evicted(self):
        store = make_store()
        store.record_access("idle", make_signals(timestamp=AFTERNOON - 3600))
        store.record_access("active", make_signals(timestamp=AFTERNOON))
        evicted = store.evict_stale(now=AFTERNOON, max_idle_seconds=600)
        assert evicted == 1
        assert store.user_ids() == ["active"]

    def test_nothing_to_evict(self):
        store = make_store()
        store.record_access("active", make_signals(timestamp=AFTERNOON))
        assert store.evict_stale(now=AFTERNOON, max_idle_seconds=600) == 0
        assert "active" in store

    def test_held_lock_skips_eviction(self):
        store = make_store()
        store.record_access("busy", make_signals(timestamp=AFTERNOON - 3600))
        lock = store._locks["busy"]
        lock.acquire()
        try:
            assert store.evict_stale(now=AFTERNOON, max_idle_seconds=600) == 0
        finally:
            lock.release()
        assert "busy" in store

    def test_evicted_user_can_return(self):
        store = make_store()
        store.record_access("user-1", make_signals(timestamp=AFTERNOON - 3600))
        store.evict_stale(now=AFTERNOON, max_idle_seconds=600)
        pattern = store.record_access("user-1", make_signals(ip="10.0.0.9"))
        assert pattern.ips == {"10.0.0.9"}


class TestConcurrency:
    def test_concurrent_updates_for_one_user_are_not_lost(self):
        store = make_store()
        ips = [f"10.1.{i // 256}.{i % 256}" for i in range(200)]
        start = threading.Barrier(8)

        def hit(ip: str) -> None:
            store.record_access("shared", make_signals(ip=ip))

        def worker(chunk):
            start.wait()
            for ip in chunk:
                hit(ip)

        chunks = [ips[i::8] for i in range(8)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, chunks))

        pattern = store.get("shared")
        assert pattern.ips == set(ips)
        assert sum(len(w) for w in pattern.request_timestamps.values()) == 200

    def test_different_users_use_different_locks(self):
        store = make_store()
        store.record_access("a", make_signals())
        store.record_access("b", make_signals())
        assert store._locks["a"] is not store._locks["b"]
