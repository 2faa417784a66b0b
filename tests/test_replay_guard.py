"""Tests for the in-process replay guard."""

from __future__ import annotations

import threading
import time

import pytest

from tipgate.errors import MalformedRequest, ReplayDetected
from tipgate.webhooks.idempotency import ReplayGuard


class TestGuard:

    def test_first_delivery_passes(self, replay_guard):
        with replay_guard.guard("bold:tip_1:tx:APPROVED"):
            replay_guard.mark_processed("bold:tip_1:tx:APPROVED")
        assert replay_guard.is_replay("bold:tip_1:tx:APPROVED")
        assert len(replay_guard) == 1

    def test_second_delivery_is_replay(self, replay_guard):
        with replay_guard.guard("k"):
            replay_guard.mark_processed("k")
        with pytest.raises(ReplayDetected) as exc_info:
            with replay_guard.guard("k"):
                pytest.fail("body must not run for a replay")
        assert exc_info.value.detail["key"] == "k"

    def test_failed_processing_leaves_key_retryable(self, replay_guard):
        with pytest.raises(RuntimeError):
            with replay_guard.guard("k"):
                raise RuntimeError("settlement failed")
        assert not replay_guard.is_replay("k")
        with replay_guard.guard("k"):
            replay_guard.mark_processed("k")

    def test_empty_key_rejected(self, replay_guard):
        with pytest.raises(MalformedRequest) as exc_info:
            with replay_guard.guard(""):
                pass
        assert exc_info.value.reason == "missing_idempotency_key"

    def test_distinct_keys_independent(self, replay_guard):
        for key in ("paypal:a", "paypal:b", "stripe:a"):
            with replay_guard.guard(key):
                replay_guard.mark_processed(key)
        assert len(replay_guard) == 3

    def test_mark_keeps_first_seen(self, clock):
        guard = ReplayGuard(clock=clock)
        guard.mark_processed("k")
        clock.advance(10)
        guard.mark_processed("k")
        assert guard.first_seen("k") == 1_000.0

    def test_clear(self, replay_guard):
        replay_guard.mark_processed("k")
        replay_guard.clear()
        assert not replay_guard.is_replay("k")

    def test_concurrent_duplicates_serialize(self, replay_guard):
        """Only one of N simultaneous deliveries of the same key is processed."""
        barrier = threading.Barrier(8)
        processed: list[int] = []
        replays: list[int] = []
        lock = threading.Lock()

        def worker(n: int):
            barrier.wait()
            try:
                with replay_guard.guard("stripe:evt_1"):
                    time.sleep(0.01)
                    with lock:
                        processed.append(n)
                    replay_guard.mark_processed("stripe:evt_1")
            except ReplayDetected:
                with lock:
                    replays.append(n)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(processed) == 1
        assert len(replays) == 7


class TestSweep:

    def test_expired_records_evicted(self, clock):
        guard = ReplayGuard(retention_seconds=1800, clock=clock)
        guard.mark_processed("old")
        clock.advance(1000)
        guard.mark_processed("new")
        clock.advance(801)

        assert guard.sweep() == 1
        assert not guard.is_replay("old")
        assert guard.is_replay("new")

    def test_nothing_expired(self, clock):
        guard = ReplayGuard(retention_seconds=1800, clock=clock)
        guard.mark_processed("k")
        clock.advance(60)
        assert guard.sweep() == 0
        assert len(guard) == 1

    def test_key_in_use_not_evicted(self, clock):
        guard = ReplayGuard(retention_seconds=60, clock=clock)
        guard.mark_processed("k")
        clock.advance(120)

        entry = guard._checkout("k")
        try:
            assert guard.sweep() == 0
            assert guard.is_replay("k")
        finally:
            guard._checkin("k", entry)
        assert guard.sweep() == 1

    def test_retention_is_configurable(self):
        assert ReplayGuard(retention_seconds=30).retention_seconds == 30
