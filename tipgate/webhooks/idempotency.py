"""Webhook idempotency: in-process replay guard.

Security contract:
- Tracks processor-scoped delivery keys with a first-seen timestamp
- A key seen before is a replay: the dispatcher stops before settlement
- Check, settlement and mark run inside one per-key critical section, so two
  concurrent deliveries of the same key serialize and the second one
  observes "already processed"
- Records expire after the retention window via sweep(); keys in use by a
  request are never evicted
- Process-local: a restart forgets every key
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from tipgate.errors import MalformedRequest, ReplayDetected

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 1800  # 30 minutes


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ReplayGuard:
    """Owns the idempotency records and their per-key locks."""

    def __init__(
        self,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._retention = retention_seconds
        self._clock = clock
        self._records: dict[str, float] = {}
        self._key_locks: dict[str, _KeyLock] = {}
        self._table_lock = threading.Lock()

    def _now(self) -> float:
        return self._clock() if self._clock else time.monotonic()

    @property
    def retention_seconds(self) -> int:
        return self._retention

    def is_replay(self, key: str) -> bool:
        with self._table_lock:
            return key in self._records

    def first_seen(self, key: str) -> float | None:
        with self._table_lock:
            return self._records.get(key)

    def mark_processed(self, key: str) -> None:
        if not key:
            return
        with self._table_lock:
            self._records.setdefault(key, self._now())
        logger.debug("Webhook %s... marked as processed", key[:24])

    @contextmanager
    def guard(self, key: str) -> Iterator[None]:
        """Critical section for one delivery key.

        Raises:
            MalformedRequest: Empty key (delivery cannot be deduplicated)
            ReplayDetected: Key already processed
        """
        if not key:
            raise MalformedRequest("Delivery has no idempotency key", reason="missing_idempotency_key")

        entry = self._checkout(key)
        try:
            with entry.lock:
                first_seen = self.first_seen(key)
                if first_seen is not None:
                    raise ReplayDetected(
                        "Webhook already processed",
                        detail={
                            "key": key,
                            "seconds_since_first_seen": round(self._now() - first_seen, 3),
                        },
                    )
                yield
        finally:
            self._checkin(key, entry)

    def _checkout(self, key: str) -> _KeyLock:
        with self._table_lock:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _KeyLock) -> None:
        with self._table_lock:
            entry.users -= 1
            if entry.users == 0:
                self._key_locks.pop(key, None)

    def sweep(self) -> int:
        """Evict records older than the retention window. Returns the count removed."""
        cutoff = self._now() - self._retention
        with self._table_lock:
            expired = [k for k, seen in self._records.items() if seen <= cutoff]

        removed = 0
        for key in expired:
            with self._table_lock:
                if key in self._key_locks:
                    continue
                if self._records.get(key, cutoff + 1) <= cutoff:
                    del self._records[key]
                    removed += 1

        if removed:
            logger.info("Replay guard sweep: %d expired webhook keys removed", removed)
        return removed

    def clear(self) -> None:
        with self._table_lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
