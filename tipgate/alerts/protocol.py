"""Alert sink protocol and fire-and-forget dispatcher.

Design follows the notification dock pattern:
- Each sink implements send() and reports is_configured
- AlertDispatcher fans every event out to all registered sinks
- Circuit breaker per sink (failures don't cascade)

Delivery contract:
- emit() never blocks the caller and never raises
- Sink failures are logged and counted, never surfaced to webhook processing
- Events carry diagnostics only; secrets and full signatures stay out
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

SECURITY = "security"
PAYMENT = "payment"


@dataclass(frozen=True)
class AlertEvent:
    """A structured security or payment event."""
    severity: str  # info, warning, error, critical
    category: str  # security, payment
    kind: str
    processor: str = ""
    source_address: str = ""
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def security_alert(
    kind: str,
    *,
    processor: str = "",
    source_address: str = "",
    severity: str = "error",
    **detail: Any,
) -> AlertEvent:
    return AlertEvent(
        severity=severity,
        category=SECURITY,
        kind=kind,
        processor=processor,
        source_address=source_address,
        detail=detail,
    )


def payment_event(
    kind: str,
    *,
    processor: str = "",
    source_address: str = "",
    severity: str = "info",
    **detail: Any,
) -> AlertEvent:
    return AlertEvent(
        severity=severity,
        category=PAYMENT,
        kind=kind,
        processor=processor,
        source_address=source_address,
        detail=detail,
    )


@runtime_checkable
class AlertSink(Protocol):
    """Protocol for alert destinations."""

    @property
    def sink_id(self) -> str:
        ...

    @property
    def is_configured(self) -> bool:
        ...

    def send(self, event: AlertEvent) -> None:
        """Deliver one event. Raise on failure."""
        ...


class LoggingAlertSink:
    """Writes every event as one JSON log line."""

    def __init__(self, sink_id: str = "log") -> None:
        self._sink_id = sink_id
        self._logger = logging.getLogger("tipgate.alerts.audit")

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def is_configured(self) -> bool:
        return True

    def send(self, event: AlertEvent) -> None:
        line = json.dumps(event.to_dict(), default=str, sort_keys=True)
        if event.category == SECURITY:
            self._logger.warning("SECURITY_ALERT %s", line)
        else:
            self._logger.info("PAYMENT_EVENT %s", line)


@dataclass
class _SinkState:
    sink: AlertSink
    categories: frozenset[str] | None = None  # None = all
    failure_count: int = 0
    circuit_open_until: float = 0.0
    max_failures: int = 5
    circuit_reset_seconds: int = 300


class AlertDispatcher:
    """Fans alert events out to sinks on a worker pool."""

    def __init__(self, max_workers: int = 2) -> None:
        self._sinks: dict[str, _SinkState] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tipgate-alerts"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._emitted = 0
        self._failures = 0

    def register(self, sink: AlertSink, categories: set[str] | None = None) -> None:
        """Register a sink, optionally limited to some categories."""
        if not sink.is_configured:
            logger.warning("Alert sink %s not configured; skipping", sink.sink_id)
            return
        self._sinks[sink.sink_id] = _SinkState(
            sink=sink,
            categories=frozenset(categories) if categories else None,
        )
        logger.info("Alert sink registered: %s", sink.sink_id)

    @property
    def sink_ids(self) -> list[str]:
        return list(self._sinks)

    def emit(self, event: AlertEvent) -> None:
        """Queue delivery of `event` to every matching sink. Never raises."""
        with self._lock:
            self._emitted += 1
        now = time.time()
        for state in list(self._sinks.values()):
            if state.categories is not None and event.category not in state.categories:
                continue
            if now < state.circuit_open_until:
                continue
            try:
                future = self._executor.submit(self._deliver, state, event)
            except RuntimeError:
                logger.warning("Alert executor shut down; dropping %s", event.kind)
                return
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._discard)

    def _deliver(self, state: _SinkState, event: AlertEvent) -> None:
        try:
            state.sink.send(event)
        except Exception:
            with self._lock:
                self._failures += 1
                state.failure_count += 1
                if state.failure_count >= state.max_failures:
                    state.circuit_open_until = time.time() + state.circuit_reset_seconds
                    logger.warning(
                        "Alert sink %s circuit opened after %d failures",
                        state.sink.sink_id,
                        state.failure_count,
                    )
            logger.warning(
                "Alert sink %s failed to deliver %s", state.sink.sink_id, event.kind,
                exc_info=True,
            )
            return
        if state.failure_count:
            with self._lock:
                state.failure_count = 0

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = 5.0) -> None:
        """Wait for queued deliveries (tests and shutdown)."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.drain()
        self._executor.shutdown(wait=True)

    def status(self) -> dict[str, Any]:
        return {
            "emitted": self._emitted,
            "failures": self._failures,
            "sinks": {
                sid: {"failure_count": s.failure_count, "open": time.time() < s.circuit_open_until}
                for sid, s in self._sinks.items()
            },
        }
