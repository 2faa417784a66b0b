"""Webhook dispatcher: one inbound notification from bytes to ledger update.

Order of checks (each stage can reject; nothing later runs):
1. Admission (rate limit), then processor lookup
2. JSON decode + payload shape (pydantic schema per processor)
3. Signature verification
4. Idempotency key + replay guard
5. Event routing and settlement, then the key is marked processed

Security contract:
- A delivery is marked processed only after settlement succeeded or the
  event was acknowledged as ignored; rejected deliveries stay retryable
- Every rejection produces one diagnostic record: a security alert, or an
  info log for replays
- Error bodies never carry stack traces, secrets, signatures or idempotency keys
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from tipgate.alerts.protocol import AlertDispatcher, security_alert
from tipgate.errors import (
    AuthenticationFailure,
    InternalFault,
    MalformedRequest,
    RateLimited,
    ReplayDetected,
    UnknownProcessor,
    WebhookError,
)
from tipgate.ledger.models import EventKind
from tipgate.ledger.settlement import SettlementEngine
from tipgate.security.admission import AdmissionController
from tipgate.webhooks.idempotency import ReplayGuard
from tipgate.webhooks.processors import WebhookProcessor
from tipgate.webhooks.verification import VerificationOutcome

logger = logging.getLogger(__name__)

UNKNOWN_PROCESSOR = "unknown"

_ALERT_SEVERITY: dict[type[WebhookError], str] = {
    MalformedRequest: "warning",
    AuthenticationFailure: "error",
    RateLimited: "warning",
    InternalFault: "critical",
}


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def _severity_for(exc: WebhookError) -> str:
    for cls in type(exc).__mro__:
        if cls in _ALERT_SEVERITY:
            return _ALERT_SEVERITY[cls]
    return "error"


class WebhookDispatcher:
    """Runs every inbound webhook through admission, verification and settlement."""

    def __init__(
        self,
        processors: Mapping[str, WebhookProcessor],
        replay_guard: ReplayGuard,
        admission: AdmissionController,
        engine: SettlementEngine,
        alerts: AlertDispatcher,
    ) -> None:
        self._processors = dict(processors)
        self._replay_guard = replay_guard
        self._admission = admission
        self._engine = engine
        self._alerts = alerts
        self._started = time.monotonic()
        self._counts: dict[str, int] = {}

    @property
    def processors(self) -> dict[str, WebhookProcessor]:
        return dict(self._processors)

    def handle(
        self,
        processor_name: str,
        body: bytes,
        headers: Mapping[str, str],
        client_ip: str = "",
        path: str = "",
    ) -> WebhookResponse:
        """Process one delivery and build the HTTP response for it.

        `headers` must have lowercase names. Never raises.
        """
        request_id = uuid.uuid4().hex[:16]
        start = time.perf_counter()
        # Route names are caller-chosen; anything unregistered shares one counter
        known = processor_name if processor_name in self._processors else UNKNOWN_PROCESSOR
        try:
            result = self._process(processor_name, body, headers, client_ip, path, request_id)
        except WebhookError as e:
            self._report(e, known, client_ip, request_id)
            return self._error_response(e, request_id)
        except Exception:
            logger.exception(
                "Unhandled error processing %s webhook (request_id=%s)", processor_name, request_id
            )
            fault = InternalFault("Internal processing error")
            self._report(fault, known, client_ip, request_id)
            return self._error_response(fault, request_id)

        elapsed_ms = round((time.perf_counter() - start) * 1000, 3)
        self._audit(processor_name, result.get("event_type", "unknown"), "processed", request_id)
        return WebhookResponse(
            status_code=200,
            body={
                "status": "success",
                "result": result,
                "processing_time_ms": elapsed_ms,
                "request_id": request_id,
            },
        )

    def _process(
        self,
        processor_name: str,
        body: bytes,
        headers: Mapping[str, str],
        client_ip: str,
        path: str,
        request_id: str,
    ) -> dict[str, Any]:
        # 1. Admission, before anything keyed on the route name
        decision = self._admission.admit(client_ip, path)
        if not decision.allowed:
            error = RateLimited(
                "Too many webhook requests",
                retry_after=decision.retry_after,
                detail={"bucket": decision.bucket},
            )
            # Only the first rejection in a window is alerted
            error.alert = decision.first_rejection
            raise error

        processor = self._processors.get(processor_name)
        if processor is None or not processor.enabled:
            raise UnknownProcessor("No webhook endpoint for this processor")

        # 2. Shape
        try:
            raw = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise MalformedRequest("Body is not valid JSON", reason="invalid_json") from None
        try:
            payload = processor.validate(raw)
        except ValidationError as e:
            raise MalformedRequest(
                "Payload failed validation",
                reason="invalid_payload",
                detail={"errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "type": err["type"]}
                    for err in e.errors()[:10]
                ]},
            ) from None

        # 3. Authentication
        verification = processor.verify(body, headers)
        if verification.outcome == VerificationOutcome.MALFORMED:
            raise MalformedRequest(
                "Authentication headers malformed",
                reason=verification.reason,
                detail=verification.diagnostics,
            )
        if verification.outcome == VerificationOutcome.INAUTHENTIC:
            raise AuthenticationFailure(
                "Webhook signature rejected",
                reason=verification.reason,
                detail=verification.diagnostics,
            )

        # 4. Replay guard, then settlement inside the key's critical section
        key = processor.idempotency_key(payload, headers)
        with self._replay_guard.guard(key):
            event = processor.parse_event(payload)
            if event.kind == EventKind.IGNORED and not event.tip_id:
                logger.info(
                    "Acknowledged %s event %s with no tip reference", processor.name, event.raw_type
                )
                outcome: dict[str, Any] = {"event_type": event.raw_type, "status": "ignored"}
            else:
                settlement = self._engine.settle(event, source_address=client_ip)
                outcome = {"event_type": event.raw_type, **settlement.to_dict()}
            self._replay_guard.mark_processed(key)

        logger.debug(
            "Webhook %s %s: %s (request_id=%s)",
            processor.name, event.raw_type, processor.summary(payload), request_id,
        )
        return outcome

    def _report(
        self, exc: WebhookError, processor_name: str, client_ip: str, request_id: str
    ) -> None:
        self._audit(processor_name, exc.reason, type(exc).__name__, request_id)
        if isinstance(exc, ReplayDetected):
            logger.info(
                "Replay rejected for %s from %s: key=%s (request_id=%s)",
                processor_name, client_ip, exc.detail.get("key"), request_id,
            )
            return
        if not exc.alert:
            return
        self._alerts.emit(security_alert(
            exc.reason,
            processor=processor_name,
            source_address=client_ip,
            severity=_severity_for(exc),
            error=type(exc).__name__,
            request_id=request_id,
            context=exc.detail,
        ))

    def _audit(self, provider: str, event: str, status: str, request_id: str) -> None:
        """Audit log for webhook activity."""
        self._counts[provider] = self._counts.get(provider, 0) + 1
        logger.info(
            "WEBHOOK_AUDIT provider=%s event=%s status=%s request_id=%s count=%d",
            provider,
            event,
            status,
            request_id,
            self._counts[provider],
        )

    @staticmethod
    def _error_response(exc: WebhookError, request_id: str) -> WebhookResponse:
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimited):
            headers["Retry-After"] = str(exc.retry_after)
        return WebhookResponse(
            status_code=exc.status_code,
            body={
                "error": str(exc),
                "reason": exc.reason,
                "request_id": request_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "retryable": exc.retryable,
            },
            headers=headers,
        )

    def health(self) -> dict[str, Any]:
        """Liveness data for the health endpoint. Never includes secret values."""
        data: dict[str, Any] = {
            "status": "healthy",
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "idempotency_records": len(self._replay_guard),
            "tips": len(self._engine.ledger),
            "received": dict(self._counts),
            "alert_sinks": self._alerts.sink_ids,
        }
        for name, processor in self._processors.items():
            data[f"{name}_configured"] = processor.is_configured
        return data
