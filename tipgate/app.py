"""FastAPI application factory.

Wires settings into the owned components (replay guard, admission
controller, ledger, settlement engine, alert dispatcher) and exposes them on
``app.state``. The lifespan starts the replay sweep scheduler and stops it,
together with the alert worker pool, on shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tipgate.alerts import PAYMENT, SECURITY, AlertDispatcher, LoggingAlertSink, SlackAlertSink
from tipgate.config import Settings, get_settings
from tipgate.ledger.directory import InMemoryPerformerDirectory, PerformerDirectory
from tipgate.ledger.settlement import SettlementEngine
from tipgate.ledger.store import TipLedger
from tipgate.scheduler_jobs import build_scheduler
from tipgate.security.admission import AdmissionController
from tipgate.webhooks.dispatcher import WebhookDispatcher
from tipgate.webhooks.handlers import register_webhook_routes
from tipgate.webhooks.idempotency import ReplayGuard
from tipgate.webhooks.processors import build_processors
from tipgate.webhooks.verification import CertificateVerifier

logger = logging.getLogger(__name__)


def build_alerts(settings: Settings) -> AlertDispatcher:
    alerts = AlertDispatcher(max_workers=settings.alert_workers)
    alerts.register(LoggingAlertSink())
    alerts.register(SlackAlertSink(settings.slack_webhook_url), categories={SECURITY})
    alerts.register(
        SlackAlertSink(settings.payments_slack_webhook_url, sink_id="slack_payments"),
        categories={PAYMENT},
    )
    return alerts


def create_app(
    settings: Settings | None = None,
    directory: PerformerDirectory | None = None,
    certificate_verifier: CertificateVerifier | None = None,
    clock: Callable[[], float] | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the webhook service.

    Args:
        settings: Defaults to the process-wide settings
        directory: Performer directory; defaults to an in-memory one holding
            the demo performer
        certificate_verifier: PayPal certificate check; defaults to pinned
            certificates from settings
        clock: Wall-clock override for staleness checks
        start_scheduler: Run the replay sweep job during the lifespan
    """
    settings = settings or get_settings()
    directory = directory or InMemoryPerformerDirectory.with_default_performer()

    alerts = build_alerts(settings)
    ledger = TipLedger(directory)
    engine = SettlementEngine(ledger, directory, alerts)
    replay_guard = ReplayGuard(retention_seconds=settings.idempotency_retention_seconds)
    admission = AdmissionController(
        default_limit=settings.rate_limit,
        trusted_limit=settings.trusted_rate_limit,
        trusted_prefixes=settings.trusted_ip_prefixes,
        exempt_paths=settings.health_paths,
    )
    processors = build_processors(settings, certificate_verifier=certificate_verifier, clock=clock)
    dispatcher = WebhookDispatcher(processors, replay_guard, admission, engine, alerts)
    scheduler = build_scheduler(replay_guard, settings.idempotency_sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            scheduler.start()
            logger.info(
                "Replay sweep scheduled every %ds", settings.idempotency_sweep_interval_seconds
            )
        try:
            yield
        finally:
            if scheduler.running:
                scheduler.shutdown(wait=False)
            alerts.shutdown()
            logger.info("tipgate stopped")

    app = FastAPI(title="tipgate", version=settings.version, lifespan=lifespan)
    app.state.settings = settings
    app.state.directory = directory
    app.state.ledger = ledger
    app.state.engine = engine
    app.state.replay_guard = replay_guard
    app.state.admission = admission
    app.state.alerts = alerts
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": settings.version, "environment": settings.environment}

    register_webhook_routes(app, dispatcher, trusted_proxies=settings.trusted_proxies)
    return app
