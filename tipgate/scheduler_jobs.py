"""Background jobs run by APScheduler."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from tipgate.webhooks.idempotency import ReplayGuard

logger = logging.getLogger(__name__)

REPLAY_SWEEP_JOB_ID = "replay_guard_sweep"


def replay_sweep_job(guard: ReplayGuard) -> None:
    """Evict expired idempotency records. Called every sweep interval."""
    try:
        removed = guard.sweep()
        logger.debug("Replay sweep complete: %d removed, %d tracked", removed, len(guard))
    except Exception:
        logger.warning("Replay sweep job failed", exc_info=True)


def build_scheduler(guard: ReplayGuard, interval_seconds: int) -> BackgroundScheduler:
    """Create (not start) the scheduler carrying the replay sweep job."""
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        replay_sweep_job,
        "interval",
        seconds=interval_seconds,
        args=[guard],
        id=REPLAY_SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
