"""In-memory tip ledger.

Holds every tip created in this process. Tip objects are only mutated under
the per-tip lock handed out by ``locked()``; the ledger's own table lock is
held just long enough to look a tip (or its lock) up.

State is process-local: a restart loses the ledger.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from tipgate.errors import TipNotFound, TipValidationError
from tipgate.ledger.directory import PerformerDirectory
from tipgate.ledger.fees import compute_fee, select_processor
from tipgate.ledger.models import ProcessorProfile, Tip, TipStatus
from tipgate.ledger.profiles import DEFAULT_PROFILES

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_MESSAGE_LENGTH = 500


class TipLedger:
    """Owns Tip storage and the per-tip locks."""

    def __init__(
        self,
        directory: PerformerDirectory,
        profiles: Mapping[str, ProcessorProfile] | None = None,
    ) -> None:
        self._directory = directory
        self._profiles = dict(profiles or DEFAULT_PROFILES)
        self._tips: dict[str, Tip] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()

    @property
    def profiles(self) -> dict[str, ProcessorProfile]:
        return dict(self._profiles)

    def create_tip(
        self,
        amount: int,
        user_email: str,
        performer_id: str,
        message: str | None = None,
        processor: str | None = None,
    ) -> Tip:
        """Create a pending tip and its fee estimate.

        Raises:
            TipValidationError: Bad amount, unknown performer, bad e-mail
            UnsupportedProcessorOrCurrency: No processor can take the tip
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise TipValidationError("Invalid amount")

        performer = self._directory.get_performer(performer_id)
        if performer is None:
            raise TipValidationError(f"Performer not found: {performer_id}")

        if amount < performer.tip_min_amount:
            raise TipValidationError(
                f"Minimum tip is {performer.tip_min_amount} {performer.currency}"
            )

        if not user_email or not _EMAIL_RE.match(user_email.strip()):
            raise TipValidationError("Invalid user e-mail")

        profile = select_processor(
            performer.currency,
            self._directory.processor_credentials(performer_id),
            self._profiles,
            preferred=processor,
        )

        tip = Tip(
            amount=amount,
            currency=performer.currency,
            user=user_email.strip().lower(),
            performer_id=performer_id,
            processor=profile.name,
            fee_estimate=compute_fee(amount, profile),
            message=(message or "No message")[:MAX_MESSAGE_LENGTH],
        )

        with self._table_lock:
            self._tips[tip.id] = tip
            self._locks[tip.id] = threading.Lock()

        self._directory.record_tip(tip)
        logger.info(
            "Tip created: %s %d %s for %s via %s",
            tip.id, amount, tip.currency, performer_id, profile.name,
        )
        return tip

    def get(self, tip_id: str) -> Tip | None:
        return self._tips.get(tip_id)

    @contextmanager
    def locked(self, tip_id: str) -> Iterator[Tip]:
        """Hold the tip's lock for the duration of the block.

        Raises:
            TipNotFound: If no tip has this id
        """
        with self._table_lock:
            tip = self._tips.get(tip_id)
            lock = self._locks.get(tip_id)
        if tip is None or lock is None:
            raise TipNotFound(f"Tip not found: {tip_id}", detail={"tip_id": tip_id})
        with lock:
            yield tip

    def by_status(self, status: TipStatus, limit: int = 100) -> list[Tip]:
        tips = [t for t in self._snapshot() if t.status == status]
        return list(reversed(tips[-limit:]))

    def recent(self, limit: int = 10) -> list[Tip]:
        return list(reversed(self._snapshot()[-limit:]))

    def stats(self, performer_id: str | None = None) -> dict[str, Any]:
        """Counts and settled totals, optionally for one performer."""
        tips = self._snapshot()
        if performer_id is not None:
            tips = [t for t in tips if t.performer_id == performer_id]

        now = datetime.now(timezone.utc)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month = today.replace(day=1)
        completed = [t for t in tips if t.status == TipStatus.COMPLETED]

        def _summary(since: datetime | None) -> dict[str, int]:
            window = tips if since is None else [t for t in tips if t.created_at >= since]
            return {
                "count": len(window),
                "amount": sum(t.amount for t in window if t.status == TipStatus.COMPLETED),
            }

        return {
            "total": _summary(None),
            "today": _summary(today),
            "monthly": _summary(month),
            "average": round(sum(t.amount for t in completed) / len(completed)) if completed else 0,
            "net_total": sum(t.fees.net for t in completed),
            "fees_total": sum(t.fees.fee for t in completed),
            "pending": sum(1 for t in tips if t.status == TipStatus.PENDING),
            "failed": sum(1 for t in tips if t.status == TipStatus.FAILED),
            "refunded": sum(1 for t in tips if t.status == TipStatus.REFUNDED),
        }

    def _snapshot(self) -> list[Tip]:
        with self._table_lock:
            return list(self._tips.values())

    def __len__(self) -> int:
        return len(self._tips)
