"""Performer directory interface consumed by the ledger and settlement engine.

The directory itself (performer CRUD, subscribers, show state) lives outside
this package. InMemoryPerformerDirectory is a minimal stand-in for local
runs and tests.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from tipgate.ledger.models import Tip, TipStatus

logger = logging.getLogger(__name__)


@dataclass
class Performer:
    """Beneficiary of tips."""
    id: str
    name: str
    email: str
    currency: str = "COP"
    tip_min_amount: int = 1000
    # processor name -> account identifier at that processor
    credentials: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    total_earnings: int = 0
    completed_tips: int = 0


@runtime_checkable
class PerformerDirectory(Protocol):
    """What the ledger needs from the performer directory."""

    def get_performer(self, performer_id: str) -> Performer | None:
        ...

    def processor_credentials(self, performer_id: str) -> Mapping[str, str]:
        """Processor name -> account id for every processor the performer can receive through."""
        ...

    def record_tip(self, tip: Tip) -> None:
        """Register a new or finalized tip with the performer's history."""
        ...


class InMemoryPerformerDirectory:
    """Dictionary-backed PerformerDirectory."""

    def __init__(self, performers: list[Performer] | None = None) -> None:
        self._lock = threading.Lock()
        self._performers: dict[str, Performer] = {}
        self._tips: dict[str, dict[str, Tip]] = {}
        for performer in performers or []:
            self.add(performer)

    @classmethod
    def with_default_performer(cls) -> InMemoryPerformerDirectory:
        return cls([
            Performer(
                id="default",
                name="Demo Performer",
                email="demo@example.com",
                currency="COP",
                tip_min_amount=1000,
                credentials={"bold": "demo-bold-account"},
            )
        ])

    def add(self, performer: Performer) -> None:
        with self._lock:
            self._performers[performer.id] = performer
            self._tips.setdefault(performer.id, {})

    def get_performer(self, performer_id: str) -> Performer | None:
        return self._performers.get(performer_id)

    def processor_credentials(self, performer_id: str) -> Mapping[str, str]:
        performer = self._performers.get(performer_id)
        if performer is None:
            return {}
        return dict(performer.credentials)

    def record_tip(self, tip: Tip) -> None:
        with self._lock:
            performer = self._performers.get(tip.performer_id)
            if performer is None:
                logger.warning("record_tip for unknown performer %s", tip.performer_id)
                return
            tips = self._tips.setdefault(performer.id, {})
            tips[tip.id] = tip
            completed = [t for t in tips.values() if t.status == TipStatus.COMPLETED]
            performer.completed_tips = len(completed)
            performer.total_earnings = sum(t.fees.net for t in completed)

    def tips_for(self, performer_id: str) -> list[Tip]:
        return list(self._tips.get(performer_id, {}).values())
