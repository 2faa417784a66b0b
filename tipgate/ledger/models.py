"""Tip ledger entities: tips, fee breakdowns, processor profiles, events."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class TipStatus(str, Enum):
    """Tip lifecycle status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class EventKind(str, Enum):
    """Processor-neutral outcome carried by a webhook."""
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    IGNORED = "ignored"


# The only forward moves a tip may make.
ALLOWED_TRANSITIONS: dict[TipStatus, frozenset[TipStatus]] = {
    TipStatus.PENDING: frozenset({TipStatus.COMPLETED, TipStatus.FAILED}),
    TipStatus.COMPLETED: frozenset({TipStatus.REFUNDED}),
    TipStatus.FAILED: frozenset(),
    TipStatus.REFUNDED: frozenset(),
}

EVENT_TARGET_STATUS: dict[EventKind, TipStatus] = {
    EventKind.COMPLETED: TipStatus.COMPLETED,
    EventKind.FAILED: TipStatus.FAILED,
    EventKind.REFUNDED: TipStatus.REFUNDED,
}


def can_transition(current: TipStatus, target: TipStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class ProcessorProfile:
    """Static fee and coverage configuration for one processor."""

    name: str
    display_name: str
    percentage_rate: Decimal
    fixed_fee: int = 0
    supported_currencies: frozenset[str] = frozenset()
    supported_countries: frozenset[str] = frozenset()
    enabled: bool = True

    def supports(self, currency: str) -> bool:
        return self.enabled and currency.upper() in self.supported_currencies


@dataclass(frozen=True)
class FeeBreakdown:
    """Fee split for one amount under one processor. Never mutated."""

    gross: int
    fee: int
    net: int
    fee_percentage: Decimal
    processor: str
    actual: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "gross": self.gross,
            "fee": self.fee,
            "net": self.net,
            "fee_percentage": str(self.fee_percentage),
            "processor": self.processor,
            "actual": self.actual,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_tip_id() -> str:
    return f"tip_{uuid.uuid4().hex}"


@dataclass
class Tip:
    """A single value transfer from a user to a performer.

    Mutated only by the settlement engine while it holds the ledger's
    per-tip lock.
    """

    amount: int
    currency: str
    user: str
    performer_id: str
    processor: str
    fee_estimate: FeeBreakdown
    message: str = "No message"
    id: str = field(default_factory=generate_tip_id)
    created_at: datetime = field(default_factory=_utcnow)
    status: TipStatus = TipStatus.PENDING
    settled_fees: FeeBreakdown | None = None
    fee_history: list[FeeBreakdown] = field(default_factory=list)
    transaction_id: str | None = None
    failure_reason: str | None = None
    processed_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.fee_history:
            self.fee_history.append(self.fee_estimate)

    @property
    def fees(self) -> FeeBreakdown:
        """Fees for reporting: the processor-reported fee wins over the estimate."""
        return self.settled_fees or self.fee_estimate

    @property
    def processed(self) -> bool:
        return self.status in (TipStatus.COMPLETED, TipStatus.REFUNDED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "currency": self.currency,
            "user": self.user,
            "performer_id": self.performer_id,
            "message": self.message,
            "status": self.status.value,
            "processor": self.processor,
            "fees": self.fees.to_dict(),
            "fee_estimate": self.fee_estimate.to_dict(),
            "transaction_id": self.transaction_id,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class PaymentEvent:
    """A webhook payload reduced to what the settlement engine needs."""

    processor: str
    kind: EventKind
    tip_id: str
    raw_type: str
    external_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    actual_fee: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of applying one payment event to the ledger."""

    tip_id: str
    status: TipStatus
    previous_status: TipStatus
    processor: str
    event_kind: EventKind
    fees: FeeBreakdown
    transaction_id: str | None = None

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "tip_id": self.tip_id,
            "status": self.status.value,
            "previous_status": self.previous_status.value,
            "processor": self.processor,
            "event": self.event_kind.value,
            "transaction_id": self.transaction_id,
            "fees": self.fees.to_dict(),
        }
