"""Settlement engine: applies verified payment events to tips.

State machine:
    pending   --completed-->  completed
    pending   --failed----->  failed
    completed --refunded--->  refunded

Anything else raises ConflictingTransition and leaves the tip untouched, so
a duplicate the replay guard missed can never credit a tip twice.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from tipgate.alerts.protocol import AlertDispatcher, payment_event, security_alert
from tipgate.errors import (
    ConflictingTransition,
    TransientFault,
    UnsupportedProcessorOrCurrency,
)
from tipgate.ledger.directory import PerformerDirectory
from tipgate.ledger.fees import actual_fee_breakdown, compute_fee
from tipgate.ledger.models import (
    EVENT_TARGET_STATUS,
    EventKind,
    PaymentEvent,
    ProcessorProfile,
    SettlementResult,
    Tip,
    TipStatus,
    can_transition,
)
from tipgate.ledger.store import TipLedger

logger = logging.getLogger(__name__)

_PAYMENT_EVENT_KINDS = {
    TipStatus.COMPLETED: "payment_completed",
    TipStatus.FAILED: "payment_failed",
    TipStatus.REFUNDED: "payment_refunded",
}


class SettlementEngine:
    """Sole writer of Tip state after creation."""

    def __init__(
        self,
        ledger: TipLedger,
        directory: PerformerDirectory,
        alerts: AlertDispatcher,
        profiles: Mapping[str, ProcessorProfile] | None = None,
    ) -> None:
        self._ledger = ledger
        self._directory = directory
        self._alerts = alerts
        self._profiles = dict(profiles) if profiles is not None else ledger.profiles

    @property
    def ledger(self) -> TipLedger:
        return self._ledger

    def settle(self, event: PaymentEvent, *, source_address: str = "") -> SettlementResult:
        """Apply one event to its tip.

        Raises:
            TipNotFound: Unknown tip id
            ConflictingTransition: Transition not allowed from the current status
            UnsupportedProcessorOrCurrency: Completing processor cannot take the tip
            TransientFault: Performer directory unavailable
        """
        with self._ledger.locked(event.tip_id) as tip:
            previous = tip.status

            if event.kind == EventKind.IGNORED:
                logger.info(
                    "Ignoring %s event %s for tip %s", event.processor, event.raw_type, tip.id
                )
                return self._result(tip, previous, event)

            target = EVENT_TARGET_STATUS[event.kind]
            if not can_transition(previous, target):
                self._alerts.emit(security_alert(
                    "conflicting_transition",
                    processor=event.processor,
                    source_address=source_address,
                    severity="warning",
                    tip_id=tip.id,
                    current_status=previous.value,
                    attempted_status=target.value,
                    event_type=event.raw_type,
                ))
                raise ConflictingTransition(
                    f"Tip {tip.id} cannot move from {previous.value} to {target.value}",
                    detail={"tip_id": tip.id, "status": previous.value},
                )

            if target == TipStatus.COMPLETED:
                self._complete(tip, event)
            elif target == TipStatus.FAILED:
                self._fail(tip, event)
            else:
                self._refund(tip, event)

            self._record(tip)

        self._alerts.emit(payment_event(
            _PAYMENT_EVENT_KINDS[target],
            processor=event.processor,
            source_address=source_address,
            tip_id=tip.id,
            amount=tip.amount,
            currency=tip.currency,
            fee=tip.fees.fee,
            net=tip.fees.net,
            transaction_id=tip.transaction_id,
            reason=tip.failure_reason if target == TipStatus.FAILED else None,
        ))
        logger.info(
            "Tip %s: %s -> %s via %s", tip.id, previous.value, tip.status.value, event.processor
        )
        return self._result(tip, previous, event)

    def _complete(self, tip: Tip, event: PaymentEvent) -> None:
        credentials = self._credentials(tip.performer_id)

        if event.processor != tip.processor:
            profile = self._profiles.get(event.processor)
            if profile is None or not profile.supports(tip.currency) or event.processor not in credentials:
                raise UnsupportedProcessorOrCurrency(
                    f"{event.processor} cannot settle a {tip.currency} tip for this beneficiary",
                    detail={"tip_id": tip.id, "processor": event.processor, "currency": tip.currency},
                )
            estimate = compute_fee(tip.amount, profile)
            logger.info(
                "Tip %s settled through %s instead of %s; fee estimate recomputed",
                tip.id, event.processor, tip.processor,
            )
            tip.processor = profile.name
            tip.fee_estimate = estimate
            tip.fee_history.append(estimate)

        if event.amount is not None and event.amount != tip.amount:
            logger.warning(
                "Tip %s: %s reported amount %d, ledger holds %d",
                tip.id, event.processor, event.amount, tip.amount,
            )
        if event.currency and event.currency.upper() != tip.currency:
            logger.warning(
                "Tip %s: %s reported currency %s, ledger holds %s",
                tip.id, event.processor, event.currency, tip.currency,
            )

        if event.actual_fee is not None:
            actual = actual_fee_breakdown(tip.amount, event.actual_fee, self._profiles[tip.processor])
            tip.settled_fees = actual
            tip.fee_history.append(actual)

        tip.status = TipStatus.COMPLETED
        tip.transaction_id = event.external_id or tip.id
        tip.processed_at = datetime.now(timezone.utc)

    def _fail(self, tip: Tip, event: PaymentEvent) -> None:
        tip.status = TipStatus.FAILED
        tip.failure_reason = event.reason or event.raw_type
        tip.failed_at = datetime.now(timezone.utc)

    def _refund(self, tip: Tip, event: PaymentEvent) -> None:
        tip.status = TipStatus.REFUNDED
        tip.refunded_at = datetime.now(timezone.utc)

    def _credentials(self, performer_id: str) -> Mapping[str, str]:
        try:
            return self._directory.processor_credentials(performer_id)
        except Exception as e:
            raise TransientFault(
                "Performer directory unavailable", detail={"error": type(e).__name__}
            ) from e

    def _record(self, tip: Tip) -> None:
        try:
            self._directory.record_tip(tip)
        except Exception:
            # Ledger state is authoritative; the directory view is best-effort.
            logger.warning("Failed to record tip %s with the directory", tip.id, exc_info=True)

    @staticmethod
    def _result(tip: Tip, previous: TipStatus, event: PaymentEvent) -> SettlementResult:
        return SettlementResult(
            tip_id=tip.id,
            status=tip.status,
            previous_status=previous,
            processor=tip.processor,
            event_kind=event.kind,
            fees=tip.fees,
            transaction_id=tip.transaction_id,
        )
