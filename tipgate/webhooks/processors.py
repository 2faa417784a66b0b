"""Processor variants: one class per payment processor.

Each variant bundles what differs between processors:
- verify(): its authentication scheme
- compute_fee(): its fee profile
- validate(): its payload schema
- idempotency_key(): what identifies one underlying event
- parse_event(): its event/status vocabulary reduced to a PaymentEvent

The set is closed and built once from settings by build_processors().
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar

from pydantic import BaseModel

from tipgate.config import Settings
from tipgate.errors import MalformedRequest
from tipgate.ledger.fees import compute_fee
from tipgate.ledger.models import EventKind, FeeBreakdown, PaymentEvent, ProcessorProfile
from tipgate.ledger.profiles import DEFAULT_PROFILES, currency_exponent
from tipgate.webhooks.schemas import (
    BoldPayload,
    MercadoPagoPayload,
    PayPalPayload,
    StripePayload,
)
from tipgate.webhooks.verification import (
    CertificateVerifier,
    HmacSignatureVerifier,
    PinnedCertificateVerifier,
    StripeSignatureVerifier,
    TransmissionVerifier,
    VerificationResult,
)

logger = logging.getLogger(__name__)


def whole_units(value: Decimal, exponent: int = 0) -> int:
    """Scale by 10**exponent and round half up to an integer amount.

    Raises MalformedRequest when the value exceeds decimal precision.
    """
    try:
        return int(value.scaleb(exponent).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except ArithmeticError:
        raise MalformedRequest("Amount out of range", reason="bad_amount") from None


def to_minor_units(value: Decimal, currency: str | None) -> int:
    """Convert a major-unit decimal amount ("50.00") to integer minor units."""
    return whole_units(value, currency_exponent(currency or ""))


class WebhookProcessor(ABC):
    """Capability interface shared by every processor variant."""

    name: ClassVar[str]
    payload_model: ClassVar[type[BaseModel]]

    def __init__(self, profile: ProcessorProfile, verifier: Any) -> None:
        self.profile = profile
        self.verifier = verifier

    @property
    def is_configured(self) -> bool:
        return bool(self.verifier.is_configured)

    @property
    def enabled(self) -> bool:
        return self.profile.enabled

    def verify(self, body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        return self.verifier.verify(body, headers)

    def compute_fee(self, amount: int) -> FeeBreakdown:
        return compute_fee(amount, self.profile)

    def validate(self, payload: Any) -> BaseModel:
        """Raises pydantic.ValidationError on a bad shape."""
        return self.payload_model.model_validate(payload)

    @abstractmethod
    def idempotency_key(self, payload: BaseModel, headers: Mapping[str, str]) -> str:
        ...

    @abstractmethod
    def parse_event(self, payload: BaseModel) -> PaymentEvent:
        ...

    def summary(self, payload: BaseModel) -> dict[str, Any]:
        """Non-sensitive fields for the audit log."""
        return {}


class BoldProcessor(WebhookProcessor):
    """Status-code processor, HMAC-signed."""

    name = "bold"
    payload_model = BoldPayload
    SIGNATURE_HEADERS = ("x-bold-signature", "x-signature", "bold-signature")

    _STATUS_KINDS = {
        "APPROVED": EventKind.COMPLETED,
        "DECLINED": EventKind.FAILED,
        "CANCELLED": EventKind.FAILED,
        "FAILED": EventKind.FAILED,
        "REFUNDED": EventKind.REFUNDED,
        "PENDING": EventKind.IGNORED,
        "PROCESSING": EventKind.IGNORED,
    }

    def idempotency_key(self, payload: BoldPayload, headers: Mapping[str, str]) -> str:
        delivery = payload.transaction_id or (str(payload.id) if payload.id is not None else "-")
        return f"{self.name}:{payload.reference}:{delivery}:{payload.status}"

    def parse_event(self, payload: BoldPayload) -> PaymentEvent:
        kind = self._STATUS_KINDS[payload.status]
        return PaymentEvent(
            processor=self.name,
            kind=kind,
            tip_id=payload.reference,
            raw_type=payload.status,
            external_id=payload.transaction_id or payload.reference,
            amount=whole_units(payload.amount),
            currency=payload.currency,
            reason=payload.status if kind == EventKind.FAILED else None,
        )

    def summary(self, payload: BoldPayload) -> dict[str, Any]:
        return {"reference": payload.reference, "status": payload.status, "amount": str(payload.amount)}


class PayPalProcessor(WebhookProcessor):
    """Transmission-certificate processor."""

    name = "paypal"
    payload_model = PayPalPayload

    _EVENT_KINDS = {
        "PAYMENT.CAPTURE.COMPLETED": EventKind.COMPLETED,
        "PAYMENT.CAPTURE.DENIED": EventKind.FAILED,
        "PAYMENT.CAPTURE.DECLINED": EventKind.FAILED,
        "PAYMENT.CAPTURE.REFUNDED": EventKind.REFUNDED,
    }

    def idempotency_key(self, payload: PayPalPayload, headers: Mapping[str, str]) -> str:
        transmission_id = headers.get(TransmissionVerifier.HEADER_TRANSMISSION_ID, "")
        return f"{self.name}:{transmission_id}" if transmission_id else ""

    def parse_event(self, payload: PayPalPayload) -> PaymentEvent:
        resource = payload.resource
        kind = self._EVENT_KINDS.get(payload.event_type, EventKind.IGNORED)
        tip_id = resource.custom_id or resource.invoice_id or ""
        if kind != EventKind.IGNORED and not tip_id:
            raise MalformedRequest(
                "PayPal resource carries no tip reference", reason="missing_reference"
            )

        amount = currency = None
        if resource.amount is not None:
            currency = resource.amount.currency_code.upper()
            amount = to_minor_units(resource.amount.value, currency)

        actual_fee = None
        breakdown = resource.seller_receivable_breakdown or {}
        paypal_fee = breakdown.get("paypal_fee")
        if kind == EventKind.COMPLETED and isinstance(paypal_fee, dict) and "value" in paypal_fee:
            try:
                actual_fee = to_minor_units(Decimal(str(paypal_fee["value"])), currency)
            except ArithmeticError:
                raise MalformedRequest("Unparseable paypal_fee", reason="bad_fee") from None

        reason = None
        if kind == EventKind.FAILED:
            reason = (resource.status_details or {}).get("reason") or payload.event_type

        return PaymentEvent(
            processor=self.name,
            kind=kind,
            tip_id=tip_id,
            raw_type=payload.event_type,
            external_id=resource.id,
            amount=amount,
            currency=currency,
            actual_fee=actual_fee,
            reason=reason,
        )

    def summary(self, payload: PayPalPayload) -> dict[str, Any]:
        return {"event_type": payload.event_type, "resource_id": payload.resource.id}


class MercadoPagoProcessor(WebhookProcessor):
    """Generic HMAC processor: arbitrary JSON, settles on payment status."""

    name = "mercadopago"
    payload_model = MercadoPagoPayload
    SIGNATURE_HEADERS = ("x-mp-signature",)

    _STATUS_KINDS = {
        "approved": EventKind.COMPLETED,
        "rejected": EventKind.FAILED,
        "cancelled": EventKind.FAILED,
        "refunded": EventKind.REFUNDED,
        "charged_back": EventKind.REFUNDED,
    }

    def idempotency_key(self, payload: MercadoPagoPayload, headers: Mapping[str, str]) -> str:
        if payload.id is not None:
            return f"{self.name}:{payload.id}"
        if payload.data.id is not None:
            return f"{self.name}:{payload.data.id}:{payload.data.status or '-'}"
        return ""

    def parse_event(self, payload: MercadoPagoPayload) -> PaymentEvent:
        data = payload.data
        status = (data.status or "").lower()
        kind = self._STATUS_KINDS.get(status, EventKind.IGNORED)
        tip_id = data.external_reference or ""
        if kind != EventKind.IGNORED and not tip_id:
            raise MalformedRequest(
                "Mercado Pago payment carries no external_reference", reason="missing_reference"
            )

        currency = data.currency_id.upper() if data.currency_id else None
        amount = (
            to_minor_units(data.transaction_amount, currency)
            if data.transaction_amount is not None
            else None
        )

        actual_fee = None
        if kind == EventKind.COMPLETED and data.fee_details:
            try:
                actual_fee = sum(
                    to_minor_units(Decimal(str(fee.get("amount", 0))), currency)
                    for fee in data.fee_details
                )
            except ArithmeticError:
                raise MalformedRequest("Unparseable fee_details", reason="bad_fee") from None

        return PaymentEvent(
            processor=self.name,
            kind=kind,
            tip_id=tip_id,
            raw_type=status or (payload.action or "unknown"),
            external_id=str(data.id) if data.id is not None else None,
            amount=amount,
            currency=currency,
            actual_fee=actual_fee,
            reason=(data.status_detail or status) if kind == EventKind.FAILED else None,
        )

    def summary(self, payload: MercadoPagoPayload) -> dict[str, Any]:
        return {"action": payload.action, "status": payload.data.status}


class StripeProcessor(WebhookProcessor):
    """Stripe payment intents and refunds, tip id in object metadata."""

    name = "stripe"
    payload_model = StripePayload

    _EVENT_KINDS = {
        "payment_intent.succeeded": EventKind.COMPLETED,
        "payment_intent.payment_failed": EventKind.FAILED,
        "payment_intent.canceled": EventKind.FAILED,
        "charge.refunded": EventKind.REFUNDED,
    }

    def idempotency_key(self, payload: StripePayload, headers: Mapping[str, str]) -> str:
        return f"{self.name}:{payload.id}"

    def parse_event(self, payload: StripePayload) -> PaymentEvent:
        obj = payload.data.object
        kind = self._EVENT_KINDS.get(payload.type, EventKind.IGNORED)
        tip_id = obj.metadata.get("tip_id", "")
        if kind != EventKind.IGNORED and not tip_id:
            raise MalformedRequest(
                "Stripe object carries no tip_id metadata", reason="missing_reference"
            )

        reason = None
        if kind == EventKind.FAILED:
            error = obj.last_payment_error or {}
            reason = error.get("code") or obj.cancellation_reason or payload.type

        external_id = obj.payment_intent if payload.type == "charge.refunded" else obj.id
        return PaymentEvent(
            processor=self.name,
            kind=kind,
            tip_id=tip_id,
            raw_type=payload.type,
            external_id=external_id or obj.id,
            amount=obj.amount_received or obj.amount,
            currency=obj.currency.upper() if obj.currency else None,
            reason=reason,
        )

    def summary(self, payload: StripePayload) -> dict[str, Any]:
        return {"event_type": payload.type, "object_id": payload.data.object.id}


def build_processors(
    settings: Settings,
    certificate_verifier: CertificateVerifier | None = None,
    profiles: Mapping[str, ProcessorProfile] | None = None,
    clock: Callable[[], float] | None = None,
) -> dict[str, WebhookProcessor]:
    """Build every processor variant from settings.

    A PayPal certificate verifier is built from pinned certificates when the
    settings carry them and none is passed in.
    """
    profiles = dict(profiles or DEFAULT_PROFILES)

    if certificate_verifier is None and settings.paypal_certificates:
        certificate_verifier = PinnedCertificateVerifier(
            settings.paypal_webhook_id, settings.paypal_certificates
        )

    processors: list[WebhookProcessor] = [
        BoldProcessor(
            profiles["bold"],
            HmacSignatureVerifier(settings.bold_secret_key, BoldProcessor.SIGNATURE_HEADERS),
        ),
        PayPalProcessor(
            profiles["paypal"],
            TransmissionVerifier(
                certificate_verifier,
                max_age_seconds=settings.max_transmission_age_seconds,
                clock=clock,
            ),
        ),
        MercadoPagoProcessor(
            profiles["mercadopago"],
            HmacSignatureVerifier(
                settings.mercadopago_webhook_secret, MercadoPagoProcessor.SIGNATURE_HEADERS
            ),
        ),
        StripeProcessor(
            profiles["stripe"],
            StripeSignatureVerifier(
                settings.stripe_webhook_secret,
                max_age_seconds=settings.max_transmission_age_seconds,
                clock=clock,
            ),
        ),
    ]

    for processor in processors:
        if not processor.is_configured:
            logger.warning("Processor %s has no verification secret configured", processor.name)
    return {p.name: p for p in processors}
