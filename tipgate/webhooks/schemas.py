"""Payload schemas for each processor endpoint.

Validation runs before any state is touched. Unknown extra fields are kept
(processors add fields over time) but never trusted for routing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]

CurrencyCode = Annotated[
    str, StringConstraints(strip_whitespace=True, to_upper=True, pattern=r"^[A-Za-z]{3}$")
]

BoldStatus = Literal[
    "APPROVED", "DECLINED", "PENDING", "CANCELLED", "FAILED", "PROCESSING", "REFUNDED"
]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


class BoldPayload(_Payload):
    """Status-code processor notification."""

    reference: NonEmptyStr
    status: BoldStatus
    amount: Decimal = Field(ge=0)
    currency: CurrencyCode | None = None
    transaction_id: str | None = None
    id: str | int | None = None


class PayPalMoney(_Payload):
    value: Decimal
    currency_code: str


class PayPalResource(_Payload):
    id: NonEmptyStr
    custom_id: str | None = None
    invoice_id: str | None = None
    status: str | None = None
    amount: PayPalMoney | None = None
    seller_receivable_breakdown: dict[str, Any] | None = None
    status_details: dict[str, Any] | None = None


class PayPalPayload(_Payload):
    """Transmission-certificate processor notification."""

    id: str | None = None
    event_type: NonEmptyStr
    resource: PayPalResource


class MercadoPagoData(_Payload):
    id: str | int | None = None
    status: str | None = None
    status_detail: str | None = None
    external_reference: str | None = None
    transaction_amount: Decimal | None = None
    currency_id: str | None = None
    fee_details: list[dict[str, Any]] | None = None


class MercadoPagoPayload(_Payload):
    """Generic HMAC processor notification."""

    id: str | int | None = None
    type: str | None = None
    action: str | None = None
    data: MercadoPagoData = Field(default_factory=MercadoPagoData)


class StripeObject(_Payload):
    id: NonEmptyStr
    object: str | None = None
    amount: int | None = None
    amount_received: int | None = None
    amount_refunded: int | None = None
    currency: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    payment_intent: str | None = None
    cancellation_reason: str | None = None
    last_payment_error: dict[str, Any] | None = None


class StripeData(_Payload):
    object: StripeObject


class StripePayload(_Payload):
    id: NonEmptyStr
    type: NonEmptyStr
    data: StripeData
