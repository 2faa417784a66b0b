"""Default processor profiles and currency exponents."""

from __future__ import annotations

from decimal import Decimal

from tipgate.ledger.models import ProcessorProfile

_CARD_CURRENCIES = frozenset({"USD", "EUR", "GBP", "CAD", "AUD", "MXN", "BRL"})
_CARD_COUNTRIES = frozenset({"US", "CA", "GB", "DE", "ES", "FR", "IT", "AU", "MX", "BR", "CO"})

DEFAULT_PROFILES: dict[str, ProcessorProfile] = {
    "bold": ProcessorProfile(
        name="bold",
        display_name="Bold.co",
        percentage_rate=Decimal("0.0299"),
        fixed_fee=0,
        supported_currencies=frozenset({"COP", "USD"}),
        supported_countries=frozenset({"CO"}),
    ),
    "mercadopago": ProcessorProfile(
        name="mercadopago",
        display_name="Mercado Pago",
        percentage_rate=Decimal("0.0349"),
        fixed_fee=0,
        supported_currencies=frozenset({"ARS", "BRL", "CLP", "COP", "MXN", "PEN", "UYU"}),
        supported_countries=frozenset({"AR", "BR", "CL", "CO", "MX", "PE", "UY"}),
    ),
    "paypal": ProcessorProfile(
        name="paypal",
        display_name="PayPal",
        percentage_rate=Decimal("0.029"),
        fixed_fee=30,
        supported_currencies=_CARD_CURRENCIES,
        supported_countries=_CARD_COUNTRIES,
    ),
    "stripe": ProcessorProfile(
        name="stripe",
        display_name="Stripe",
        percentage_rate=Decimal("0.029"),
        fixed_fee=30,
        supported_currencies=_CARD_CURRENCIES,
        supported_countries=_CARD_COUNTRIES,
    ),
}

# ISO 4217 minor-unit exponents for currencies that differ from 2
_ZERO_DECIMAL_CURRENCIES = frozenset({"CLP", "JPY", "KRW", "PYG", "VND"})


def currency_exponent(currency: str) -> int:
    return 0 if currency.upper() in _ZERO_DECIMAL_CURRENCIES else 2
