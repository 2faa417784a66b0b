"""Processor fee computation and processor selection.

fee = round_half_up(amount * rate) + fixed_fee, net = amount - fee.
All arithmetic is Decimal so midpoints round the same way on every platform.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal

from tipgate.errors import UnsupportedProcessorOrCurrency
from tipgate.ledger.models import FeeBreakdown, ProcessorProfile

logger = logging.getLogger(__name__)

_WHOLE_UNIT = Decimal("1")
_HUNDRED = Decimal("100")


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole minor unit, ties away from zero."""
    return int(value.quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP))


def compute_fee(amount: int, profile: ProcessorProfile) -> FeeBreakdown:
    """Estimate the fee split for `amount` (minor units) under `profile`.

    Raises:
        ValueError: If amount is not a positive integer
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Amount must be a positive integer, got {amount!r}")

    fee = round_half_up(Decimal(amount) * profile.percentage_rate) + profile.fixed_fee
    return FeeBreakdown(
        gross=amount,
        fee=fee,
        net=amount - fee,
        fee_percentage=profile.percentage_rate * _HUNDRED,
        processor=profile.name,
    )


def actual_fee_breakdown(amount: int, fee: int, profile: ProcessorProfile) -> FeeBreakdown:
    """Breakdown built from a fee the processor reported after settlement."""
    return FeeBreakdown(
        gross=amount,
        fee=fee,
        net=amount - fee,
        fee_percentage=profile.percentage_rate * _HUNDRED,
        processor=profile.name,
        actual=True,
    )


def select_processor(
    currency: str,
    credentials: Mapping[str, str] | Iterable[str],
    profiles: Mapping[str, ProcessorProfile],
    preferred: str | None = None,
) -> ProcessorProfile:
    """Pick the processor a tip will be charged through.

    Only enabled processors that support the currency and for which the
    beneficiary holds credentials qualify. The preferred processor is tried
    first, then the rest in registry order.

    Raises:
        UnsupportedProcessorOrCurrency: If nothing qualifies
    """
    credentialed = {name for name in credentials}
    order = list(profiles)
    if preferred:
        if preferred not in profiles:
            raise UnsupportedProcessorOrCurrency(
                f"Unknown processor: {preferred}",
                detail={"processor": preferred, "currency": currency},
            )
        order.remove(preferred)
        order.insert(0, preferred)

    for name in order:
        profile = profiles[name]
        if profile.supports(currency) and name in credentialed:
            return profile
        if name == preferred:
            logger.info(
                "Preferred processor %s cannot take %s (credentialed=%s)",
                name, currency, name in credentialed,
            )

    raise UnsupportedProcessorOrCurrency(
        f"No processor supports {currency} for this beneficiary",
        detail={"currency": currency, "credentialed": sorted(credentialed)},
    )
