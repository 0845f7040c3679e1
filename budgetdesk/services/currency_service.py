"""
Currency conversion for budget checks.

Only the USD↔GBP pair is converted, with fixed rates from settings
(FX_USD_TO_GBP, FX_GBP_TO_USD). Any other pair is returned unconverted and
logged, so callers comparing cross-currency amounts must not rely on it.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from budgetdesk.config import settings

logger = structlog.get_logger()

CENT = Decimal("0.01")


def get_fx_rate(from_currency: str, to_currency: str) -> Optional[Decimal]:
    """
    Return the fixed rate (from_currency → to_currency).

    Returns Decimal(1) for same-currency pairs and None for unsupported pairs.
    """
    from_currency = (from_currency or "").upper()
    to_currency = (to_currency or "").upper()
    if from_currency == to_currency:
        return Decimal("1")

    rates = {
        ("USD", "GBP"): settings.FX_USD_TO_GBP,
        ("GBP", "USD"): settings.FX_GBP_TO_USD,
    }
    return rates.get((from_currency, to_currency))


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def convert_amount(amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
    """Convert amount into to_currency; unsupported pairs pass through as-is."""
    rate = get_fx_rate(from_currency, to_currency)
    if rate is None:
        logger.warning(
            "fx_pair_unsupported",
            from_currency=from_currency,
            to_currency=to_currency,
        )
        return Decimal(amount)
    if rate == Decimal("1"):
        return Decimal(amount)
    return quantize_money(Decimal(amount) * rate)
