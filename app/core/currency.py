"""
Currency precision table — smallest monetary unit per ISO currency code.

The minimum unit is the threshold below which a settlement balance is
treated as zero ("close enough" after multi-currency conversion). It is
never used to round amounts that are stored; ``quantize_amount`` exists
only for display.
"""

from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType

DEFAULT_TOLERANCE = Decimal("0.01")

_TWO_DECIMALS = Decimal("0.01")
_ZERO_DECIMALS = Decimal("1")
_THREE_DECIMALS = Decimal("0.001")

# ---------------------------------------------------------------------------
# Minimum unit table
# ---------------------------------------------------------------------------

CURRENCY_MIN_UNIT: MappingProxyType = MappingProxyType({
    # Two decimal places
    "USD": _TWO_DECIMALS,
    "EUR": _TWO_DECIMALS,
    "CAD": _TWO_DECIMALS,
    "GBP": _TWO_DECIMALS,
    "AUD": _TWO_DECIMALS,
    "CHF": _TWO_DECIMALS,
    "CNY": _TWO_DECIMALS,
    "INR": _TWO_DECIMALS,
    "MXN": _TWO_DECIMALS,
    "AED": _TWO_DECIMALS,
    "TRY": _TWO_DECIMALS,
    "AFN": _TWO_DECIMALS,
    "PKR": _TWO_DECIMALS,
    # No minor unit in practice
    "IRR": _ZERO_DECIMALS,
    "JPY": _ZERO_DECIMALS,
    "KRW": _ZERO_DECIMALS,
    "VND": _ZERO_DECIMALS,
    "IDR": _ZERO_DECIMALS,
    "IQD": _ZERO_DECIMALS,  # fils exist on paper but are not used
    # Three decimal places
    "KWD": _THREE_DECIMALS,
    "BHD": _THREE_DECIMALS,
    "OMR": _THREE_DECIMALS,
    "JOD": _THREE_DECIMALS,
    "TND": _THREE_DECIMALS,
    "LYD": _THREE_DECIMALS,
})


def normalize_code(currency: str | None) -> str:
    """Upper-case and strip a currency code; ``None`` becomes ``""``."""
    return (currency or "").strip().upper()


def tolerance_for(currency: str | None) -> Decimal:
    """
    Smallest representable unit for *currency*.

    Unknown codes fall back to ``0.01`` rather than raising.
    """
    return CURRENCY_MIN_UNIT.get(normalize_code(currency), DEFAULT_TOLERANCE)


def decimal_places_for(currency: str | None) -> int:
    """
    Canonical number of decimal places, derived from the tolerance.

    Only 0, 2 and 3 are representable; a currency with a four-decimal
    minor unit would report 2.
    """
    tolerance = tolerance_for(currency)
    if tolerance == _ZERO_DECIMALS:
        return 0
    if tolerance == _THREE_DECIMALS:
        return 3
    return 2


def is_within_tolerance(amount: Decimal | int | float | str, currency: str | None) -> bool:
    """True if ``abs(amount)`` is no larger than the currency's minimum unit."""
    return abs(Decimal(str(amount))) <= tolerance_for(currency)


def quantize_amount(amount: Decimal, currency: str | None) -> Decimal:
    """Round *amount* to the currency's decimal places for display."""
    places = decimal_places_for(currency)
    exponent = Decimal(1).scaleb(-places)
    return Decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)
