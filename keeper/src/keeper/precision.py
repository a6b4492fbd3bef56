"""
Fixed-point conversion helpers.

The ledger stores every amount and price as a signed integer with seven
implied decimal places (``SCALE = 10_000_000``).  Display code works with
floats.  Both directions truncate toward zero and preserve the sign, and
conversion goes through :class:`decimal.Decimal` so that a raw integer
survives ``to_fixed(from_fixed(raw)) == raw`` exactly for every
``|raw| <= MAX_EXACT_RAW``.  Above that bound a float can no longer hold
all the significant digits.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Union

SCALE = 10_000_000
DECIMALS = 7
BASIS_POINTS = 10_000

# 15 significant decimal digits always survive a float round trip.
MAX_EXACT_RAW = 10**15

Number = Union[int, float, Decimal, str]


def to_fixed(amount: Number) -> int:
    """Convert a display amount to the ledger's fixed-point integer.

    Fractions smaller than one precision step are truncated toward zero,
    so ``-1.23456789`` becomes ``-12345678``.
    """
    if isinstance(amount, bool):
        raise TypeError("boolean is not an amount")
    if isinstance(amount, float):
        if amount != amount or amount in (float("inf"), float("-inf")):
            raise ValueError(f"cannot convert non-finite amount {amount!r}")
        value = Decimal(repr(amount))
    else:
        value = Decimal(amount)
    scaled = (value * SCALE).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_fixed(raw: int) -> float:
    """Convert a fixed-point integer to a display float."""
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise TypeError(f"fixed-point value must be an int, got {type(raw).__name__}")
    return float(Decimal(raw) / SCALE)


def format_amount(raw: int, places: int = 2) -> str:
    """Render a fixed-point amount with ``places`` decimals, truncated.

    >>> format_amount(123_456_789)
    '12.34'
    """
    negative = raw < 0
    whole, fraction = divmod(abs(raw), SCALE)
    digits = str(fraction).rjust(DECIMALS, "0")[:places]
    text = f"{whole}.{digits}" if places > 0 else str(whole)
    return f"-{text}" if negative else text


def bps_to_fraction(bps: Union[int, float]) -> float:
    """Basis points to a plain fraction (100 bps -> 0.01)."""
    return bps / BASIS_POINTS


__all__ = [
    "SCALE",
    "DECIMALS",
    "BASIS_POINTS",
    "MAX_EXACT_RAW",
    "to_fixed",
    "from_fixed",
    "format_amount",
    "bps_to_fraction",
]
