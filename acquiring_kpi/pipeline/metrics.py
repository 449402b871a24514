"""Shared rate and rounding utilities."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")
_TENTH = Decimal("0.1")


def round2(value: float | Decimal) -> float:
    """Round half away from zero to 2 decimals on the decimal text of value."""
    dec = value if isinstance(value, Decimal) else Decimal(repr(float(value)))
    return float(dec.quantize(_CENT, rounding=ROUND_HALF_UP))


def round1(value: float | Decimal) -> float:
    dec = value if isinstance(value, Decimal) else Decimal(repr(float(value)))
    return float(dec.quantize(_TENTH, rounding=ROUND_HALF_UP))


def rate_pct(count: int, total: int) -> float:
    """100 × count / total rounded half-up to 2 decimals; 0.0 when total is 0."""
    if total <= 0:
        return 0.0
    return round2(Decimal(count) * 100 / Decimal(total))


def safe_pct(num: float, den: float) -> float:
    """Unrounded percentage, 0.0 on a non-positive denominator."""
    if den <= 0:
        return 0.0
    return num / den * 100


def safe_ratio(num: float, den: float) -> float:
    if den <= 0:
        return 0.0
    return num / den


def growth_pct(curr: float, prev: float) -> float:
    """Period-over-period growth in percent, 1 decimal; 0.0 without a base."""
    if not prev:
        return 0.0
    return round1((Decimal(repr(float(curr))) - Decimal(repr(float(prev)))) * 100 / Decimal(repr(float(prev))))


def delta2(curr: float, prev: float) -> float:
    """Difference of two 2-decimal figures without float drift."""
    return round2(Decimal(repr(float(curr))) - Decimal(repr(float(prev))))
