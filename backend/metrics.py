"""
Numeric helpers shared by the ledger repository and the analytics services.

Database drivers hand back Decimal, float, int or None depending on the
column and aggregate; everything is normalised to Decimal here before any
arithmetic runs.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional
import logging

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
HUNDRED = Decimal(100)

# Largest magnitude we pass on to clients; anything beyond is clamped.
MAX_SAFE_DECIMAL = Decimal("79228162514264337593543950.335")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a driver value to Decimal.

    None → 0, NaN or garbage → 0, ±Infinity and out-of-range magnitudes are
    clamped to ±MAX_SAFE_DECIMAL. Never raises.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        return Decimal(int(value))
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(repr(value))
        else:
            result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        logger.warning("Decimal conversion failed for %r, returning 0: %s", value, exc)
        return ZERO

    if result.is_nan():
        logger.warning("NaN received from the ledger, returning 0")
        return ZERO
    if result.is_infinite() or abs(result) > MAX_SAFE_DECIMAL:
        logger.warning("Decimal overflow detected, clamping %s", value)
        return MAX_SAFE_DECIMAL if result > 0 else -MAX_SAFE_DECIMAL
    return result


def pct_of(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator × 100, or 0 when the denominator is 0."""
    if not denominator:
        return ZERO
    return numerator / denominator * HUNDRED


def growth_pct(current: Decimal, reference: Optional[Decimal]) -> Decimal:
    """Change from reference to current in percent; 0 unless reference > 0."""
    if reference is None or reference <= 0:
        return ZERO
    return (current - reference) / reference * HUNDRED


def positive_ratio_pct(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator × 100, or 0 unless the denominator is positive."""
    if denominator <= 0:
        return ZERO
    return numerator / denominator * HUNDRED


def mean_nonzero(values: Iterable[Decimal]) -> Decimal:
    """Arithmetic mean of the non-zero values, 0 when there are none."""
    picked = [value for value in values if value != 0]
    if not picked:
        return ZERO
    return sum(picked, ZERO) / len(picked)
