# tests/test_metrics.py
from decimal import Decimal

import pytest

from metrics import (
    MAX_SAFE_DECIMAL, growth_pct, mean_nonzero, pct_of, positive_ratio_pct, to_decimal,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, Decimal("0")),
        (Decimal("12.50"), Decimal("12.50")),
        (7, Decimal("7")),
        (0.1, Decimal("0.1")),
        (" 42.5 ", Decimal("42.5")),
        ("not-a-number", Decimal("0")),
        (float("nan"), Decimal("0")),
        (True, Decimal("1")),
    ],
)
def test_to_decimal_coerces_driver_values(value, expected):
    assert to_decimal(value) == expected


def test_to_decimal_clamps_infinity_and_overflow():
    assert to_decimal(float("inf")) == MAX_SAFE_DECIMAL
    assert to_decimal(float("-inf")) == -MAX_SAFE_DECIMAL
    assert to_decimal("1e40") == MAX_SAFE_DECIMAL
    assert to_decimal(Decimal("-1e40")) == -MAX_SAFE_DECIMAL


def test_pct_of_zero_denominator_is_zero():
    assert pct_of(Decimal("5"), Decimal("0")) == 0
    assert pct_of(Decimal("5"), Decimal("20")) == Decimal("25")
    assert pct_of(Decimal("-5"), Decimal("20")) == Decimal("-25")


def test_growth_pct_needs_positive_reference():
    assert growth_pct(Decimal("150"), Decimal("100")) == Decimal("50")
    assert growth_pct(Decimal("150"), None) == 0
    assert growth_pct(Decimal("150"), Decimal("0")) == 0
    assert growth_pct(Decimal("150"), Decimal("-10")) == 0


def test_positive_ratio_pct():
    assert positive_ratio_pct(Decimal("3"), Decimal("60")) == Decimal("5")
    assert positive_ratio_pct(Decimal("3"), Decimal("0")) == 0
    assert positive_ratio_pct(Decimal("3"), Decimal("-1")) == 0


def test_mean_nonzero_ignores_zeros():
    assert mean_nonzero([Decimal("0"), Decimal("10"), Decimal("20"), Decimal("0")]) == Decimal("15")
    assert mean_nonzero([Decimal("0"), Decimal("0")]) == 0
    assert mean_nonzero([]) == 0
