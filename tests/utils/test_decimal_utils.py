"""Tests for the Decimal helpers."""

from decimal import Decimal

import pytest

from platecost.utils.decimal_utils import (
    HUNDRED,
    ONE,
    percent_fraction,
    quantize_money,
    safe_divide,
    to_decimal,
)


class TestToDecimal:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (1, Decimal("1")),
            ("2.5", Decimal("2.5")),
            (0.1, Decimal("0.1")),
            (Decimal("3.25"), Decimal("3.25")),
        ],
    )
    def test_conversions(self, value, expected):
        assert to_decimal(value) == expected

    def test_float_goes_through_str(self):
        """0.1 is not its binary approximation."""
        assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")

    def test_none_uses_default(self):
        assert to_decimal(None, default=ONE) == ONE

    @pytest.mark.parametrize("value", [None, "abc", True, object()])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)


def test_safe_divide():
    assert safe_divide(Decimal("10"), Decimal("4")) == Decimal("2.5")
    assert safe_divide(Decimal("10"), Decimal("0")) == Decimal("0")


@pytest.mark.parametrize(
    "percent,expected",
    [(None, Decimal("1")), (0, Decimal("1")), (Decimal("80"), Decimal("0.8")), ("12.5", Decimal("0.125"))],
)
def test_percent_fraction(percent, expected):
    assert percent_fraction(percent, HUNDRED) == expected


def test_quantize_money_rounds_half_up():
    assert quantize_money(Decimal("2.345")) == Decimal("2.35")
    assert quantize_money(Decimal("2.344")) == Decimal("2.34")
