"""
Money utility tests.

Verifies:
- to_amount never lets NaN, infinities, negatives or junk into a calculation
- half-up rounding
- format_amount is presentation only
"""

from decimal import Decimal

import pytest

from storefront.services.money import format_amount, round_amount, to_amount


class TestToAmount:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (150000, 150000),
            ("150000", 150000),
            (" 42 ", 42),
            (Decimal("10.5"), 11),
            (10.4, 10),
            (0, 0),
        ],
    )
    def test_coerces_numeric_input(self, value, expected):
        assert to_amount(value) == expected

    @pytest.mark.parametrize(
        "value",
        [None, True, False, "", "abc", "12abc", float("nan"), float("inf"), float("-inf"), -1, "-5", [], {}],
    )
    def test_returns_fallback_for_unusable_input(self, value):
        assert to_amount(value) == 0
        assert to_amount(value, fallback=-1) == -1


class TestRoundAmount:

    def test_rounds_half_up(self):
        assert round_amount(Decimal("2.5")) == 3
        assert round_amount(Decimal("3.5")) == 4
        assert round_amount(Decimal("2.49")) == 2


class TestFormatAmount:

    def test_vietnamese_dong(self):
        assert format_amount(150000) == "150.000 ₫"
        assert format_amount(1500000, "vi_VN", "VND") == "1.500.000 ₫"

    def test_us_dollars_in_cents(self):
        assert format_amount(150000, "en_US", "USD") == "$1,500.00"

    def test_garbage_formats_as_zero(self):
        assert format_amount(None) == "0 ₫"
