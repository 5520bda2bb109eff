"""Price parsing and final_price derivation."""

import math
from decimal import Decimal

import pytest

from marketplace.services.pricing import (
    compute_final_price,
    derive_final_price,
    parse_price,
    to_decimal,
)


class TestParsePrice:
    @pytest.mark.parametrize("raw, expected", [
        (100, 100.0),
        (99.5, 99.5),
        ("150", 150.0),
        (" 150.50 ", 150.5),
        (Decimal("12.30"), 12.3),
        ("0", 0.0),
    ])
    def test_accepts_numbers_and_numeric_strings(self, raw, expected):
        assert parse_price(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_means_not_given(self, raw):
        assert parse_price(raw) is None

    @pytest.mark.parametrize("raw", ["abc", "12abc", True, "nan", "inf", math.inf])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(ValueError, match="must be a valid number"):
            parse_price(raw, "Base price")

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            parse_price("-1", "Platform fee")

    def test_rejects_values_too_large_for_the_column(self):
        assert parse_price("99999999.99") == 99_999_999.99
        with pytest.raises(ValueError, match="Base price must not exceed 99999999.99"):
            parse_price(100_000_000, "Base price")


class TestFinalPrice:
    def test_base_plus_fee(self):
        assert compute_final_price(100.0, 15.0) == 115.0

    def test_missing_fee_counts_as_zero(self):
        assert compute_final_price(100.0, None) == 100.0

    def test_sum_over_column_limit(self):
        with pytest.raises(ValueError, match="Final price must not exceed"):
            compute_final_price(99_999_999.0, 1.0)

    def test_update_sum_over_column_limit(self):
        with pytest.raises(ValueError, match="Final price must not exceed"):
            derive_final_price(Decimal("99999999.00"), Decimal("0.00"), {"platform_fee": 5.0})

    def test_update_without_pricing_fields(self):
        assert derive_final_price(Decimal("100.00"), Decimal("15.00"), {"title": "x"}) is None

    def test_update_base_only_reuses_stored_fee(self):
        assert derive_final_price(Decimal("100.00"), Decimal("15.00"), {"base_price": 200.0}) == 215.0

    def test_update_fee_only_reuses_stored_base(self):
        assert derive_final_price(Decimal("100.00"), Decimal("15.00"), {"platform_fee": 5.0}) == 105.0

    def test_update_clearing_fee(self):
        assert derive_final_price(Decimal("100.00"), Decimal("15.00"), {"platform_fee": None}) == 100.0

    def test_stored_fee_absent(self):
        assert derive_final_price(Decimal("80.00"), None, {"base_price": 90.0}) == 90.0


def test_to_decimal_rounds_to_cents():
    assert to_decimal(10.005) == Decimal("10.01")
    assert to_decimal(0.1 + 0.2) == Decimal("0.30")
    assert to_decimal(None) is None
