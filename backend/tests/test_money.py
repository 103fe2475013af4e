# Overview: Pytest coverage for money primitives.

from decimal import Decimal

import pytest
from shopcore.errors import ValidationError
from shopcore.money import (
    to_cents, percent_of, bps_of, format_cents,
    require_positive_cents, require_non_negative_cents, require_quantity,
)


class TestToCents:
    def test_int_is_already_cents(self):
        assert to_cents(1250) == 1250

    def test_decimal_and_string_are_major_units(self):
        assert to_cents("12.50") == 1250
        assert to_cents(Decimal("0.01")) == 1
        assert to_cents(" 100 ") == 10000

    @pytest.mark.parametrize("bad", [1.5, True, "1.234", "abc", None, "NaN"])
    def test_rejects_non_money(self, bad):
        with pytest.raises(ValidationError):
            to_cents(bad)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            to_cents(10 ** 15)


class TestRounding:
    def test_two_percent_of_final_price(self):
        assert percent_of(45_000, 200) == 900

    def test_half_rounds_away_from_zero(self):
        # 0.5 cent -> 1 cent, never banker's rounding to 0
        assert percent_of(25, 200) == 1
        assert percent_of(75, 200) == 2
        assert percent_of(-25, 200) == -1

    def test_below_half_rounds_down(self):
        assert percent_of(24, 200) == 0

    def test_bps_of(self):
        assert bps_of(5_000, 25_000) == 2000
        assert bps_of(1, 3) == 3333
        assert bps_of(100, 0) == 0


class TestValidators:
    def test_positive(self):
        assert require_positive_cents(1) == 1
        with pytest.raises(ValidationError):
            require_positive_cents(0)
        with pytest.raises(ValidationError):
            require_positive_cents(-5)

    def test_non_negative(self):
        assert require_non_negative_cents(0) == 0
        with pytest.raises(ValidationError):
            require_non_negative_cents(-1)

    @pytest.mark.parametrize("bad", [0, -1, 1.5, True, "2"])
    def test_quantity(self, bad):
        with pytest.raises(ValidationError):
            require_quantity(bad)

    def test_format(self):
        assert format_cents(1_234_550) == "12345.50"
        assert format_cents(5) == "0.05"
