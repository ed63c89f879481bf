"""
Unit tests for period key helpers.
"""

from datetime import date

import pytest

from exceptions import ValidationError
from periods import (
    current_period_key,
    parse_period_key,
    period_bounds,
    period_key_for,
    period_year,
    shift_period,
)


class TestPeriodKeys:
    """Parsing and formatting of YYYY-MM keys."""

    def test_period_key_for_pads_month(self):
        assert period_key_for(date(2024, 5, 17)) == "2024-05"

    def test_current_period_key_uses_supplied_date(self):
        assert current_period_key(date(2023, 12, 31)) == "2023-12"

    def test_current_period_key_defaults_to_today(self):
        today = date.today()
        assert current_period_key() == f"{today.year:04d}-{today.month:02d}"

    def test_parse_period_key(self):
        assert parse_period_key("2024-05") == (2024, 5)
        assert period_year("2024-05") == 2024

    @pytest.mark.parametrize("bad_key", ["2024-5", "2024-13", "2024-00", "May 2024", "", None, "2024-05-01"])
    def test_parse_period_key_rejects_malformed(self, bad_key):
        with pytest.raises(ValidationError):
            parse_period_key(bad_key)


class TestPeriodBounds:
    """Month boundaries."""

    def test_regular_month(self):
        assert period_bounds("2024-04") == (date(2024, 4, 1), date(2024, 4, 30))

    def test_december_rolls_into_next_year(self):
        assert period_bounds("2023-12") == (date(2023, 12, 1), date(2023, 12, 31))

    def test_leap_february(self):
        assert period_bounds("2024-02")[1] == date(2024, 2, 29)
        assert period_bounds("2023-02")[1] == date(2023, 2, 28)


class TestShiftPeriod:
    """Browsing months."""

    def test_forward_across_year(self):
        assert shift_period("2024-11", 3) == "2025-02"

    def test_backward_across_year(self):
        assert shift_period("2024-01", -1) == "2023-12"

    def test_zero_shift(self):
        assert shift_period("2024-06", 0) == "2024-06"
