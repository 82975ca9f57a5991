"""Tests for toolkit helper functions."""

import pytest

from toolkit.helpers import format_minor_units, mask_email


class TestMaskEmail:
    def test_masks_local_part(self):
        assert mask_email("john.doe@example.com") == "j***@example.com"

    def test_single_character_local_part(self):
        assert mask_email("j@example.com") == "***@example.com"

    @pytest.mark.parametrize("value", ["", None, "not-an-email"])
    def test_invalid_input(self, value):
        """Should fully mask values that are not email addresses."""
        assert mask_email(value) == "***"


class TestFormatMinorUnits:
    def test_usd(self):
        assert format_minor_units(12500, "USD") == "$125.00"

    def test_lowercase_currency(self):
        assert format_minor_units(999, "cad") == "CA$9.99"

    def test_thousands_separator(self):
        assert format_minor_units(123456789, "USD") == "$1,234,567.89"

    def test_unknown_currency(self):
        """Should append the code when no symbol is known."""
        assert format_minor_units(12500, "XYZ") == "125.00 XYZ"

    def test_zero_and_none(self):
        assert format_minor_units(0) == "$0.00"
        assert format_minor_units(None) == "$0.00"
