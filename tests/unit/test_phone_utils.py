"""Tests for phone number normalization helpers."""

import pytest

from shared.phone_utils import mask_phone, normalize_phone, phone_digits


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw",
        ["+393471234567", "+39 347 123 4567", "00393471234567", "347 123 4567", " 3471234567 "],
    )
    def test_italian_mobile_formats(self, raw):
        assert normalize_phone(raw) == "+393471234567"

    def test_explicit_region(self):
        assert normalize_phone("612 34 56 78", region="ES") == "+34612345678"

    @pytest.mark.parametrize("raw", [None, "", "   ", "12", "not a phone"])
    def test_invalid_numbers(self, raw):
        assert normalize_phone(raw) is None


class TestPhoneHelpers:
    def test_digits(self):
        assert phone_digits("+39 347-123 4567") == "393471234567"
        assert phone_digits(None) == ""

    def test_mask(self):
        assert mask_phone("+393471234567") == "***4567"
        assert mask_phone("12") == "****"
        assert mask_phone(None) == "****"
