#!/usr/bin/env python3
"""Unit tests for authentication input validation."""

import pytest

from vyaapar_shared.exceptions import ValidationError
from vyaapar_client.auth.validators import normalize_mobile, validate_otp, validate_provider_token


class TestNormalizeMobile:

    @pytest.mark.parametrize("value", [
        "9876543210",
        "98765 43210",
        "+91 98765-43210",
        "09876543210",
    ])
    def test_accepted_forms(self, value):
        assert normalize_mobile(value) == "9876543210"

    @pytest.mark.parametrize("value", ["", "   ", "12345", "5876543210", "98765432101"])
    def test_rejected_numbers(self, value):
        with pytest.raises(ValidationError) as exc_info:
            normalize_mobile(value)
        assert exc_info.value.context['field_name'] == 'mobile'


class TestValidateOtp:

    def test_valid_otp(self):
        assert validate_otp(" 123456 ") == "123456"

    @pytest.mark.parametrize("value", ["", "12345", "1234567", "12a456", None])
    def test_invalid_otp(self, value):
        with pytest.raises(ValidationError):
            validate_otp(value)


def test_provider_token_required():
    assert validate_provider_token("id-token") == "id-token"
    with pytest.raises(ValidationError):
        validate_provider_token("  ")
