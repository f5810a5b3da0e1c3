"""Input checks run before any authentication call reaches the network."""

import re

from vyaapar_shared.exceptions import ValidationError, ErrorCode

_MOBILE_PATTERN = re.compile(r'^[6-9]\d{9}$')
_OTP_PATTERN = re.compile(r'^\d{6}$')


def normalize_mobile(value: str) -> str:
    """
    Normalize an Indian mobile number to its 10 digit form.

    Spaces, dashes and a leading ``+91`` or ``0`` are accepted.

    Raises:
        ValidationError: If the result is not a valid mobile number
    """
    if not value or not value.strip():
        raise ValidationError(
            "Mobile number is required",
            field_name='mobile',
            error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
            user_message="Please enter your mobile number."
        )

    digits = re.sub(r'\D', '', value)
    if len(digits) == 12 and digits.startswith('91'):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith('0'):
        digits = digits[1:]

    if not _MOBILE_PATTERN.match(digits):
        raise ValidationError(
            f"Invalid mobile number: {value!r}",
            field_name='mobile',
            error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            user_message="Please enter a valid 10 digit mobile number."
        )
    return digits


def validate_otp(value: str) -> str:
    """Return the stripped OTP, or raise ValidationError unless it is 6 digits."""
    otp = (value or '').strip()
    if not _OTP_PATTERN.match(otp):
        raise ValidationError(
            "OTP must be 6 digits",
            field_name='otp',
            error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            user_message="Please enter the 6 digit OTP."
        )
    return otp


def validate_provider_token(value: str) -> str:
    token = (value or '').strip()
    if not token:
        raise ValidationError(
            "Provider token is required",
            field_name='id_token',
            error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD,
            user_message="Sign-in was cancelled. Please try again."
        )
    return token
