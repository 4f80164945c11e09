# survey_incentives/utils/validators.py
"""
Input validation utilities for pool uploads and participant contact data.
"""

import re
from typing import Optional

from survey_incentives.core.config import settings
from survey_incentives.core.exceptions import ValidationError

# XXXX-XXXXXX-XXXX, letters and digits, matched case-insensitively
GIFT_CARD_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{6}-[A-Z0-9]{4}$", re.IGNORECASE)
URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)
E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def is_valid_gift_card_code(code: Optional[str]) -> bool:
    if not code:
        return False
    return bool(GIFT_CARD_CODE_PATTERN.match(code.strip()))


def normalize_gift_card_code(code: str) -> str:
    """
    Validate a gift card code and return it upper-cased.

    Raises:
        ValidationError: If the code is not in XXXX-XXXXXX-XXXX format
    """
    if not is_valid_gift_card_code(code):
        raise ValidationError(
            "Invalid gift card code format. Expected: XXXX-XXXXXX-XXXX",
            details={"value": code},
        )
    return code.strip().upper()


def is_valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    return bool(URL_PATTERN.match(url.strip()))


def validate_url(url: str) -> str:
    if not is_valid_url(url):
        raise ValidationError("Invalid URL. Expected an http(s) URL", details={"value": url})
    return url.strip()


def normalize_phone(phone: str, country_code: Optional[str] = None) -> str:
    """
    Normalize a phone number to E.164.

    Formatting characters are stripped. A bare national number of 10 digits
    gets the default country code; numbers starting with 00 are treated as
    international.

    Args:
        phone: Raw phone number as typed by the participant
        country_code: Calling code used for national numbers
            (defaults to settings.DEFAULT_COUNTRY_CODE)

    Returns:
        The number in +<digits> form

    Raises:
        ValidationError: If the result is not a plausible E.164 number
    """
    if not phone or not phone.strip():
        raise ValidationError("phone is required")

    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)

    if raw.startswith("+"):
        candidate = f"+{digits}"
    elif digits.startswith("00"):
        candidate = f"+{digits[2:]}"
    elif len(digits) == 10:
        candidate = f"+{country_code}{digits}"
    elif len(digits) == 10 + len(country_code) and digits.startswith(country_code):
        candidate = f"+{digits}"
    else:
        candidate = f"+{digits}"

    if not E164_PATTERN.match(candidate):
        raise ValidationError("Invalid phone number", details={"value": phone})
    return candidate


def mask_phone(phone: Optional[str]) -> str:
    """Mask all but the last four digits, for logs."""
    if not phone:
        return "<none>"
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]
