"""
Phone number helpers for SMS delivery.
"""

import re
from typing import Any, Optional

_NON_DIGITS = re.compile(r"\D")

MIN_PHONE_DIGITS = 10


def is_valid_phone(phone: Any) -> bool:
    """A phone is usable when it has at least 10 digits once formatting is removed."""
    if not phone or not isinstance(phone, str):
        return False
    return len(_NON_DIGITS.sub("", phone)) >= MIN_PHONE_DIGITS


def format_for_sms(phone: Optional[str]) -> Optional[str]:
    """
    Format a phone number as E.164 for SMS.

    Examples:
        "(555) 123-4567"  -> "+15551234567"
        "1-555-123-4567"  -> "+15551234567"
        "44 20 7946 0958" -> "+442079460958"
    """
    if not phone:
        return None
    digits = _NON_DIGITS.sub("", phone)
    if not digits:
        return None
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def first_valid_phone(*candidates: Any) -> Optional[str]:
    """Return the first candidate that passes is_valid_phone."""
    for candidate in candidates:
        if is_valid_phone(candidate):
            return candidate
    return None
