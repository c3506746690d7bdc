"""
Validation and sanitisation helpers shared by the notifier and the
payment reconciler.

Public API:
  is_valid_email(email) -> bool
  mask_email(email) -> str
  status_note(client_messages, status) -> str
  sanitize_case_data(data) -> dict
"""

import re
from typing import Any, Mapping, Optional

# local-part@domain.tld, ASCII only, no whitespace and a single "@"
_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+", re.ASCII)

_ANGLE_BRACKETS_RE = re.compile(r"[<>]")

STATUS_NOTE_MAX_LENGTH = 500
FIELD_MAX_LENGTH = 1000

# Compared after lower-casing and removing "_" and "-", so "cardNumber",
# "card_number" and "card-number" all match "cardnumber".
SENSITIVE_FIELDS = frozenset({
    "password",
    "ssn",
    "socialsecuritynumber",
    "cardnumber",
    "cvv",
    "cvc",
    "accountnumber",
    "routingnumber",
    "driverslicensenumber",
})


def is_valid_email(email: Optional[str]) -> bool:
    """Return True if email is a non-empty, syntactically valid ASCII address."""
    if not email or not isinstance(email, str):
        return False
    if not email.isascii():
        return False
    return bool(_EMAIL_RE.fullmatch(email))


def mask_email(email: Optional[str]) -> str:
    """
    Mask an address for logs: keep the first two characters of the local
    part and the whole domain.

    Examples:
        "johndoe@x.com" -> "jo***@x.com"
        "jo@x.com"      -> "**@x.com"
        "nonsense"      -> "unknown"
    """
    if not email or not isinstance(email, str) or "@" not in email:
        return "unknown"
    name, _, domain = email.rpartition("@")
    if not name or not domain:
        return "unknown"
    masked = name[:2] + "***" if len(name) > 2 else "**"
    return f"{masked}@{domain}"


def strip_angle_brackets(value: str) -> str:
    return _ANGLE_BRACKETS_RE.sub("", value)


def status_note(client_messages: Optional[Mapping[str, Any]], status: str) -> str:
    """Client-facing explanation for status, cleaned for use in an email body."""
    if not client_messages:
        return ""
    message = client_messages.get(status)
    if not message:
        return ""
    return strip_angle_brackets(str(message))[:STATUS_NOTE_MAX_LENGTH]


def _is_sensitive(key: str) -> bool:
    normalized = key.lower().replace("_", "").replace("-", "")
    return normalized in SENSITIVE_FIELDS


def sanitize_case_data(data: Mapping[str, Any]) -> dict:
    """
    Return a copy of data that is safe to interpolate into outbound messages.

    Sensitive fields are dropped, angle brackets are stripped from strings
    and each string is capped at FIELD_MAX_LENGTH. Nested mappings are
    sanitised the same way.
    """
    sanitized: dict = {}
    for key, value in data.items():
        if _is_sensitive(str(key)):
            continue
        if isinstance(value, str):
            sanitized[key] = strip_angle_brackets(value)[:FIELD_MAX_LENGTH]
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_case_data(value)
        else:
            sanitized[key] = value
    return sanitized
