"""
Phone Normalization

Turns free-form Brazilian phone input ("(11) 99123-4567", "+55 11 9123 4567",
"11991234567") into the canonical key used to join customers and orders and
to address the chat channel.

Canonical form: "55" + 2-digit area code + 8-digit subscriber number, always
12 characters. A 9-digit mobile number has its leading "9" collapsed so the
same customer maps to the same key whichever way they typed it.
"""

import re
from typing import Optional

COUNTRY_CODE = "55"
CANONICAL_LENGTH = len(COUNTRY_CODE) + 2 + 8

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: object) -> Optional[str]:
    """
    Canonicalize a phone number.

    Returns None for anything that is not a string or does not resolve to
    area code + subscriber number. Never raises.

    Example:
        >>> normalize_phone("(11) 99123-4567")
        '551191234567'
    """
    if not isinstance(raw, str):
        return None

    digits = _NON_DIGITS.sub("", raw)

    # Only a 12/13 digit string can carry the country code; a local number
    # with area code 55 has 10 or 11 digits.
    if len(digits) in (12, 13) and digits.startswith(COUNTRY_CODE):
        digits = digits[len(COUNTRY_CODE):]

    if len(digits) not in (10, 11):
        return None

    area_code, subscriber = digits[:2], digits[2:]
    if area_code.startswith("0"):
        return None

    if len(subscriber) == 9:
        if not subscriber.startswith("9"):
            return None
        subscriber = subscriber[1:]

    return f"{COUNTRY_CODE}{area_code}{subscriber}"


def is_canonical(phone: object) -> bool:
    """Check whether a value already is a canonical phone key."""
    return isinstance(phone, str) and normalize_phone(phone) == phone


def format_phone(canonical: str) -> str:
    """Human readable form used on receipts: +55 (11) 9123-4567."""
    area_code = canonical[2:4]
    subscriber = canonical[4:]
    return f"+{COUNTRY_CODE} ({area_code}) {subscriber[:4]}-{subscriber[4:]}"
