"""
Phone Normalization
===================
Turkish mobile numbers in three shapes:
    storage    05551234567
    display    0555 123 45 67
    messaging  +905551234567
"""

from __future__ import annotations

import re

NON_DIGITS = re.compile(r"\D")
MOBILE_PATTERNS = (
    re.compile(r"^905[0-9]{9}$"),
    re.compile(r"^05[0-9]{9}$"),
    re.compile(r"^5[0-9]{9}$"),
)

STORAGE = "storage"
MESSAGING = "messaging"
DISPLAY = "display"


def digits_only(phone: str) -> str:
    return NON_DIGITS.sub("", phone or "")


def to_storage_form(phone: str) -> str:
    """Canonical national form. Unrecognised input comes back as bare digits."""
    digits = digits_only(phone)

    if digits.startswith("90") and len(digits) == 12:
        return "0" + digits[2:]
    if len(digits) == 10:
        return "0" + digits
    return digits


def to_messaging_form(phone: str) -> str:
    """International form used for WhatsApp links and the parser."""
    digits = digits_only(phone)

    if digits.startswith("0") and len(digits) == 11:
        return "+90" + digits[1:]
    if digits.startswith("90") and len(digits) == 12:
        return "+" + digits
    if len(digits) == 10:
        return "+90" + digits
    return digits


def to_display_form(phone: str) -> str:
    digits = to_storage_form(phone)

    if len(digits) == 11 and digits.startswith("0"):
        return f"{digits[:4]} {digits[4:7]} {digits[7:9]} {digits[9:]}"
    return phone


def validate_phone(phone: str) -> bool:
    """True only for a Turkish mobile number (5XX) in any accepted prefix form."""
    digits = digits_only(phone)
    return any(pattern.match(digits) for pattern in MOBILE_PATTERNS)


_FORMATTERS = {
    STORAGE: to_storage_form,
    MESSAGING: to_messaging_form,
    DISPLAY: to_display_form,
}


def normalize_phone(phone: str, target: str = STORAGE) -> str:
    try:
        formatter = _FORMATTERS[target]
    except KeyError:
        raise ValueError(
            f"Unknown phone format '{target}'. Expected one of: {sorted(_FORMATTERS)}"
        ) from None
    return formatter(phone)
