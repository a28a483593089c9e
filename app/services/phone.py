"""Phone number cleaning and validation."""

from __future__ import annotations

import re

import phonenumbers

from app.errors import ValidationError

_MIN_DIGITS = 8
_MAX_DIGITS = 15

_FORMAT_RE = re.compile(r"\+?[1-9][0-9]*")


def clean_phone_number(phone_number: str) -> str:
    """
    Drop spaces, dashes and brackets, keeping a leading ``+``.

    Digits from other scripts (full-width or Arabic-Indic) come back as
    ASCII, so the result is always ``+`` plus ``0-9``.
    """
    stripped = phone_number.strip()
    prefix = "+" if stripped.startswith("+") else ""
    return prefix + phonenumbers.normalize_digits_only(stripped)


def validate_phone_number(phone_number: str | None) -> str:
    """
    Return the cleaned number or raise ValidationError.

    Accepted: optional leading ``+`` followed by 8 to 15 digits, the first
    of which is not zero (international format, e.g. ``+15551234567``).
    """
    if not phone_number or not phone_number.strip():
        raise ValidationError("Phone number is required")

    cleaned = clean_phone_number(phone_number)
    if not _FORMAT_RE.fullmatch(cleaned):
        raise ValidationError(
            "Invalid phone number format. Please use international format (e.g., +1234567890)"
        )

    digits = len(cleaned.lstrip("+"))
    if digits < _MIN_DIGITS:
        raise ValidationError("Phone number too short. Please include country code.")
    if digits > _MAX_DIGITS:
        raise ValidationError("Phone number too long. Maximum 15 digits allowed.")

    return cleaned
