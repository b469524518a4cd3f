"""
Phone number helpers for reminder recipients.

Numbers stored by the front desk are often national ("333 123 4567") or
carry a "00" international prefix; everything is normalized to E.164 before
it reaches the notification provider.
"""

import re

import phonenumbers

from shared.config import get_settings


def normalize_phone(phone: str | None, region: str | None = None) -> str | None:
    """
    Normalize a phone number to E.164.

    Args:
        phone: Raw phone number as stored on the customer
        region: Default region for national numbers (PHONE_DEFAULT_REGION when None)

    Returns:
        E.164 string (e.g. "+393331234567"), or None if the number is missing
        or not a valid number
    """
    if not phone or not phone.strip():
        return None

    raw = phone.strip()
    if raw.startswith("00"):
        raw = "+" + raw[2:]

    region = region or get_settings().PHONE_DEFAULT_REGION
    try:
        parsed = phonenumbers.parse(raw, region)
    except phonenumbers.NumberParseException:
        return None

    if not phonenumbers.is_valid_number(parsed):
        return None

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def phone_digits(phone: str | None) -> str:
    """Digits only, as used by WhatsApp in recipient_id / wa_id fields."""
    if not phone:
        return ""
    return re.sub(r"\D", "", phone)


def mask_phone(phone: str | None) -> str:
    """Mask all but the last four digits for log output."""
    digits = phone_digits(phone)
    if len(digits) <= 4:
        return "****"
    return f"***{digits[-4:]}"
