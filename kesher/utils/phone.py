"""
Phone and address helpers.

The messaging network addresses chats with suffixed identifiers:
- "5511999@s.whatsapp.net": individual chat
- "5511999@c.us": individual chat, legacy form
- "1203630@g.us": group chat

Everything inside Kesher keys on the digits-only phone.
"""
from __future__ import annotations

INDIVIDUAL_SUFFIX = "@s.whatsapp.net"
LEGACY_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"

ADDRESS_SUFFIXES: tuple[str, ...] = (INDIVIDUAL_SUFFIX, LEGACY_SUFFIX, GROUP_SUFFIX)

MIN_TARGET_DIGITS = 8


def digits_only(value: str) -> str:
    """Strip every non-digit character."""
    return "".join(c for c in value if c.isdigit())


def split_address(value: object) -> tuple[str, bool]:
    """
    Split a chat address into its digits-only phone and group flag.

    Args:
        value: Raw address (phone, JID, or chat id)

    Returns:
        Tuple of (digits-only phone, is_group)
    """
    text = str(value).strip()
    is_group = GROUP_SUFFIX in text
    for suffix in ADDRESS_SUFFIXES:
        text = text.replace(suffix, "")
    return digits_only(text), is_group


def normalize_target(phone: str, country_code: str | None = None) -> str:
    """
    Normalize an outbound target to digits, optionally prefixing a country code.

    Raises:
        ValueError: If the target does not contain enough digits
    """
    digits, _ = split_address(phone)
    if country_code and not digits.startswith(country_code):
        digits = country_code + digits
    if len(digits) < MIN_TARGET_DIGITS:
        raise ValueError(f"Invalid target: {phone!r}")
    return digits


def to_jid(phone: str) -> str:
    """Render a phone as an individual-chat JID (JIDs pass through)."""
    if "@" in phone:
        return phone
    return f"{digits_only(phone)}{INDIVIDUAL_SUFFIX}"
