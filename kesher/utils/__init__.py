"""
Kesher Utilities

Common utilities used across the application.
"""

from .phone import (
    ADDRESS_SUFFIXES,
    GROUP_SUFFIX,
    INDIVIDUAL_SUFFIX,
    LEGACY_SUFFIX,
    digits_only,
    normalize_target,
    split_address,
    to_jid,
)
from .qr import PNG_DATA_URL_PREFIX, pairing_image

__all__ = [
    "ADDRESS_SUFFIXES",
    "GROUP_SUFFIX",
    "INDIVIDUAL_SUFFIX",
    "LEGACY_SUFFIX",
    "PNG_DATA_URL_PREFIX",
    "digits_only",
    "normalize_target",
    "pairing_image",
    "split_address",
    "to_jid",
]
