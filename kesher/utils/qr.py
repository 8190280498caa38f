"""
Pairing code rendering.

Embedded sessions only hand out the raw pairing string; callers that
display it need a scannable image.
"""
from __future__ import annotations

import logging

import segno

logger = logging.getLogger(__name__)

PNG_DATA_URL_PREFIX = "data:image/png;base64,"


def pairing_image(code: str, scale: int = 6) -> str | None:
    """
    Render a pairing code as a PNG data URL.

    Returns:
        "data:image/png;base64,..." or None if the code cannot be encoded
    """
    if not code:
        return None
    try:
        qr = segno.make_qr(code, error="m")
    except ValueError as e:
        logger.warning(f"[qr] Could not encode pairing code: {e}")
        return None
    return qr.png_data_uri(scale=scale, border=2)
