"""Base64url helpers (RFC 4648 Section 5, unpadded)."""

from __future__ import annotations

import base64
import binascii


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(text: str) -> bytes:
    """Decode unpadded base64url text.

    Raises:
        ValueError: If the text is not valid base64url
    """
    padding = "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode((text + padding).encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64url data: {e}") from e
