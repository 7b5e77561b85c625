"""Correlation values binding an OAuth state to the browser that started it."""

from __future__ import annotations

import secrets
import string

from keyway.auth.models.errors import StateValidationError


def generate_correlation_id() -> str:
    """Generate a cryptographically secure correlation id.

    Returns:
        32 random URL-safe characters, usable as a cookie value
    """
    alphabet = string.ascii_letters + string.digits + "-_"
    return "".join(secrets.choice(alphabet) for _ in range(32))


def validate_correlation(expected: str | None, actual: str | None) -> None:
    """Validate the correlation id from the state matches the cookie.

    Args:
        expected: Correlation id carried inside the protected state
        actual: Correlation id from the request cookie

    Raises:
        StateValidationError: If either value is missing or they differ
    """
    if not expected or not actual:
        raise StateValidationError("Correlation failed - correlation id missing")
    if not secrets.compare_digest(expected.encode("utf-8"), actual.encode("utf-8")):
        raise StateValidationError(
            "Correlation failed - possible CSRF attack or replayed state"
        )
