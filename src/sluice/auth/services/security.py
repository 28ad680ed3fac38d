"""Security utilities for OAuth 2.1 flows.

State parameter generation and validation for CSRF protection.
"""

from __future__ import annotations

import secrets
import string

from sluice.auth.models.errors import StateValidationError


def generate_state() -> str:
    """Generate a cryptographically secure state parameter.

    Returns:
        Random URL-safe state string (32 characters)
    """
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(32))


def validate_state(expected: str, actual: str | None) -> None:
    """Validate that the callback state matches the one we generated.

    Args:
        expected: State parameter from the authorization request
        actual: State parameter from the callback

    Raises:
        StateValidationError: If the state is missing or does not match
    """
    if actual is None:
        raise StateValidationError(
            "Authorization server callback missing required state parameter"
        )
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise StateValidationError(
            f"State mismatch - possible CSRF attack (expected {expected!r}, "
            f"got {actual!r})"
        )
