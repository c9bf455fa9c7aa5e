"""Security utilities for the OAuth login flow.

Provides cryptographically secure state generation and validation for
CSRF protection of the authorization redirect.
"""

from __future__ import annotations

import secrets

from oauthflow.client.models.errors import SecurityError
from oauthflow.client.primitives.pkce import base64url_encode

STATE_BYTES = 16

INVALID_STATE_MESSAGE = "Invalid state parameter. Please try logging in again."


def new_state() -> str:
    """Generate cryptographically secure state parameter.

    The state parameter provides CSRF protection by ensuring the callback
    matches the original authorization request.

    Returns:
        Base64url-encoded random state (22 characters)
    """
    return base64url_encode(secrets.token_bytes(STATE_BYTES))


def validate_state(expected: str | None, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Args:
        expected: State stored when the authorization request was built
        actual: State parameter from the callback URL

    Raises:
        SecurityError: If either value is missing or they don't match
    """
    if not expected or not actual:
        raise SecurityError(INVALID_STATE_MESSAGE)
    if not secrets.compare_digest(expected.encode("utf-8"), actual.encode("utf-8")):
        raise SecurityError(INVALID_STATE_MESSAGE)
