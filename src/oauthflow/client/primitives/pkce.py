"""PKCE (Proof Key for Code Exchange) primitives.

Implements RFC 7636 S256 parameter generation to prevent authorization code
interception attacks.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from oauthflow.client.models.errors import PKCEError
from oauthflow.client.models.security import PKCEParameters

VERIFIER_BYTES = 32


def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without ``=`` padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def new_verifier() -> str:
    """Generate a cryptographically secure code verifier.

    RFC 7636 Section 4.1: 32 random octets, base64url-encoded, produce a
    43-character verifier from the unreserved alphabet.

    Returns:
        A 43-character code verifier

    Raises:
        PKCEError: If the system CSPRNG is unavailable
    """
    try:
        return base64url_encode(secrets.token_bytes(VERIFIER_BYTES))
    except (OSError, NotImplementedError) as e:
        raise PKCEError(f"Failed to obtain entropy for code verifier: {e}") from e


def challenge_for(code_verifier: str) -> str:
    """Generate code challenge from code verifier using S256 method.

    RFC 7636 Section 4.2: For S256, the code challenge is:
    BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))

    Args:
        code_verifier: The code verifier to hash

    Returns:
        Base64url-encoded SHA256 hash of the code verifier
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64url_encode(digest)


class PKCEManager:
    """Generates PKCE parameters for authorization flows."""

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for an authorization flow.

        Returns:
            PKCEParameters: Immutable parameters for the authorization flow

        Raises:
            PKCEError: If parameter generation fails
        """
        code_verifier = new_verifier()
        try:
            return PKCEParameters(
                code_verifier=code_verifier,
                code_challenge=challenge_for(code_verifier),
                code_challenge_method="S256",
            )
        except ValueError as e:
            raise PKCEError(f"Failed to generate PKCE parameters: {e}") from e
