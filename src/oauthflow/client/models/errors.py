"""Exception hierarchy for the OAuth 2.0 PKCE login flow.

Provides specific exception types for different failure modes to enable
precise error handling and retry decisions.
"""

from __future__ import annotations


class OAuthError(Exception):
    """Base exception for all OAuth login flow errors."""

    pass


class ConfigurationError(OAuthError):
    """Raised when required client configuration is missing or invalid.

    Surfaced before any network call is made.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class PKCEError(OAuthError):
    """Raised when PKCE parameter generation fails."""

    pass


class SecurityError(OAuthError):
    """Raised when callback validation fails for security reasons.

    Covers a missing or mismatched state parameter (possible CSRF or code
    injection) and a missing stored code verifier. Never retried.
    """

    pass


class ProtocolError(OAuthError):
    """Raised when a server response or callback is malformed or incomplete."""

    pass


class TransientNetworkError(OAuthError):
    """Raised when a request timed out or was aborted before completing.

    This is the only failure class the flow retries, and only once.
    """

    pass


class ProviderError(OAuthError):
    """Raised when the authorization server or API reports an explicit error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthorizationError(ProviderError):
    """Raised when the redirect carries an explicit ``error`` parameter."""

    pass


class TokenExchangeError(ProviderError):
    """Raised when the token endpoint rejects the authorization code."""

    pass


class ProfileError(ProviderError):
    """Raised when the API backend rejects the profile request."""

    pass
