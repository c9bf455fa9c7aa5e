"""Authorization flow models.

Contains models for the authorization request, the redirect callback and
the outcome of processing it.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from oauthflow.client.models.errors import OAuthError


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the PKCE flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    state: str
    code_challenge_method: str = "S256"

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "state": self.state,
        }

        return f"{self.authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> AuthorizationResponse:
        """Build from redirect query parameters.

        Accepts both flat mappings and ``parse_qs`` style lists of values.
        """

        def get_single_param(key: str) -> str | None:
            value = params.get(key)
            if isinstance(value, (list, tuple)):
                value = value[0] if value else None
            return value or None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
        )

    def is_error(self) -> bool:
        return self.error is not None


class FlowState(str, enum.Enum):
    """Lifecycle of a single callback invocation."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not FlowState.PENDING


@dataclass
class CallbackResult:
    """Outcome of processing an authorization redirect.

    A ``SUCCEEDED`` result with ``profile_error`` set is degraded: the token
    was issued and stored but the user profile could not be loaded.
    """

    state: FlowState = FlowState.PENDING
    reason: str | None = None
    error: OAuthError | None = None
    token: str | None = None
    profile: dict[str, Any] | None = field(default=None)
    profile_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state is FlowState.FAILED

    @property
    def degraded(self) -> bool:
        return self.succeeded and self.profile_error is not None
