"""Client configuration for the OAuth login flow.

Configuration is supplied by the environment. Only the scopes, the API base
URL and (for local development) the client id carry defaults; everything
else must be provided before a flow can start.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from urllib.parse import urlparse

from pydantic import BaseModel, field_validator

from oauthflow.client.models.errors import ConfigurationError

DEFAULT_SCOPES = ["openid", "profile", "email"]
DEFAULT_CLIENT_ID = "local-dev-client"
DEFAULT_API_BASE_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT = 30.0

AUTHORIZE_PATH = "/api/oauth/authorize"
TOKEN_PATH = "/api/oauth/token"


class OAuthClientConfig(BaseModel):
    """Registered client settings for a single authorization server."""

    auth_server_url: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    scopes: list[str] = DEFAULT_SCOPES
    api_base_url: str = DEFAULT_API_BASE_URL
    timeout: float = DEFAULT_TIMEOUT

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value):
        if isinstance(value, str):
            return value.split()
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OAuthClientConfig:
        """Load configuration from ``OAUTH_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            OAuthClientConfig: Possibly incomplete configuration. Call
            ``require_complete`` before starting a flow.
        """
        env = os.environ if environ is None else environ

        try:
            timeout = float(env.get("OAUTH_TIMEOUT", DEFAULT_TIMEOUT))
        except ValueError as e:
            raise ConfigurationError(
                f"OAUTH_TIMEOUT must be a number of seconds: {e}", field="timeout"
            ) from e

        return cls(
            auth_server_url=env.get("OAUTH_AUTH_SERVER_URL") or None,
            client_id=env.get("OAUTH_CLIENT_ID") or DEFAULT_CLIENT_ID,
            redirect_uri=env.get("OAUTH_REDIRECT_URI") or None,
            scopes=env.get("OAUTH_SCOPES") or DEFAULT_SCOPES,
            api_base_url=env.get("OAUTH_API_BASE_URL") or DEFAULT_API_BASE_URL,
            timeout=timeout,
        )

    def require_complete(self) -> None:
        """Check that every field needed for a flow is present.

        Raises:
            ConfigurationError: Naming the first missing field
        """
        required = {
            "auth_server_url": self.auth_server_url,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scopes": [s for s in self.scopes if s.strip()],
        }
        for name, value in required.items():
            if not value or (isinstance(value, str) and not value.strip()):
                raise ConfigurationError(
                    f"OAuth client configuration is missing '{name}'", field=name
                )

    @property
    def base_url(self) -> str:
        """Authorization server URL without a trailing slash."""
        return (self.auth_server_url or "").rstrip("/")

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.base_url}{AUTHORIZE_PATH}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}{TOKEN_PATH}"

    @property
    def scope(self) -> str:
        """Scopes joined with spaces, as sent on the wire."""
        return " ".join(self.scopes)

    @property
    def redirect_path(self) -> str:
        """Path component of the redirect URI the host must listen on."""
        if not self.redirect_uri:
            return "/callback"
        return urlparse(self.redirect_uri).path or "/"
