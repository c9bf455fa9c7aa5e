"""Token exchange and session models.

Contains the token request sent to the authorization server, the parsed
token response and the display-only projection of decoded token claims.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange parameters (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636).
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    code_verifier: str

    grant_type: str = "authorization_code"

    def to_json_body(self) -> dict[str, str]:
        """Convert to the JSON body expected by the token endpoint.

        Returns:
            Dictionary suitable for the httpx ``json`` parameter
        """
        return {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier,
            "client_id": self.client_id,
        }


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 Section 5.1).

    Only ``access_token`` is constrained. Providers disagree on the shape of
    the other fields, so they are kept as sent.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: Any | None = None
    expires_in: Any | None = None
    scope: Any | None = None


class UserClaims(BaseModel):
    """Display-only view of the claims carried by an access token.

    These values are decoded on the client without signature verification.
    They must never be used for authorization decisions.
    """

    id: str | None = None
    email: str | None = None
    name: str | None = None
    apps: list[Any] | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> UserClaims:
        apps = claims.get("apps")
        if apps is not None and not isinstance(apps, list):
            apps = [apps]
        sub = claims.get("sub")
        return cls(
            id=str(sub) if sub is not None else None,
            email=claims.get("email"),
            name=claims.get("name"),
            apps=apps,
        )
