"""Authenticated user profile lookup against the API backend."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.errors import ProfileError, ProtocolError
from oauthflow.client.services.http import create_http_client, send_within

logger = logging.getLogger(__name__)

PROFILE_PATH = "/auth/me"


class ProfileClient:
    """Fetches the current user's profile with a bearer token.

    Used to confirm a freshly issued token is accepted end to end.
    """

    def __init__(self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None):
        self.timeout = timeout
        self._http_client = (
            http_client if http_client is not None else create_http_client(timeout)
        )

    async def fetch_profile(self, token: str, config: OAuthClientConfig) -> dict[str, Any]:
        """Fetch the authenticated user's profile.

        Args:
            token: Bearer access token
            config: Client configuration providing ``api_base_url``

        Returns:
            The user object from the response envelope

        Raises:
            TransientNetworkError: If the request timed out or was aborted
            ProfileError: If the API answered with a non-200 status
            ProtocolError: If the response body is not a JSON object
        """
        url = f"{config.api_base_url.rstrip('/')}{PROFILE_PATH}"
        logger.debug(f"Fetching user profile from {url}")

        response = await send_within(
            self._http_client.get(
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            ),
            self.timeout,
            "profile request",
        )

        if response.status_code != 200:
            message = f"Profile request failed: {response.status_code} {response.reason_phrase}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                message = str(body["message"])
            raise ProfileError(message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid profile response format: {e}") from e

        if not isinstance(body, dict):
            raise ProtocolError("Invalid profile response format: expected an object")

        # API responses are wrapped as {"success", "message", "data"}
        data = body.get("data", body)
        if not isinstance(data, dict):
            raise ProtocolError("Invalid profile response format: missing user data")
        return data

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
