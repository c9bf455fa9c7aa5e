"""Authorization code to access token exchange.

Implements the RFC 6749 token endpoint interaction with PKCE (RFC 7636)
against an authorization server that accepts JSON request bodies.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.errors import (
    ProtocolError,
    TokenExchangeError,
    TransientNetworkError,
)
from oauthflow.client.models.tokens import TokenRequest, TokenResponse
from oauthflow.client.services.http import create_http_client, send_within

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 1.0


class TokenExchangeClient:
    """Exchanges authorization codes for access tokens.

    Makes one initial attempt and, only when that attempt timed out or was
    aborted, exactly one retry after a fixed delay. Provider rejections and
    malformed responses are reported immediately.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the token exchange client.

        Args:
            timeout: HTTP request timeout in seconds
            retry_delay: Seconds to wait before the single retry
            http_client: Shared client to use instead of creating one
        """
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._http_client = (
            http_client if http_client is not None else create_http_client(timeout)
        )

    async def exchange(self, code: str, verifier: str, config: OAuthClientConfig) -> str:
        """Exchange an authorization code for an access token.

        Args:
            code: Authorization code from the redirect
            verifier: PKCE code verifier stored at flow start
            config: Client configuration

        Returns:
            The opaque access token. It is not persisted here.

        Raises:
            TokenExchangeError: If the server rejected the exchange
            ProtocolError: If the response was malformed or had no token
            TransientNetworkError: If both attempts timed out or were aborted
        """
        token_request = TokenRequest(
            token_endpoint=config.token_endpoint,
            code=code,
            redirect_uri=config.redirect_uri,
            client_id=config.client_id,
            code_verifier=verifier,
        )

        try:
            return await self._request_token(token_request)
        except TransientNetworkError as e:
            logger.warning(
                f"Token exchange attempt failed ({e}); retrying in {self.retry_delay}s"
            )

        await asyncio.sleep(self.retry_delay)
        return await self._request_token(token_request)

    async def _request_token(self, token_request: TokenRequest) -> str:
        logger.debug(
            f"Exchanging authorization code at {token_request.token_endpoint} "
            f"for client_id={token_request.client_id}"
        )

        response = await send_within(
            self._http_client.post(
                token_request.token_endpoint,
                json=token_request.to_json_body(),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            ),
            self.timeout,
            "token exchange",
        )

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> str:
        """Parse token endpoint response into the access token.

        Args:
            response: HTTP response from token endpoint

        Returns:
            The access token string

        Raises:
            TokenExchangeError: For any non-200 response
            ProtocolError: For a 200 response without a usable token
        """
        if response.status_code != 200:
            self._raise_provider_error(response)

        try:
            response_data = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid token response format: {e}") from e

        if not isinstance(response_data, dict):
            raise ProtocolError("No access token received from server")

        access_token = response_data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProtocolError("No access token received from server")

        token_response = TokenResponse(**response_data)
        logger.info(
            f"Token exchange successful (token_type={token_response.token_type}, "
            f"expires_in={token_response.expires_in})"
        )
        return token_response.access_token

    def _raise_provider_error(self, response: httpx.Response) -> None:
        try:
            body: Any = response.json()
        except ValueError:
            message = f"Server error: {response.status_code} {response.reason_phrase}"
            logger.warning(f"Token exchange failed with non-JSON response: {message}")
            raise TokenExchangeError(message, status_code=response.status_code)

        error_code = None
        message = "Token exchange failed"
        if isinstance(body, dict):
            error_code = body.get("error")
            message = (
                body.get("error_description")
                or body.get("error")
                or body.get("message")
                or message
            )

        logger.warning(
            f"Token exchange failed with {response.status_code}: "
            f"{error_code or 'unknown_error'} - {message}"
        )
        raise TokenExchangeError(
            str(message), status_code=response.status_code, error_code=error_code
        )

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
