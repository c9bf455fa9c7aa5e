"""OAuth 2.0 PKCE login client.

Wires the authorization request builder, token exchange, session store and
profile lookup together behind a small interface for host applications.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.flow import CallbackResult
from oauthflow.client.models.tokens import UserClaims
from oauthflow.client.services.callback import CallbackHandler
from oauthflow.client.services.flow import AuthorizationRequestBuilder
from oauthflow.client.services.http import create_http_client
from oauthflow.client.services.profile import ProfileClient
from oauthflow.client.services.session import SessionTokenStore
from oauthflow.client.services.storage import KeyValueStorage, MemoryStorage
from oauthflow.client.services.tokens import TokenExchangeClient

logger = logging.getLogger(__name__)


class OAuthLoginClient:
    """Complete PKCE login client for one registered application.

    A single instance is created per application and owns the HTTP client,
    per-flow storage and session token store.
    """

    def __init__(
        self,
        config: OAuthClientConfig,
        flow_storage: KeyValueStorage | None = None,
        session_store: SessionTokenStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the login client.

        Args:
            config: Client configuration
            flow_storage: Per-flow storage. Defaults to memory.
            session_store: Session token store. Defaults to a memory-backed one.
            http_client: Shared HTTP client. Defaults to one with
                ``config.timeout``.
        """
        self.config = config
        self.session_store = (
            session_store if session_store is not None else SessionTokenStore()
        )

        self._http_client = (
            http_client if http_client is not None else create_http_client(config.timeout)
        )
        self.builder = AuthorizationRequestBuilder(
            flow_storage if flow_storage is not None else MemoryStorage()
        )
        self.token_client = TokenExchangeClient(
            timeout=config.timeout, http_client=self._http_client
        )
        self.profile_client = ProfileClient(
            timeout=config.timeout, http_client=self._http_client
        )

    async def login(self) -> str:
        """Start a flow and return the URL the browser must navigate to."""
        logger.debug("Starting authorization flow")
        return await self.builder.begin_flow(self.config)

    def new_callback_handler(self) -> CallbackHandler:
        """Create the state machine for one incoming redirect."""
        return CallbackHandler(
            builder=self.builder,
            token_client=self.token_client,
            session_store=self.session_store,
            config=self.config,
            profile_client=self.profile_client,
        )

    async def handle_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        """Process a redirect with a fresh handler and return its outcome."""
        handler = self.new_callback_handler()
        return await handler.handle(params)

    async def logout(self) -> None:
        """Forget the session token and any unfinished flow attempt."""
        await self.session_store.clear()
        await self.builder.discard_attempt()
        logger.info("Logged out")

    async def is_authenticated(self) -> bool:
        return await self.session_store.is_authenticated()

    async def current_user(self) -> UserClaims | None:
        return await self.session_store.current_user()

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
