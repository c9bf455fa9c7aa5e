"""Authorization request builder.

Starts an authorization code flow: generates PKCE parameters and state,
persists them to per-flow storage and builds the URL the browser must be
sent to. Only one flow attempt is live at a time; starting a new one
overwrites any attempt that was abandoned.
"""

from __future__ import annotations

import logging
import time

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.flow import AuthorizationRequest
from oauthflow.client.models.security import FlowAttempt
from oauthflow.client.primitives.pkce import PKCEManager
from oauthflow.client.services.security import new_state
from oauthflow.client.services.storage import KeyValueStorage, MemoryStorage

logger = logging.getLogger(__name__)

CODE_VERIFIER_KEY = "code_verifier"
STATE_KEY = "oauth_state"
STARTED_AT_KEY = "oauth_started_at"

FLOW_KEYS = (CODE_VERIFIER_KEY, STATE_KEY, STARTED_AT_KEY)


class AuthorizationRequestBuilder:
    """Builds authorization requests and owns per-flow storage.

    The stored artifacts are read back by the callback handler and erased as
    soon as the attempt is consumed or rejected.
    """

    def __init__(self, flow_storage: KeyValueStorage | None = None):
        """Initialize the builder.

        Args:
            flow_storage: Per-flow storage backend. Defaults to memory.
        """
        self._storage = flow_storage if flow_storage is not None else MemoryStorage()
        self._pkce_manager = PKCEManager()

    async def begin_flow(self, config: OAuthClientConfig) -> str:
        """Start an authorization flow.

        Generates a PKCE pair and a state, stores them, and returns the
        authorization URL. Performs no network I/O; navigating the browser
        is the caller's job.

        Args:
            config: Client configuration

        Returns:
            Authorization URL for the user to visit

        Raises:
            ConfigurationError: If a required configuration field is missing
            PKCEError: If secure random parameters cannot be generated
        """
        config.require_complete()

        pkce_params = self._pkce_manager.generate_parameters()
        state = new_state()

        # Overwrites any unfinished attempt
        await self._storage.set(CODE_VERIFIER_KEY, pkce_params.code_verifier)
        await self._storage.set(STATE_KEY, state)
        await self._storage.set(STARTED_AT_KEY, repr(time.time()))

        auth_request = AuthorizationRequest(
            authorization_endpoint=config.authorization_endpoint,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            scope=config.scope,
            code_challenge=pkce_params.code_challenge,
            code_challenge_method=pkce_params.code_challenge_method,
            state=state,
        )

        logger.info(f"Generated authorization URL for client {config.client_id}")
        return auth_request.build_authorization_url()

    async def load_attempt(self) -> FlowAttempt | None:
        """Read the live flow attempt, if any."""
        code_verifier = await self._storage.get(CODE_VERIFIER_KEY)
        state = await self._storage.get(STATE_KEY)
        if code_verifier is None and state is None:
            return None

        started_at = await self._storage.get(STARTED_AT_KEY)
        try:
            started = float(started_at) if started_at else None
        except ValueError:
            started = None

        return FlowAttempt(code_verifier=code_verifier, state=state, started_at=started)

    async def discard_attempt(self) -> None:
        """Erase the verifier and state so they can never be reused."""
        await self._storage.delete(*FLOW_KEYS)
        logger.debug("Cleared per-flow storage")
