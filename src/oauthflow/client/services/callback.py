"""Authorization callback handling.

Drives one redirect callback from PENDING to exactly one terminal state:

1. ignore re-entry for the same navigation (one-shot latch)
2. fail on an explicit provider ``error``
3. fail when no authorization code was returned
4. fail when the returned state does not match the stored state
5. exchange the code using the stored PKCE verifier
6. fail when no token came back
7. erase the flow attempt and persist the token
8. confirm the token by fetching the user's profile, retrying once if the
   request was aborted; a profile failure degrades the success but keeps
   the token

Per-flow storage is erased on every exit path so a rejected attempt can
never be validated by a later redirect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.errors import (
    AuthorizationError,
    OAuthError,
    ProtocolError,
    SecurityError,
    TransientNetworkError,
)
from oauthflow.client.models.flow import AuthorizationResponse, CallbackResult, FlowState
from oauthflow.client.services.flow import AuthorizationRequestBuilder
from oauthflow.client.services.profile import ProfileClient
from oauthflow.client.services.security import validate_state
from oauthflow.client.services.session import SessionTokenStore
from oauthflow.client.services.tokens import TokenExchangeClient

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_RETRY_DELAY = 0.5

CallbackListener = Callable[[CallbackResult], None]


class CallbackHandler:
    """State machine for a single authorization redirect.

    One instance handles one navigation. The host may invoke ``handle`` more
    than once for the same redirect; only the first call does any work.
    """

    def __init__(
        self,
        builder: AuthorizationRequestBuilder,
        token_client: TokenExchangeClient,
        session_store: SessionTokenStore,
        config: OAuthClientConfig,
        profile_client: ProfileClient | None = None,
        profile_retry_delay: float = DEFAULT_PROFILE_RETRY_DELAY,
    ):
        self._builder = builder
        self._token_client = token_client
        self._session_store = session_store
        self._profile_client = profile_client
        self._config = config
        self.profile_retry_delay = profile_retry_delay

        self._started = False
        self._result = CallbackResult()
        self._done = asyncio.Event()
        self._listeners: list[CallbackListener] = []

    @property
    def state(self) -> FlowState:
        return self._result.state

    @property
    def result(self) -> CallbackResult:
        return self._result

    @property
    def started(self) -> bool:
        return self._started

    def add_listener(self, listener: CallbackListener) -> None:
        """Register a function called on every state transition."""
        self._listeners.append(listener)

    async def wait(self) -> CallbackResult:
        """Wait until the callback reaches a terminal state."""
        await self._done.wait()
        return self._result

    async def handle(self, params: Mapping[str, Any]) -> CallbackResult | None:
        """Process the redirect query parameters.

        Args:
            params: Query parameters of the redirect (``code``, ``state``,
                ``error``, ``error_description``)

        Returns:
            The terminal CallbackResult, or None if this handler had already
            been invoked
        """
        # Latch before the first await so a concurrent second call sees it
        if self._started:
            logger.debug("Authorization callback already being processed; ignoring")
            return None
        self._started = True
        self._notify()

        response = AuthorizationResponse.from_params(params)

        failure: OAuthError | None = None
        token: str | None = None
        try:
            token = await self._obtain_token(response)
        except OAuthError as e:
            failure = e
        except Exception as e:
            logger.exception("Unexpected error while processing authorization callback")
            failure = OAuthError(f"Login failed: {e}")
        finally:
            # The attempt is consumed whatever happened
            await self._discard_attempt()

        if failure is not None:
            return self._fail(failure)

        try:
            await self._session_store.save(token)
        except Exception as e:
            logger.exception("Failed to persist access token")
            return self._fail(OAuthError(f"Failed to store access token: {e}"))

        profile, profile_error = await self._load_profile(token)

        self._result.token = token
        self._result.profile = profile
        self._result.profile_error = profile_error
        if profile_error:
            logger.warning(f"Logged in but profile is unavailable: {profile_error}")
        else:
            logger.info("Authorization callback completed successfully")
        return self._transition(FlowState.SUCCEEDED)

    async def _obtain_token(self, response: AuthorizationResponse) -> str:
        if response.is_error():
            logger.warning(
                f"Authorization server returned error: {response.error} - "
                f"{response.error_description}"
            )
            raise AuthorizationError(
                response.error_description or response.error,
                error_code=response.error,
            )

        if not response.code:
            raise ProtocolError("No authorization code received")

        attempt = await self._builder.load_attempt()
        try:
            validate_state(attempt.state if attempt else None, response.state)
        except SecurityError:
            logger.warning("State mismatch in authorization callback - possible CSRF attack")
            raise

        if not attempt.code_verifier:
            raise SecurityError("Code verifier not found. Please try logging in again.")

        token = await self._token_client.exchange(
            response.code, attempt.code_verifier, self._config
        )
        if not token:
            raise ProtocolError("Failed to obtain access token")
        return token

    async def _discard_attempt(self) -> None:
        # Must not raise: the callback still has to reach a terminal state
        try:
            await self._builder.discard_attempt()
        except Exception:
            logger.exception("Failed to clear per-flow storage")

    async def _load_profile(self, token: str) -> tuple[dict[str, Any] | None, str | None]:
        """Fetch the profile, retrying once if the request was aborted.

        Returns:
            Tuple of (profile, error message); exactly one is None
        """
        if self._profile_client is None:
            return None, None

        try:
            return await self._fetch_profile(token), None
        except TransientNetworkError as e:
            logger.warning(
                f"Profile request interrupted ({e}); retrying in "
                f"{self.profile_retry_delay}s"
            )
        except Exception as e:
            return None, self._describe_profile_error(e)

        await asyncio.sleep(self.profile_retry_delay)
        try:
            return await self._fetch_profile(token), None
        except Exception as e:
            return None, self._describe_profile_error(e)

    async def _fetch_profile(self, token: str) -> dict[str, Any]:
        return await self._profile_client.fetch_profile(token, self._config)

    def _describe_profile_error(self, error: Exception) -> str:
        if not isinstance(error, OAuthError):
            logger.exception("Unexpected error while fetching profile")
        return str(error) or error.__class__.__name__

    def _fail(self, error: OAuthError) -> CallbackResult:
        logger.warning(f"Authorization callback failed: {error}")
        self._result.error = error
        self._result.reason = str(error)
        return self._transition(FlowState.FAILED)

    def _transition(self, state: FlowState) -> CallbackResult:
        if self._result.state.is_terminal:
            raise RuntimeError(
                f"Callback already finished as {self._result.state.value}"
            )
        self._result.state = state
        self._done.set()
        self._notify()
        return self._result

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener(self._result)
            except Exception:
                logger.exception("Callback listener raised")
