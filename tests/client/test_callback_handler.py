"""Tests for the authorization callback state machine.

Covers the redirect scenarios end to end with a mocked token endpoint and
profile API:
- successful login, provider errors and state mismatches
- at-most-once processing when the entry point is invoked twice
- per-flow storage erased on every exit path
- degraded success when the profile cannot be loaded
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.errors import (
    AuthorizationError,
    ProfileError,
    ProtocolError,
    SecurityError,
    TokenExchangeError,
    TransientNetworkError,
)
from oauthflow.client.models.flow import FlowState
from oauthflow.client.services.callback import CallbackHandler
from oauthflow.client.services.flow import (
    CODE_VERIFIER_KEY,
    STATE_KEY,
    AuthorizationRequestBuilder,
)
from oauthflow.client.services.session import SessionTokenStore
from oauthflow.client.services.storage import MemoryStorage

VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


class CallbackTestBase:
    def setup_method(self):
        # Arrange
        self.flow_storage = MemoryStorage()
        self.session_storage = MemoryStorage()
        self.builder = AuthorizationRequestBuilder(self.flow_storage)
        self.session_store = SessionTokenStore(self.session_storage)
        self.config = OAuthClientConfig(
            auth_server_url="https://auth.example.com",
            client_id="projects-app",
            redirect_uri="https://myapp.com/callback",
        )

        self.token_client = MagicMock()
        self.token_client.exchange = AsyncMock(return_value="abc.def.ghi")
        self.profile_client = MagicMock()
        self.profile_client.fetch_profile = AsyncMock(
            return_value={"email": "ada@example.com"}
        )

        self.handler = CallbackHandler(
            builder=self.builder,
            token_client=self.token_client,
            session_store=self.session_store,
            config=self.config,
            profile_client=self.profile_client,
            profile_retry_delay=0,
        )

        self.transitions: list[FlowState] = []
        self.handler.add_listener(lambda result: self.transitions.append(result.state))

    async def seed_flow(self, state: str = "S1", verifier: str | None = VERIFIER):
        await self.flow_storage.set(STATE_KEY, state)
        if verifier is not None:
            await self.flow_storage.set(CODE_VERIFIER_KEY, verifier)


class TestSuccessfulCallback(CallbackTestBase):
    async def test_valid_code_and_state_succeeds(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.state is FlowState.SUCCEEDED
        assert not result.degraded
        assert result.token == "abc.def.ghi"
        assert result.profile == {"email": "ada@example.com"}
        assert await self.session_store.load() == "abc.def.ghi"

        self.token_client.exchange.assert_awaited_once_with(
            "auth-code", VERIFIER, self.config
        )
        self.profile_client.fetch_profile.assert_awaited_once_with(
            "abc.def.ghi", self.config
        )

    async def test_flow_storage_is_cleared_after_success(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert len(self.flow_storage) == 0

    async def test_token_is_persisted_before_profile_fetch(self):
        # Arrange
        await self.seed_flow("S1")
        seen = {}

        async def fetch_profile(token, config):
            seen["stored"] = await self.session_store.load()
            seen["flow_keys"] = len(self.flow_storage)
            return {"email": "ada@example.com"}

        self.profile_client.fetch_profile.side_effect = fetch_profile

        # Act
        await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert seen == {"stored": "abc.def.ghi", "flow_keys": 0}

    async def test_transitions_pending_then_one_terminal(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert self.transitions == [FlowState.PENDING, FlowState.SUCCEEDED]

    async def test_params_from_parse_qs_lists(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        result = await self.handler.handle({"code": ["auth-code"], "state": ["S1"]})

        # Assert
        assert result.succeeded


class TestFailedCallback(CallbackTestBase):
    async def test_provider_error_uses_description(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        result = await self.handler.handle(
            {"error": "access_denied", "error_description": "User declined", "state": "S1"}
        )

        # Assert
        assert result.state is FlowState.FAILED
        assert result.reason == "User declined"
        assert isinstance(result.error, AuthorizationError)
        assert result.error.error_code == "access_denied"
        assert len(self.session_storage) == 0
        self.token_client.exchange.assert_not_awaited()

    async def test_provider_error_without_description(self):
        # Act
        result = await self.handler.handle({"error": "server_error"})

        # Assert
        assert result.reason == "server_error"

    async def test_provider_error_wins_over_code(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        result = await self.handler.handle(
            {"error": "access_denied", "code": "auth-code", "state": "S1"}
        )

        # Assert
        assert result.failed
        self.token_client.exchange.assert_not_awaited()

    async def test_missing_code(self):
        # Arrange
        await self.seed_flow("S1")

        # Act
        result = await self.handler.handle({"state": "S1"})

        # Assert
        assert result.failed
        assert result.reason == "No authorization code received"
        assert isinstance(result.error, ProtocolError)

    @pytest.mark.parametrize("returned_state", ["S2", "S", "S1 ", "s1", None])
    async def test_state_mismatch_blocks_exchange(self, returned_state):
        # Arrange
        await self.seed_flow("S1")
        params = {"code": "auth-code"}
        if returned_state is not None:
            params["state"] = returned_state

        # Act
        result = await self.handler.handle(params)

        # Assert
        assert result.failed
        assert isinstance(result.error, SecurityError)
        assert "invalid state parameter" in result.reason.lower()
        assert self.token_client.exchange.await_count == 0
        assert len(self.flow_storage) == 0

    async def test_no_stored_flow_is_security_error(self):
        # Act - redirect arrives with no flow attempt on record
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert isinstance(result.error, SecurityError)
        self.token_client.exchange.assert_not_awaited()

    async def test_missing_verifier_is_security_error(self):
        # Arrange
        await self.seed_flow("S1", verifier=None)

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert isinstance(result.error, SecurityError)
        assert "Code verifier not found" in result.reason
        self.token_client.exchange.assert_not_awaited()

    async def test_token_endpoint_rejection(self):
        # Arrange
        await self.seed_flow("S1")
        self.token_client.exchange.side_effect = TokenExchangeError(
            "Code expired", status_code=400, error_code="invalid_grant"
        )

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.failed
        assert result.reason == "Code expired"
        assert len(self.flow_storage) == 0
        assert len(self.session_storage) == 0
        self.profile_client.fetch_profile.assert_not_awaited()

    async def test_empty_token(self):
        # Arrange
        await self.seed_flow("S1")
        self.token_client.exchange.return_value = ""

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.reason == "Failed to obtain access token"
        assert len(self.session_storage) == 0

    async def test_unexpected_exception_still_fails_and_cleans_up(self):
        # Arrange
        await self.seed_flow("S1")
        self.token_client.exchange.side_effect = RuntimeError("boom")

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.failed
        assert "boom" in result.reason
        assert len(self.flow_storage) == 0
        assert self.transitions == [FlowState.PENDING, FlowState.FAILED]

    async def test_failed_attempt_cannot_be_replayed(self):
        # Arrange
        await self.seed_flow("S1")
        await self.handler.handle({"code": "bad", "state": "S2"})

        # Act - a later redirect carrying the original state
        second = CallbackHandler(
            builder=self.builder,
            token_client=self.token_client,
            session_store=self.session_store,
            config=self.config,
        )
        result = await second.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert isinstance(result.error, SecurityError)
        self.token_client.exchange.assert_not_awaited()

    async def test_storage_failure_during_cleanup_still_finishes(self):
        # Arrange
        await self.seed_flow("S1")
        self.flow_storage.delete = AsyncMock(side_effect=OSError("disk full"))

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.succeeded
        assert await asyncio.wait_for(self.handler.wait(), 1) is result
        assert self.transitions == [FlowState.PENDING, FlowState.SUCCEEDED]

    async def test_storage_failure_during_cleanup_after_rejection(self):
        # Arrange
        await self.seed_flow("S1")
        self.flow_storage.delete = AsyncMock(side_effect=OSError("disk full"))

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S2"})

        # Assert
        assert isinstance(result.error, SecurityError)
        assert await asyncio.wait_for(self.handler.wait(), 1) is result
        assert self.transitions == [FlowState.PENDING, FlowState.FAILED]


class TestIdempotentCallback(CallbackTestBase):
    async def test_concurrent_double_invocation_processes_once(self):
        # Arrange
        await self.seed_flow("S1")

        async def slow_exchange(code, verifier, config):
            await asyncio.sleep(0)
            return "abc.def.ghi"

        self.token_client.exchange.side_effect = slow_exchange
        params = {"code": "auth-code", "state": "S1"}

        # Act
        first, second = await asyncio.gather(
            self.handler.handle(params), self.handler.handle(params)
        )

        # Assert
        assert first is not None and first.succeeded
        assert second is None
        assert self.token_client.exchange.await_count == 1
        assert self.transitions == [FlowState.PENDING, FlowState.SUCCEEDED]

    async def test_sequential_second_invocation_is_noop(self):
        # Arrange
        await self.seed_flow("S1")
        params = {"code": "auth-code", "state": "S1"}
        await self.handler.handle(params)

        # Act
        again = await self.handler.handle(params)

        # Assert
        assert again is None
        assert self.token_client.exchange.await_count == 1
        assert self.handler.state is FlowState.SUCCEEDED

    async def test_wait_returns_terminal_result(self):
        # Arrange
        await self.seed_flow("S1")
        task = asyncio.create_task(self.handler.wait())

        # Act
        await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        result = await task
        assert result.succeeded


class TestProfileFetch(CallbackTestBase):
    async def test_canceled_profile_request_retried_once(self):
        # Arrange
        await self.seed_flow("S1")
        self.profile_client.fetch_profile.side_effect = [
            TransientNetworkError("Profile request was interrupted"),
            {"email": "ada@example.com"},
        ]

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.state is FlowState.SUCCEEDED
        assert not result.degraded
        assert result.profile == {"email": "ada@example.com"}
        assert await self.session_store.load() == "abc.def.ghi"
        assert self.profile_client.fetch_profile.await_count == 2

    async def test_profile_failure_degrades_but_keeps_token(self):
        # Arrange
        await self.seed_flow("S1")
        self.profile_client.fetch_profile.side_effect = ProfileError(
            "Server unavailable", status_code=503
        )

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.state is FlowState.SUCCEEDED
        assert result.degraded
        assert result.profile_error == "Server unavailable"
        assert await self.session_store.load() == "abc.def.ghi"
        assert self.profile_client.fetch_profile.await_count == 1

    async def test_repeated_interruption_degrades(self):
        # Arrange
        await self.seed_flow("S1")
        self.profile_client.fetch_profile.side_effect = TransientNetworkError(
            "Profile request timed out. Please try again."
        )

        # Act
        result = await self.handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.degraded
        assert self.profile_client.fetch_profile.await_count == 2
        assert await self.session_store.load() == "abc.def.ghi"

    async def test_no_profile_client_skips_lookup(self):
        # Arrange
        await self.seed_flow("S1")
        handler = CallbackHandler(
            builder=self.builder,
            token_client=self.token_client,
            session_store=self.session_store,
            config=self.config,
        )

        # Act
        result = await handler.handle({"code": "auth-code", "state": "S1"})

        # Assert
        assert result.succeeded
        assert not result.degraded
        assert result.profile is None
