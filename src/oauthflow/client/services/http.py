"""Shared HTTP helpers for the token and profile clients."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable

import httpx

from oauthflow.client.models.errors import (
    OAuthError,
    ProtocolError,
    TransientNetworkError,
)

# Failures where the request never produced a response: it timed out, or the
# connection was aborted underneath it.
TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def translate_transport_error(error: httpx.HTTPError, action: str) -> OAuthError:
    """Map an httpx exception onto the flow's error taxonomy.

    Args:
        error: Exception raised by httpx
        action: Short description used in the message, e.g. "token exchange"

    Returns:
        TransientNetworkError for timeouts and aborted requests, otherwise
        ProtocolError
    """
    if isinstance(error, httpx.TimeoutException):
        return TransientNetworkError(f"{action.capitalize()} timed out. Please try again.")
    if isinstance(error, TRANSIENT_ERRORS):
        return TransientNetworkError(f"{action.capitalize()} was interrupted: {error}")
    return ProtocolError(f"HTTP error during {action}: {error}")


async def send_within(
    request: Awaitable[httpx.Response], timeout: float, action: str
) -> httpx.Response:
    """Await an httpx request with a deadline covering the whole exchange.

    httpx timeouts bound each phase (connect, read, write, pool) separately,
    so a response trickling in can outlive them. This bounds the total.

    Raises:
        TransientNetworkError: On deadline expiry, timeouts and aborts
        ProtocolError: On any other transport failure
    """
    try:
        return await asyncio.wait_for(request, timeout)
    except asyncio.TimeoutError as e:
        raise TransientNetworkError(
            f"{action.capitalize()} timed out. Please try again."
        ) from e
    except httpx.HTTPError as e:
        raise translate_transport_error(e, action) from e


def create_http_client(timeout: float) -> httpx.AsyncClient:
    """Build an AsyncClient whose per-phase timeouts match the overall budget.

    The client keeps a cookie jar so cookies set by the server are sent on
    later requests.
    """
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout))
