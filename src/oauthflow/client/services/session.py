"""Session token store.

Owns the long-lived access token issued by a successful login. A single
instance is constructed per application and passed to whoever needs it.

Claims decoding is deliberately unverified: the token signature is not
checked on the client, so decoded claims are only suitable for display and
personalization. Authorization is enforced by the resource server, which
answers 401 once the token is no longer accepted.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

from oauthflow.client.models.tokens import UserClaims
from oauthflow.client.services.storage import KeyValueStorage, MemoryStorage

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"


class SessionTokenStore:
    """Persists, loads and clears the session's bearer token."""

    def __init__(
        self, storage: KeyValueStorage | None = None, key: str = ACCESS_TOKEN_KEY
    ):
        """Initialize the session token store.

        Args:
            storage: Session-scoped storage backend. Defaults to memory.
            key: Storage key holding the token
        """
        self._storage = storage if storage is not None else MemoryStorage()
        self._key = key

    async def save(self, token: str) -> None:
        if not token:
            raise ValueError("Refusing to store an empty access token")
        await self._storage.set(self._key, token)
        logger.debug("Access token stored in session storage")

    async def load(self) -> str | None:
        token = await self._storage.get(self._key)
        return token or None

    async def clear(self) -> None:
        await self._storage.delete(self._key)
        logger.debug("Access token cleared from session storage")

    async def is_authenticated(self) -> bool:
        """True when a non-empty token is loadable.

        No expiry check is performed locally.
        """
        return bool(await self.load())

    async def current_user(self) -> UserClaims | None:
        """Decode the stored token into a display-only user view.

        Returns:
            UserClaims, or None when there is no token or its claims cannot
            be decoded. None here does not mean the session is invalid.
        """
        token = await self.load()
        if not token:
            return None
        claims = self.decode_claims(token)
        if claims is None:
            return None
        return UserClaims.from_claims(claims)

    @staticmethod
    def decode_claims(token: str) -> dict[str, Any] | None:
        """Decode the payload segment of a JWT-shaped token without verification.

        Args:
            token: Three-part dot-delimited token

        Returns:
            The decoded claims object, or None on any structural failure
        """
        if not isinstance(token, str):
            return None
        parts = token.split(".")
        if len(parts) != 3 or not parts[1]:
            return None

        segment = parts[1]
        padded = segment + "=" * (-len(segment) % 4)
        try:
            raw = base64.b64decode(padded, altchars=b"-_", validate=True)
            claims = json.loads(raw.decode("utf-8"))
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Token claims could not be decoded: {e}")
            return None

        if not isinstance(claims, dict):
            return None
        return claims
