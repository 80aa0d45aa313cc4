"""
token_provider.py
-----------------
Purpose:
    Bearer tokens for backend requests.

Notes:
    - The identity provider itself is external; it is reached through the
      `AuthProvider` protocol (current user + fresh ID token).
    - `CachedTokenAuthProvider` reuses a token until it is close to expiry,
      reading `exp` from the JWT claims without verifying the signature
      (the backend verifies it).
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

import jwt

from outreach.config import settings
from outreach.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class AuthUser:
    uid: str
    email: str = ""
    display_name: str = ""
    photo_url: str = ""
    email_verified: bool = False


class AuthProvider(Protocol):
    def current_user(self) -> AuthUser | None: ...

    async def get_id_token(self, force_refresh: bool = False) -> str: ...


TokenFactory = Callable[[], Awaitable[str]]


def token_expiry(token: str) -> float | None:
    """`exp` claim of a JWT as a unix timestamp, None when absent or unreadable."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug("Token claims unreadable", error=str(e))
        return None
    exp = claims.get("exp")
    return float(exp) if exp is not None else None


class CachedTokenAuthProvider:
    """AuthProvider over a signed-in user and a coroutine that mints ID tokens."""

    def __init__(
        self,
        user: AuthUser | None,
        token_factory: TokenFactory,
        refresh_margin_s: int | None = None,
    ):
        self._user = user
        self._token_factory = token_factory
        self._refresh_margin_s = (
            refresh_margin_s
            if refresh_margin_s is not None
            else settings.AUTH_TOKEN_REFRESH_MARGIN_S
        )
        self._token: str | None = None
        self._expires_at: float | None = None

    def current_user(self) -> AuthUser | None:
        return self._user

    def sign_out(self) -> None:
        self._user = None
        self._token = None
        self._expires_at = None

    def _token_is_fresh(self) -> bool:
        if not self._token:
            return False
        if self._expires_at is None:
            # Opaque token: no expiry to check, always ask the factory
            return False
        return self._expires_at - time.time() > self._refresh_margin_s

    async def get_id_token(self, force_refresh: bool = False) -> str:
        if self._user is None:
            raise RuntimeError("No signed-in user")

        if not force_refresh and self._token_is_fresh():
            return self._token

        token = await self._token_factory()
        self._token = token
        self._expires_at = token_expiry(token)
        logger.debug(
            "ID token refreshed",
            user_id=self._user.uid,
            expires_in_s=(
                round(self._expires_at - time.time()) if self._expires_at is not None else None
            ),
        )
        return token


class AnonymousAuthProvider:
    """No signed-in user; requests go out without an Authorization header."""

    def current_user(self) -> AuthUser | None:
        return None

    async def get_id_token(self, force_refresh: bool = False) -> str:
        raise RuntimeError("No signed-in user")
