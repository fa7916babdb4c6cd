"""Identity session backed by identity-provider ID tokens."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog
from jose import JWTError, jwt
from pydantic import BaseModel

from ekicho.core.config import require_config, settings
from ekicho.core.errors import AuthError, NotAuthenticatedError
from ekicho.core.subscriptions import ListenerRegistry, Subscription
from ekicho.utils.pii import hash_pii

logger = structlog.get_logger(__name__)

# Mock JWKS for DEBUG mode (populated by tests)
_mock_jwks: dict[str, Any] | None = None


def set_mock_jwks(jwks: dict[str, Any]) -> None:
    """
    Set mock JWKS for DEBUG mode testing.

    Args:
        jwks: JWKS dictionary with test public keys

    Raises:
        RuntimeError: If called when DEBUG=False
    """
    if not settings.DEBUG:
        msg = "set_mock_jwks() can only be called in DEBUG mode"
        raise RuntimeError(msg)
    global _mock_jwks  # noqa: PLW0603
    _mock_jwks = jwks


# JWKS cache (JSON Web Key Set from the identity provider)
_jwks_cache: dict[str, Any] | None = None
_jwks_cache_time: datetime | None = None


def clear_jwks_cache() -> None:
    """Forget the cached JWKS so the next verification fetches it again."""
    global _jwks_cache, _jwks_cache_time  # noqa: PLW0603
    _jwks_cache = None
    _jwks_cache_time = None


async def get_jwks(url: str) -> dict[str, Any]:
    """
    Fetch the identity provider's JWKS, cached for IDENTITY_JWKS_CACHE_TTL_SECONDS.

    Args:
        url: JWKS endpoint

    Returns:
        JWKS dictionary containing public keys

    Raises:
        AuthError: If the JWKS cannot be fetched
    """
    global _jwks_cache, _jwks_cache_time  # noqa: PLW0603

    now = datetime.now(UTC)
    ttl = timedelta(seconds=settings.IDENTITY_JWKS_CACHE_TTL_SECONDS)
    if (
        _jwks_cache is not None
        and "keys" in _jwks_cache
        and _jwks_cache_time is not None
        and now - _jwks_cache_time < ttl
    ):
        return _jwks_cache

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=10.0)
            response.raise_for_status()
            _jwks_cache = response.json()
            _jwks_cache_time = now
            return _jwks_cache
    except httpx.HTTPError as e:
        msg = f"Unable to fetch signing keys: {e!s}"
        raise AuthError(msg) from e


async def verify_id_token(token: str) -> dict[str, Any]:
    """
    Verify an RS256 ID token and return its claims.

    Args:
        token: Encoded JWT issued by the identity provider

    Returns:
        Claims dictionary (e.g., 'sub', 'email', 'name', 'firebase')

    Raises:
        AuthError: If the token is malformed, unsigned by a known key, expired,
            or issued for another project
    """
    require_config("FIREBASE_PROJECT_ID")

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        msg = f"Malformed ID token: {e!s}"
        raise AuthError(msg) from e

    kid = unverified_header.get("kid")
    if not kid:
        msg = "ID token missing 'kid' in header"
        raise AuthError(msg)

    if settings.DEBUG and _mock_jwks is not None:
        jwks = _mock_jwks
    else:
        jwks = await get_jwks(settings.IDENTITY_JWKS_URL)

    matching_key = next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)
    if not matching_key:
        msg = "Unable to find appropriate signing key"
        raise AuthError(msg)

    required_fields = ["kty", "kid", "n", "e"]
    missing_fields = [field for field in required_fields if field not in matching_key]
    if missing_fields:
        msg = f"Signing key is missing required fields: {', '.join(missing_fields)}"
        raise AuthError(msg)

    project_id = settings.FIREBASE_PROJECT_ID
    try:
        return jwt.decode(
            token,
            matching_key,
            algorithms=settings.IDENTITY_ALGORITHMS,
            audience=project_id,
            issuer=f"{settings.IDENTITY_ISSUER_PREFIX}{project_id}",
        )
    except JWTError as e:
        msg = f"Invalid ID token: {e!s}"
        raise AuthError(msg) from e


class AuthenticatedUser(BaseModel):
    """The signed-in identity as reported by the provider."""

    uid: str
    display_name: str | None = None
    email: str | None = None
    sign_in_provider: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "AuthenticatedUser":
        """
        Build the user from verified ID token claims.

        Raises:
            AuthError: If the token has no subject
        """
        uid = claims.get("sub")
        if not uid:
            msg = "ID token missing 'sub' claim"
            raise AuthError(msg)
        firebase_claims = claims.get("firebase") or {}
        return cls(
            uid=uid,
            display_name=claims.get("name"),
            email=claims.get("email"),
            sign_in_provider=firebase_claims.get("sign_in_provider"),
        )


class IdentitySession:
    """
    Current sign-in state plus a change-notification stream.

    Listeners are called synchronously with the new user (or None on
    sign-out) after every state change.
    """

    def __init__(self) -> None:
        self._current_user: AuthenticatedUser | None = None
        self._listeners: ListenerRegistry[AuthenticatedUser | None] = ListenerRegistry()

    @property
    def current_user(self) -> AuthenticatedUser | None:
        return self._current_user

    @property
    def current_user_id(self) -> str | None:
        return self._current_user.uid if self._current_user else None

    @property
    def is_signed_in(self) -> bool:
        return self._current_user is not None

    def require_user_id(self) -> str:
        """
        Return the signed-in user's id.

        Raises:
            NotAuthenticatedError: If nobody is signed in
        """
        if self._current_user is None:
            raise NotAuthenticatedError
        return self._current_user.uid

    def add_listener(self, listener: Callable[[AuthenticatedUser | None], None]) -> Subscription:
        """Register a callable receiving ``AuthenticatedUser | None`` on every change."""
        return self._listeners.add(listener)

    async def sign_in_with_id_token(self, token: str) -> AuthenticatedUser:
        """
        Verify an ID token and make its subject the current user.

        Raises:
            AuthError: If verification fails (the session is left unchanged)
        """
        claims = await verify_id_token(token)
        user = AuthenticatedUser.from_claims(claims)
        self.set_user(user)
        return user

    def set_user(self, user: AuthenticatedUser) -> None:
        """Switch the session to an already-verified user and notify listeners."""
        self._current_user = user
        logger.info("identity_signed_in", user_hash=hash_pii(user.uid), provider=user.sign_in_provider)
        self._listeners.notify(user)

    def sign_out(self) -> None:
        """Clear the current user and notify listeners (no-op when signed out)."""
        if self._current_user is None:
            return
        user_hash = hash_pii(self._current_user.uid)
        self._current_user = None
        logger.info("identity_signed_out", user_hash=user_hash)
        self._listeners.notify(None)
