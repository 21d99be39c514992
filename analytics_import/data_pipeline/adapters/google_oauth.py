"""Google OAuth 2.0 token management for the Analytics read-only scope."""

import asyncio
import time
import weakref
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
import structlog

from analytics_import.core.exceptions import (
    ExternalServiceException,
    NotFoundException,
    OAuthException,
    ValidationException,
)

if TYPE_CHECKING:
    from analytics_import.import_engine.stores import CredentialStore

logger = structlog.get_logger(__name__)

ANALYTICS_SCOPE = "https://www.googleapis.com/auth/analytics.readonly"
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"

# Tokens closer than this to expiry are treated as expired (milliseconds)
EXPIRY_BUFFER_MS = 5 * 60 * 1000


@dataclass
class OAuthTokenSet:
    """Tokens issued for one user. ``expires_at`` is epoch milliseconds."""

    access_token: str
    refresh_token: str | None
    expires_at: int
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_provider(
        cls,
        data: dict[str, Any],
        now_ms: int,
        refresh_token: str | None = None,
    ) -> "OAuthTokenSet":
        """Build from a token endpoint response.

        ``refresh_token`` is kept when the provider does not issue a new one.
        """
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_at=now_ms + int(data.get("expires_in", 0)) * 1000,
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthTokenSet":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=int(data["expires_at"]),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )


@dataclass
class TokenValidationResult:
    valid: bool
    expires_at: int | None = None
    scope: str | None = None
    error: str | None = None


def _provider_error(response: httpx.Response, fallback: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return fallback
    if not isinstance(data, dict):
        return fallback
    return data.get("error_description") or data.get("error") or fallback


class TokenManager:
    """Authorization-code flow, refresh, validation and revocation.

    When a credential store is supplied, ``get_valid_token`` and
    ``disconnect`` manage each user's stored token set. Refreshes for one
    user are serialized so concurrent batches trigger a single refresh.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        credential_store: "CredentialStore | None" = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the token manager.

        Args:
            client_id: OAuth client id
            client_secret: OAuth client secret
            redirect_uri: Callback URL registered with the provider
            credential_store: Optional per-user token persistence
            timeout: Per-request deadline in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
            clock: Wall clock in seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.credential_store = credential_store
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        # Entries disappear once no refresh holds them
        self._refresh_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_form(self, url: str, data: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.post(
                url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error("oauth_request_failed", url=url, error=str(e))
            raise ExternalServiceException("Google OAuth", str(e)) from e

    def generate_auth_url(self, state: str | None = None) -> str:
        """Build the consent URL.

        ``access_type=offline`` and ``prompt=consent`` make the provider
        issue a refresh token every time.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": ANALYTICS_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, code: str) -> OAuthTokenSet:
        """Exchange an authorization code for a token set.

        Raises:
            ValidationException: If code is empty
            OAuthException: If the provider rejects the code
        """
        if not code:
            raise ValidationException("Authorization code is required")

        response = await self._post_form(
            TOKEN_URL,
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if not response.is_success:
            raise OAuthException(_provider_error(response, "Token exchange failed"))

        return OAuthTokenSet.from_provider(response.json(), self._now_ms())

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokenSet:
        """Get a new access token, keeping the refresh token unless replaced.

        Raises:
            ValidationException: If refresh_token is empty
            OAuthException: If the provider rejects the refresh token
        """
        if not refresh_token:
            raise ValidationException("Refresh token is required")

        response = await self._post_form(
            TOKEN_URL,
            {
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
        )
        if not response.is_success:
            raise OAuthException(_provider_error(response, "Token refresh failed"))

        return OAuthTokenSet.from_provider(
            response.json(), self._now_ms(), refresh_token=refresh_token
        )

    async def validate_token(self, access_token: str) -> TokenValidationResult:
        """Ask the provider about a token. Never raises."""
        if not access_token:
            return TokenValidationResult(valid=False, error="Access token is required")

        try:
            client = await self._get_client()
            response = await client.get(TOKENINFO_URL, params={"access_token": access_token})
            if not response.is_success:
                return TokenValidationResult(valid=False, error="Invalid or expired token")
            data = response.json()
            if not isinstance(data, dict):
                return TokenValidationResult(valid=False, error="Unexpected token info response")
            exp = data.get("exp")
            expires_at = int(exp) * 1000 if exp else None
        except (httpx.HTTPError, ValueError, TypeError) as e:
            return TokenValidationResult(valid=False, error=str(e) or "Validation failed")

        return TokenValidationResult(valid=True, expires_at=expires_at, scope=data.get("scope"))

    async def revoke_token(self, token: str) -> bool:
        """Revoke a token. Returns False if the provider refused (e.g. already revoked)."""
        if not token:
            raise ValidationException("Token is required")

        response = await self._post_form(REVOKE_URL, {"token": token})
        return response.is_success

    def is_token_expired(self, expires_at: int) -> bool:
        """Check expiry with a 5 minute safety buffer."""
        return self._now_ms() >= expires_at - EXPIRY_BUFFER_MS

    @staticmethod
    def validate_scope(scope: str) -> bool:
        """Check the granted scopes include read-only analytics access."""
        return ANALYTICS_SCOPE in (scope or "")

    def _require_store(self) -> "CredentialStore":
        if self.credential_store is None:
            raise RuntimeError("TokenManager has no credential store")
        return self.credential_store

    async def save_tokens(self, user_id: str, tokens: OAuthTokenSet) -> None:
        await self._require_store().save_tokens(user_id, tokens)

    async def get_valid_token(self, user_id: str) -> OAuthTokenSet:
        """Load a user's tokens, refreshing and saving them when near expiry.

        Raises:
            NotFoundException: If the user has not connected an account
        """
        store = self._require_store()
        lock = self._refresh_locks.setdefault(user_id, asyncio.Lock())

        async with lock:
            tokens = await store.load_tokens(user_id)
            if tokens is None:
                raise NotFoundException("Google Analytics connection for user", user_id)

            if not self.is_token_expired(tokens.expires_at):
                return tokens

            logger.info("refreshing_access_token", user_id=user_id)
            refreshed = await self.refresh_access_token(tokens.refresh_token or "")
            await store.save_tokens(user_id, refreshed)
            return refreshed

    async def disconnect(self, user_id: str) -> bool:
        """Revoke and forget a user's tokens.

        Returns:
            True if the provider accepted the revocation
        """
        store = self._require_store()
        tokens = await store.load_tokens(user_id)
        if tokens is None:
            return False

        revoked = False
        try:
            revoked = await self.revoke_token(tokens.refresh_token or tokens.access_token)
        except ExternalServiceException as e:
            # Local tokens are deleted even if the provider is unreachable
            logger.warning("token_revocation_failed", user_id=user_id, error=str(e))

        await store.delete_tokens(user_id)
        return revoked
