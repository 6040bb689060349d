"""
HomeBase — Google OAuth Token Manager.

Obtains, validates, refreshes and classifies Google OAuth tokens for
connected calendars. Nothing here touches the database: a refresh hands the
rotated TokenBundle back to the caller, who decides where to persist it.

Flow:
1. generate_auth_url() sends the user to Google's consent screen
   (offline access, forced consent so a refresh token is always issued).
2. exchange_code_for_tokens() trades the callback code for a TokenBundle.
3. get_valid_credentials() is called before every API session; it refreshes
   an access token that is expired or about to expire.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import httpx
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

DEFAULT_SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

# Connect flow: read calendars, write display-originated events
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]

EXPIRY_BUFFER = timedelta(minutes=5)
_EXCHANGE_TIMEOUT_SECONDS = 15


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class OAuthError(Exception):
    """Base class for Google OAuth failures."""


class OAuthConfigError(OAuthError):
    """Raised when the Google OAuth client settings are missing."""


class TokenExpiredError(OAuthError):
    """Access token expired and no refresh token is available.

    Terminal for the current sync attempt; the user must reconnect.
    """


class TokenRevokedError(OAuthError):
    """Google rejected the refresh token itself (revoked or expired).

    Callers should mark the calendar disconnected instead of retrying.
    """


class TokenRefreshError(OAuthError):
    """A refresh failed for a transient reason (network, 5xx, quota)."""


class MissingRefreshTokenError(OAuthError):
    """The code exchange succeeded but Google issued no refresh token."""


# ---------------------------------------------------------------------------
# Token types
# ---------------------------------------------------------------------------


@dataclass
class TokenBundle:
    """Decrypted OAuth token material for one Google account."""

    access_token: str | None = None
    refresh_token: str | None = None
    expiry: datetime | None = None      # aware UTC
    scope: str | None = None
    token_type: str | None = "Bearer"

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> TokenBundle:
        """Build a bundle from Google's token endpoint JSON."""
        expiry = None
        if data.get("expires_in") is not None:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expiry=expiry,
            scope=data.get("scope"),
            token_type=data.get("token_type", "Bearer"),
        )


@dataclass
class TokenStatus:
    is_expired: bool
    can_refresh: bool


@dataclass
class AuthorizedCredentials:
    """Credentials ready for API calls, plus tokens to persist if rotated."""

    credentials: Credentials
    rotated_tokens: TokenBundle | None = None


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------


def _oauth_config() -> tuple[str, str, str]:
    """Return (client_id, client_secret, redirect_uri) or raise OAuthConfigError."""
    from src.config import settings

    missing = [
        name
        for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI")
        if not getattr(settings, name)
    ]
    if missing:
        raise OAuthConfigError(
            "Missing Google OAuth environment variables: " + ", ".join(missing)
        )
    return (
        settings.GOOGLE_CLIENT_ID,
        settings.GOOGLE_CLIENT_SECRET,
        settings.GOOGLE_REDIRECT_URI,
    )


def _build_flow(scopes: list[str]) -> Flow:
    client_id, client_secret, redirect_uri = _oauth_config()
    client_config = {
        "web": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": GOOGLE_AUTH_URI,
            "token_uri": GOOGLE_TOKEN_URI,
            "redirect_uris": [redirect_uri],
        }
    }
    # The callback runs in a different request, so no PKCE verifier survives
    return Flow.from_client_config(
        client_config,
        scopes=scopes,
        redirect_uri=redirect_uri,
        autogenerate_code_verifier=False,
    )


def create_credentials(tokens: TokenBundle) -> Credentials:
    """Wrap a TokenBundle in google-auth Credentials (no network)."""
    client_id, client_secret, _ = _oauth_config()
    expiry = None
    if tokens.expiry is not None:
        # google-auth compares expiry as naive UTC
        expiry = tokens.expiry.astimezone(timezone.utc).replace(tzinfo=None)
    return Credentials(
        token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
        expiry=expiry,
    )


# ---------------------------------------------------------------------------
# Consent flow
# ---------------------------------------------------------------------------


def generate_oauth_state(user_id: str) -> str:
    """CSRF state for the consent redirect: "<userId>:<randomHex>"."""
    return f"{user_id}:{secrets.token_hex(32)}"


def parse_oauth_state(state: str | None) -> tuple[str, str] | None:
    """Split a state string into (user_id, token), or None if malformed."""
    if not state:
        return None
    user_id, sep, token = state.partition(":")
    if not sep or not user_id or not token:
        return None
    return user_id, token


def generate_auth_url(state: str, scopes: list[str] | None = None) -> str:
    """Build the Google consent URL.

    Requests offline access and forces the consent prompt so Google issues a
    refresh token even to users who authorized before.
    """
    flow = _build_flow(scopes or DEFAULT_SCOPES)
    auth_url, _ = flow.authorization_url(
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
        state=state,
    )
    return auth_url


async def exchange_code_for_tokens(code: str) -> TokenBundle:
    """Trade an authorization code for the initial TokenBundle.

    Raises:
        MissingRefreshTokenError: Google returned no refresh token.
        OAuthError: the exchange failed (bad code, network, provider error).
    """
    client_id, client_secret, redirect_uri = _oauth_config()
    payload = {
        "code": code,
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }

    try:
        async with httpx.AsyncClient(timeout=_EXCHANGE_TIMEOUT_SECONDS) as client:
            resp = await client.post(GOOGLE_TOKEN_URI, data=payload)
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as exc:
        logger.warning("Google token exchange rejected: HTTP %d", exc.response.status_code)
        raise OAuthError(f"Token exchange failed with HTTP {exc.response.status_code}") from exc
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Google token exchange failed: %s", exc)
        raise OAuthError(f"Token exchange failed: {exc}") from exc

    tokens = TokenBundle.from_token_response(data)
    if not tokens.refresh_token:
        raise MissingRefreshTokenError("Google did not return a refresh token")
    logger.info("Authorization code exchanged for tokens")
    return tokens


# ---------------------------------------------------------------------------
# Validation and refresh
# ---------------------------------------------------------------------------


def check_token_status(tokens: TokenBundle, now: datetime | None = None) -> TokenStatus:
    """Classify a bundle.

    Expired when no expiry is recorded, or when the expiry is within five
    minutes of now. Refreshable whenever a refresh token is present; a token
    can be valid yet not refreshable.
    """
    can_refresh = bool(tokens.refresh_token)
    if tokens.expiry is None:
        return TokenStatus(is_expired=True, can_refresh=can_refresh)

    if now is None:
        now = datetime.now(timezone.utc)
    expiry = tokens.expiry
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return TokenStatus(is_expired=now >= expiry - EXPIRY_BUFFER, can_refresh=can_refresh)


def _is_revocation(exc: RefreshError) -> bool:
    """True when Google says the refresh token itself is no longer valid."""
    for arg in exc.args:
        if isinstance(arg, dict) and arg.get("error") == "invalid_grant":
            return True
        if isinstance(arg, str) and "invalid_grant" in arg:
            return True
    return False


def refresh_access_token(refresh_token: str) -> TokenBundle:
    """Blocking refresh against Google's token endpoint.

    Raises:
        TokenRevokedError: invalid_grant (revoked / expired refresh token).
        TokenRefreshError: any other refresh failure.
    """
    creds = create_credentials(TokenBundle(refresh_token=refresh_token))
    try:
        creds.refresh(Request())
    except RefreshError as exc:
        if _is_revocation(exc):
            raise TokenRevokedError("Refresh token was revoked or has expired") from exc
        raise TokenRefreshError(f"Token refresh failed: {exc}") from exc
    except TransportError as exc:
        raise TokenRefreshError(f"Token refresh failed: {exc}") from exc

    expiry = creds.expiry.replace(tzinfo=timezone.utc) if creds.expiry else None
    return TokenBundle(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry=expiry,
    )


async def get_valid_credentials(
    tokens: TokenBundle,
    on_refresh: Callable[[TokenBundle], Awaitable[None]] | None = None,
) -> AuthorizedCredentials:
    """Return usable credentials, refreshing first when needed.

    A still-valid access token is used unchanged. An expired one is refreshed
    and the rotated bundle is returned in `rotated_tokens` (the original
    refresh token is kept when Google does not send a new one). If given,
    `on_refresh` is awaited with the rotated bundle; its failures are logged
    and never abort the call.

    Raises:
        TokenExpiredError: expired and no refresh token to recover with.
        TokenRevokedError / TokenRefreshError: from the refresh exchange.
    """
    status = check_token_status(tokens)
    if not status.is_expired:
        return AuthorizedCredentials(credentials=create_credentials(tokens))

    if not status.can_refresh:
        raise TokenExpiredError("Access token expired and no refresh token available")

    refreshed = await asyncio.to_thread(refresh_access_token, tokens.refresh_token)
    rotated = replace(
        refreshed, refresh_token=refreshed.refresh_token or tokens.refresh_token,
    )
    logger.info("Access token refreshed (expires %s)", rotated.expiry)

    if on_refresh is not None:
        try:
            await on_refresh(rotated)
        except Exception as exc:
            logger.error("Token refresh callback failed: %s", exc)

    return AuthorizedCredentials(
        credentials=create_credentials(rotated), rotated_tokens=rotated,
    )
