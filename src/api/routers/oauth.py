"""Google Calendar connect flow.

1. GET /api/google/auth
   - Builds a CSRF state "<userId>:<randomHex>", remembers it in a short-lived
     HttpOnly cookie and redirects to Google's consent screen.
2. GET /api/google/callback
   - Checks the state against the signed-in user and the cookie.
   - Exchanges the code, encrypts the tokens and stores one disabled
     calendar source per Google calendar.
   - Redirects to /calendars/connect, or to /calendars?error=<tag>.

Error details are only logged, never put in redirects.
"""

from __future__ import annotations

import hmac
import logging
import sqlite3

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from src.api.dependencies import (
    get_current_user_id,
    get_provider_factory,
    get_source_db,
    get_user_db,
)
from src.api.errors import ApiError
from src.core.vault import VaultError, encrypt
from src.data.db import GOOGLE_PROVIDER, CalendarSourceDB, UserDB, utc_iso
from src.integrations.google_auth import (
    CALENDAR_SCOPES,
    MissingRefreshTokenError,
    OAuthConfigError,
    OAuthError,
    create_credentials,
    exchange_code_for_tokens,
    generate_auth_url,
    generate_oauth_state,
    parse_oauth_state,
)
from src.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google", tags=["oauth"])

STATE_COOKIE = "google_oauth_state"
STATE_COOKIE_MAX_AGE = 600
CONNECT_PAGE = "/calendars/connect"


def _redirect(path: str) -> RedirectResponse:
    response = RedirectResponse(path, status_code=302)
    response.delete_cookie(STATE_COOKIE, path="/api/google")
    return response


def _error(tag: str) -> RedirectResponse:
    return _redirect(f"/calendars?error={tag}")


@router.get("/auth")
async def google_auth(user_id: str = Depends(get_current_user_id)):
    """Send the user to Google's consent screen."""
    from src.config import settings

    state = generate_oauth_state(user_id)
    try:
        auth_url = generate_auth_url(state, CALENDAR_SCOPES)
    except OAuthConfigError as exc:
        logger.error("Google OAuth is not configured: %s", exc)
        raise ApiError(500, "Google OAuth is not configured")

    response = RedirectResponse(auth_url, status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        path="/api/google",
        httponly=True,
        samesite="lax",
        secure=settings.APP_BASE_URL.startswith("https://"),
    )
    return response


@router.get("/callback")
async def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    user_db: UserDB = Depends(get_user_db),
    source_db: CalendarSourceDB = Depends(get_source_db),
    provider_factory=Depends(get_provider_factory),
):
    from src.config import settings

    if error:
        logger.error("Google OAuth error: %s", error)
        return _error("oauth_denied")

    if not code or not state:
        return _error("invalid_callback")

    parsed = parse_oauth_state(state)
    if parsed is None:
        return _error("invalid_state")
    state_user_id, _ = parsed

    user_id = request.headers.get(settings.AUTH_USER_HEADER, "").strip()
    if not user_id:
        return _redirect("/login?error=unauthorized")

    cookie_state = request.cookies.get(STATE_COOKIE, "")
    if user_id != state_user_id or not hmac.compare_digest(
        cookie_state.encode(), state.encode(),
    ):
        logger.error("CSRF validation failed for user %s", user_id)
        return _error("csrf_failed")

    try:
        tokens = await exchange_code_for_tokens(code)
    except MissingRefreshTokenError:
        logger.error("No refresh token received from Google")
        return _error("no_refresh_token")
    except OAuthError as exc:
        logger.error("Google OAuth callback error: %s", exc)
        return _error("callback_failed")

    household_id = user_db.get_household_id(user_id)
    if not household_id:
        logger.error("Failed to get household for user %s", user_id)
        return _error("no_household")

    try:
        access_enc = encrypt(tokens.access_token) if tokens.access_token else None
        refresh_enc = encrypt(tokens.refresh_token)
        provider = provider_factory(create_credentials(tokens), GOOGLE_PROVIDER)
        calendars = await provider.list_calendars()
    except (VaultError, OAuthError, CalendarError) as exc:
        logger.error("Google OAuth callback error: %s", exc)
        return _error("callback_failed")
    except Exception:
        logger.exception("Unexpected failure listing Google calendars for user %s", user_id)
        return _error("callback_failed")

    if not calendars:
        return _error("no_calendars")

    rows = [
        {
            "external_id": cal["id"],
            "name": cal.get("summary") or "Unnamed Calendar",
            "color": cal.get("backgroundColor"),
        }
        for cal in calendars
        if cal.get("id")
    ]
    try:
        source_db.upsert_sources(
            household_id,
            user_id,
            rows,
            access_token_encrypted=access_enc,
            refresh_token_encrypted=refresh_enc,
            token_expiry=utc_iso(tokens.expiry) if tokens.expiry else None,
        )
    except sqlite3.Error as exc:
        logger.error("Failed to store calendar sources: %s", exc)
        return _error("db_error")

    logger.info("Connected %d Google calendar(s) for household %s", len(rows), household_id)
    return _redirect(CONNECT_PAGE)
