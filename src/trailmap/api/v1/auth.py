"""Google OAuth endpoints for the single service credential.

An operator visits /api/v1/auth/google once; Google redirects back to the
callback with a code, which is exchanged and stored. From then on the token
manager refreshes the access token on its own. /status reports how the
stored credential looks without touching Google.

The consent redirect issues a single-use ``state`` and also sets it in an
HttpOnly cookie scoped to these routes. The callback only exchanges a code
when the query ``state`` matches the cookie and is still pending.
"""

from __future__ import annotations

import secrets

import structlog
from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, RedirectResponse

from src.trailmap.api.deps import get_token_manager
from src.trailmap.google.tokens import OAuthClient, TokenManager, TokenRefreshError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

STATE_COOKIE = "trailmap_oauth_state"
STATE_COOKIE_PATH = "/api/v1/auth/google"


def _oauth_client(tokens: TokenManager) -> OAuthClient:
    client = tokens.oauth_client
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google OAuth not configured (GOOGLE_OAUTH_CLIENT_ID / GOOGLE_OAUTH_CLIENT_SECRET)",
        )
    return client


def _check_state(client: OAuthClient, state: str | None, cookie_state: str | None) -> None:
    if not state or not cookie_state:
        logger.warning("google_oauth.state_missing", has_query=bool(state), has_cookie=bool(cookie_state))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing OAuth state; restart the flow at /api/v1/auth/google",
        )
    matches = secrets.compare_digest(state.encode(), cookie_state.encode())
    # Any callback presenting a state spends it
    pending = client.states.consume(state)
    if not (matches and pending):
        logger.warning("google_oauth.state_rejected", matches_cookie=matches, pending=pending)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OAuth state; restart the flow at /api/v1/auth/google",
        )


@router.get("/google")
async def google_consent(tokens: TokenManager = Depends(get_token_manager)):
    """Redirect to Google's consent screen (offline access, forced consent)."""
    client = _oauth_client(tokens)
    state = client.states.issue()
    response = RedirectResponse(client.authorization_url(state=state))
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=int(client.states.ttl.total_seconds()),
        path=STATE_COOKIE_PATH,
        secure=client.redirect_uri.startswith("https://"),
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/google/callback")
async def google_callback(
    code: str | None = Query(None),
    error: str | None = Query(None),
    state: str | None = Query(None),
    cookie_state: str | None = Cookie(None, alias=STATE_COOKIE),
    tokens: TokenManager = Depends(get_token_manager),
):
    """Verify the consent state, exchange the code and persist the credential."""
    client = _oauth_client(tokens)
    if error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Google authorization failed: {error}",
        )
    _check_state(client, state, cookie_state)
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing authorization code",
        )

    try:
        credential = await client.exchange_code(code)
    except TokenRefreshError as exc:
        logger.warning("google_oauth.exchange_failed", error=str(exc), error_code=exc.error_code)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    await tokens.store_initial(credential)
    logger.info("google_oauth.authorized", has_refresh_token=bool(credential.refresh_token))
    response = JSONResponse({
        "success": True,
        "has_refresh_token": bool(credential.refresh_token),
        "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
    })
    response.delete_cookie(STATE_COOKIE, path=STATE_COOKIE_PATH)
    return response


@router.get("/google/status")
async def google_status(tokens: TokenManager = Depends(get_token_manager)):
    return await tokens.status()
