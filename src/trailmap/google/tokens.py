"""OAuth2 credential lifecycle for the Google Docs / Slides / Drive APIs.

The stored credential is loaded on every call and refreshed when it has
expired, is about to expire (10 minute lookahead) or has no known expiry.
Each call ends in exactly one of:

- proceed with the current token
- proceed with a freshly refreshed token
- ReauthRequiredError / NotAuthenticatedError (consent flow must run again)

A refresh token, once stored, is never dropped: Google usually omits it from
refresh responses, so the previous one is carried forward.

Refreshes run through google-auth off the event loop. Failures are
classified from the structured OAuth error code google-auth attaches to
RefreshError first. Message text is only inspected when no code is
available (e.g. transport errors).
"""

from __future__ import annotations

import asyncio
import json
import os
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport import Request as GoogleAuthRequest
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials as GoogleCredentials
from pydantic import BaseModel

from src.trailmap.errors import AuthError, NotAuthenticatedError, ReauthRequiredError

logger = structlog.get_logger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Drive for creating/copying/moving files, Docs and Slides for content
GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/presentations",
]

REFRESH_LOOKAHEAD = timedelta(minutes=10)
EXPIRING_SOON_WINDOW = timedelta(minutes=5)
STATE_TTL = timedelta(minutes=10)

# OAuth error codes meaning the grant itself is unusable
INVALID_GRANT_CODES = frozenset({"invalid_grant", "invalid_client", "unauthorized_client"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Models ───────────────────────────────────────────────────────────────────


class Credential(BaseModel):
    """Persisted OAuth2 credential."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    @classmethod
    def from_token_response(cls, data: dict[str, Any], now: datetime) -> Credential:
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=now + timedelta(seconds=int(expires_in)) if expires_in else None,
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope"),
        )

    def merged_with(self, refreshed: Credential) -> Credential:
        """Overlay a refresh response, keeping fields it omitted."""
        return Credential(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or self.refresh_token,
            expires_at=refreshed.expires_at,
            token_type=refreshed.token_type,
            scope=refreshed.scope or self.scope,
        )


class TokenDecision(str, Enum):
    CURRENT = "current"
    REFRESHED = "refreshed"
    STALE = "stale"  # refresh failed transiently, token not yet expired


class TokenResult(BaseModel):
    credential: Credential
    decision: TokenDecision


class TokenRefreshError(AuthError):
    """The token endpoint rejected or failed a refresh.

    Attributes:
        error_code: OAuth ``error`` field from the response body, if any.
        status_code: HTTP status of the token endpoint response, if any.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


def is_invalid_grant(exc: BaseException) -> bool:
    """True when a refresh failure means the grant is revoked or invalid."""
    if isinstance(exc, TokenRefreshError):
        if exc.error_code:
            return exc.error_code in INVALID_GRANT_CODES
        if exc.status_code is not None:
            return exc.status_code == 400
    message = str(exc).lower()
    return "invalid_grant" in message or "invalid grant" in message


# ── Credential Storage ───────────────────────────────────────────────────────


class CredentialStore(ABC):
    """Durable home of the single OAuth credential."""

    @abstractmethod
    async def load(self) -> Credential | None:
        """Return the stored credential, or None if never authenticated."""

    @abstractmethod
    async def save(self, credential: Credential) -> None:
        """Persist the credential, replacing any previous one."""


class FileCredentialStore(CredentialStore):
    """JSON file credential store (tokens.json).

    Writes go to a sibling temp file first and are moved into place so a
    crash mid-write never leaves a truncated credential behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _read(self) -> Credential | None:
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return Credential.model_validate(json.loads(content))

    def _write(self, credential: Credential) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(credential.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)

    async def load(self) -> Credential | None:
        return await asyncio.to_thread(self._read)

    async def save(self, credential: Credential) -> None:
        await asyncio.to_thread(self._write, credential)


# ── Consent state ────────────────────────────────────────────────────────────


class OAuthStateStore:
    """Pending consent requests keyed by their ``state`` value.

    Each state is issued for one consent redirect and accepted by exactly one
    callback within ``ttl``; expired entries are purged on the next issue.
    """

    def __init__(
        self,
        ttl: timedelta = STATE_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._pending: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def issue(self) -> str:
        now = self._clock()
        for state, expires_at in list(self._pending.items()):
            if expires_at <= now:
                del self._pending[state]
        state = secrets.token_urlsafe(32)
        self._pending[state] = now + self.ttl
        return state

    def consume(self, state: str) -> bool:
        """True if ``state`` was issued here and has not expired or been used."""
        expires_at = self._pending.pop(state, None)
        return expires_at is not None and self._clock() < expires_at


# ── OAuth Client ─────────────────────────────────────────────────────────────


class OAuthClient:
    """Google OAuth2 web-server flow client.

    The consent URL and the one-time code exchange are plain HTTP; refreshes
    go through google-auth.

    Args:
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        redirect_uri: Callback registered for the client.
        transport: Optional httpx transport for the code exchange (tests use
            httpx.MockTransport).
        auth_request: Factory for the google-auth transport used by refresh.
        clock: Returns the current aware datetime; injectable for tests.
        states: Pending consent states; a fresh store by default.
    """

    TIMEOUT = 15.0

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        transport: httpx.AsyncBaseTransport | None = None,
        auth_request: Callable[[], GoogleAuthRequest] = Request,
        clock: Callable[[], datetime] = _utcnow,
        states: OAuthStateStore | None = None,
    ) -> None:
        if not client_id or not client_secret:
            raise AuthError(
                "GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET must be set"
            )
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._transport = transport
        self._auth_request = auth_request
        self._clock = clock
        self.states = states if states is not None else OAuthStateStore(clock=clock)

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    def authorization_url(self, state: str | None = None) -> str:
        """Consent URL requesting offline access so a refresh token is issued."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            # Force the consent screen; Google only returns a refresh token on it
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URI}?{urlencode(params)}"

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.TIMEOUT, transport=self._transport) as client:
            response = await client.post(GOOGLE_TOKEN_URI, data=form)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            error_code = body.get("error") if isinstance(body, dict) else None
            description = body.get("error_description", "") if isinstance(body, dict) else ""
            raise TokenRefreshError(
                f"Token endpoint returned {response.status_code}: {error_code or ''} {description}".strip(),
                error_code=error_code,
                status_code=response.status_code,
            )
        return body

    async def exchange_code(self, code: str) -> Credential:
        """Trade an authorization code for the initial credential."""
        body = await self._token_request({
            "code": code,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self._redirect_uri,
            "grant_type": "authorization_code",
        })
        return Credential.from_token_response(body, self._clock())

    def _refresh_sync(self, refresh_token: str) -> GoogleCredentials:
        credentials = GoogleCredentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
        )
        credentials.refresh(self._auth_request())
        return credentials

    async def refresh(self, refresh_token: str) -> Credential:
        """Obtain a new access token through google-auth.

        Raises:
            TokenRefreshError: The token endpoint rejected the grant
                (``error_code`` carries the OAuth error) or was unreachable.
        """
        try:
            refreshed = await asyncio.to_thread(self._refresh_sync, refresh_token)
        except RefreshError as exc:
            payload = exc.args[1] if len(exc.args) > 1 and isinstance(exc.args[1], dict) else {}
            raise TokenRefreshError(
                f"Token refresh rejected: {exc.args[0] if exc.args else exc}",
                error_code=payload.get("error"),
            ) from exc
        except TransportError as exc:
            raise TokenRefreshError(f"Token endpoint unreachable: {exc}") from exc

        expiry = refreshed.expiry
        return Credential(
            access_token=refreshed.token,
            # google-auth carries the old refresh token forward when Google omits it
            refresh_token=refreshed.refresh_token,
            expires_at=expiry.replace(tzinfo=timezone.utc) if expiry is not None else None,
        )


# ── Token Manager ────────────────────────────────────────────────────────────


class TokenManager:
    """Guards every Google API call with a usable access token.

    Concurrent callers (e.g. the Doc and Slides branches of one job) are
    serialized so only one of them performs a refresh; the other reloads the
    refreshed credential.

    Args:
        store: Durable credential storage.
        oauth_client: Performs the refresh grant; None when OAuth is not
            configured, in which case only a still-current token is usable.
        lookahead: Refresh proactively when expiry is closer than this.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: OAuthClient | None,
        lookahead: timedelta = REFRESH_LOOKAHEAD,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._lookahead = lookahead
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def oauth_client(self) -> OAuthClient | None:
        return self._oauth

    async def ensure_fresh(self) -> TokenResult:
        """Load the credential and refresh it if needed.

        Raises:
            NotAuthenticatedError: No credential has been stored yet.
            ReauthRequiredError: Refresh is impossible or the grant is dead.
        """
        async with self._lock:
            credential = await self._store.load()
            if credential is None:
                raise NotAuthenticatedError(
                    "Google OAuth tokens not found. Complete the consent flow at /api/v1/auth/google"
                )

            now = self._clock()
            expires_at = credential.expires_at
            is_expired = expires_at is not None and expires_at <= now
            needs_refresh = expires_at is None or expires_at - now < self._lookahead

            if not needs_refresh:
                return TokenResult(credential=credential, decision=TokenDecision.CURRENT)

            if not credential.refresh_token:
                raise ReauthRequiredError(
                    "Access token needs refreshing and no refresh token is stored",
                    reason="no_refresh_token",
                )
            if self._oauth is None:
                raise ReauthRequiredError(
                    "Access token needs refreshing and Google OAuth is not configured",
                    reason="oauth_not_configured",
                )

            logger.info(
                "google_token.refreshing",
                expired=is_expired,
                expires_at=expires_at.isoformat() if expires_at else None,
            )
            try:
                refreshed = await self._oauth.refresh(credential.refresh_token)
            except TokenRefreshError as exc:
                if is_invalid_grant(exc):
                    raise ReauthRequiredError(
                        "Refresh token is invalid or revoked",
                        reason="invalid_grant",
                    ) from exc
                if is_expired:
                    raise ReauthRequiredError(
                        f"Access token expired and refresh failed: {exc}",
                        reason="expired_refresh_failed",
                    ) from exc
                logger.warning(
                    "google_token.refresh_failed_using_existing",
                    error=str(exc),
                )
                return TokenResult(credential=credential, decision=TokenDecision.STALE)

            merged = credential.merged_with(refreshed)
            await self._store.save(merged)
            logger.info("google_token.refreshed", expires_at=merged.expires_at)
            return TokenResult(credential=merged, decision=TokenDecision.REFRESHED)

    async def google_credentials(self) -> GoogleCredentials:
        """google-auth credentials object for googleapiclient.discovery.build."""
        result = await self.ensure_fresh()
        return GoogleCredentials(token=result.credential.access_token)

    async def store_initial(self, credential: Credential) -> None:
        """Persist the credential produced by the consent flow."""
        if not credential.refresh_token:
            logger.warning(
                "google_token.no_refresh_token_received",
                hint="revoke app access and re-run consent to obtain one",
            )
        async with self._lock:
            previous = await self._store.load()
            if previous is not None and not credential.refresh_token:
                credential = previous.merged_with(credential)
            await self._store.save(credential)

    async def status(self) -> dict[str, Any]:
        """Human-facing token status report (no refresh attempted)."""
        credential = await self._store.load()
        if credential is None:
            return {
                "authenticated": False,
                "has_refresh_token": False,
                "status": "missing",
                "expires_in": None,
                "expires_at": None,
                "will_auto_refresh": False,
                "message": "No tokens found. Please authenticate first.",
            }

        has_refresh_token = bool(credential.refresh_token)
        status = "valid"
        expires_in = None
        if credential.expires_at is not None:
            remaining = max(timedelta(0), credential.expires_at - self._clock())
            expires_in = int(remaining.total_seconds())
            if remaining == timedelta(0):
                status = "expired"
            elif remaining < EXPIRING_SOON_WINDOW:
                status = "expiring_soon"

        return {
            "authenticated": True,
            "has_refresh_token": has_refresh_token,
            "status": status,
            "expires_in": expires_in,
            "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
            "will_auto_refresh": has_refresh_token,
            "message": (
                "Authenticated. Tokens will refresh automatically."
                if has_refresh_token
                else "Authenticated but no refresh token. Re-authentication needed when the token expires."
            ),
        }
