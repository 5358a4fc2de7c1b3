"""Google API service factory backed by the OAuth token manager.

Every accessor first asks the TokenManager for a usable token, so a refresh
(or a ReauthRequiredError) happens before any Docs/Slides/Drive request is
built. Service instances are cached per (api, access token) to avoid
rebuilding the discovery client for every call; a refreshed token yields a
new cache entry. The cached Resources are shared by concurrent jobs, so
``execute`` hands every request its own authorized httplib2 transport.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httplib2
import structlog
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.trailmap.errors import UpstreamError, UpstreamRateLimited
from src.trailmap.google.tokens import TokenManager

logger = structlog.get_logger(__name__)

API_VERSIONS = {
    "docs": "v1",
    "drive": "v3",
    "slides": "v1",
}


class GoogleServiceFactory:
    """Builds and caches googleapiclient Resources for the current token.

    Args:
        token_manager: Supplies fresh OAuth credentials.
        builder: googleapiclient ``build``; injectable for tests.
    """

    # Keep only the latest token's services around
    MAX_CACHE_ENTRIES = len(API_VERSIONS) * 2

    def __init__(
        self,
        token_manager: TokenManager,
        builder: Callable[..., Any] = build,
    ) -> None:
        self._tokens = token_manager
        self._builder = builder
        self._service_cache: dict[tuple[str, str], Any] = {}

    async def _get_service(self, api: str) -> Any:
        credentials = await self._tokens.google_credentials()
        cache_key = (api, credentials.token)

        if cache_key not in self._service_cache:
            logger.info("building_google_service", api=api)
            if len(self._service_cache) >= self.MAX_CACHE_ENTRIES:
                self._service_cache.clear()
            self._service_cache[cache_key] = await asyncio.to_thread(
                self._builder,
                api,
                API_VERSIONS[api],
                credentials=credentials,
                cache_discovery=False,
            )

        return self._service_cache[cache_key]

    async def docs(self) -> Any:
        """Google Docs API v1 Resource."""
        return await self._get_service("docs")

    async def drive(self) -> Any:
        """Google Drive API v3 Resource."""
        return await self._get_service("drive")

    async def slides(self) -> Any:
        """Google Slides API v1 Resource."""
        return await self._get_service("slides")


def _per_call_http(request: Any) -> Any:
    """Fresh authorized transport for one execute; httplib2.Http is not thread-safe."""
    shared = getattr(request, "http", None)
    if isinstance(shared, AuthorizedHttp):
        return AuthorizedHttp(shared.credentials, http=httplib2.Http())
    return None


def _retry_after(exc: HttpError) -> float | None:
    value = exc.resp.get("retry-after") if exc.resp is not None else None
    return float(value) if value and value.isdigit() else None


async def execute(request: Any, service: str = "google") -> dict[str, Any]:
    """Run a googleapiclient HttpRequest off the event loop.

    Raises:
        UpstreamRateLimited: The API answered 429.
        UpstreamError: The API answered with any other error status.
    """
    http = _per_call_http(request)
    try:
        if http is None:
            return await asyncio.to_thread(request.execute)
        return await asyncio.to_thread(request.execute, http=http)
    except HttpError as exc:
        status = exc.resp.status if exc.resp is not None else None
        if status == 429:
            logger.warning("google_api.rate_limited", service=service)
            raise UpstreamRateLimited(service, retry_after=_retry_after(exc)) from exc
        raise UpstreamError(service, str(exc), status_code=status) from exc
