"""Shared fixtures for the API tests.

Provides:
- FastAPI app built by create_app() without running its lifespan, so each
  test wires only the services it needs onto ``app.state``
- Async HTTP client bound to that app through ASGITransport
"""

from __future__ import annotations

import os

# Use litellm's bundled model cost map instead of fetching it at import time.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.trailmap.main import create_app


@pytest_asyncio.fixture
async def app():
    """Fresh app per test; app.state starts empty."""
    return create_app()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
