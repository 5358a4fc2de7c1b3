"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.trailmap.api.v1 import action_items, auth, health, reports

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(reports.router)
router.include_router(action_items.router)
