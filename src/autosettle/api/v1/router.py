"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.autosettle.api.v1 import auth, deals, health

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(deals.router)
