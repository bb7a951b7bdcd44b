from __future__ import annotations

from fastapi import APIRouter

from src.api.deals import router as deals_router
from src.api.health import router as health_router
from src.api.reports import router as reports_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(deals_router)
api_router.include_router(reports_router)
