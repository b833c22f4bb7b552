"""APIRouter registration for the menu catalog service."""

from __future__ import annotations

from fastapi import APIRouter

from menu_catalog.routes.health import router as health_router
from menu_catalog.routes.tools import router as tools_router

api_router = APIRouter()
api_router.include_router(tools_router, tags=["Tools"])

__all__ = ["api_router", "health_router"]
