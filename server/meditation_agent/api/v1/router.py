"""v1 路由聚合。"""

from __future__ import annotations

from fastapi import APIRouter

from meditation_agent.api.v1.endpoints.meditation import router as meditation_router

api_router = APIRouter()
api_router.include_router(meditation_router)
