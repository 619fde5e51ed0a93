"""FastAPI router aggregation."""

from fastapi import APIRouter

from api.auth import router as auth_router
from api.conversations import router as conversations_router
from api.health import router as health_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(conversations_router, prefix="/conversations", tags=["conversations"])
api_router.include_router(health_router, tags=["health"])
