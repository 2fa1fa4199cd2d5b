"""API Routes."""

from fastapi import APIRouter

from .health import router as health_router
from .public import router as public_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(public_router)
