"""API routers for the backend service."""

from fastapi import APIRouter

from .routes import health_router
from .v1 import jobs, templates, uploads

api_router = APIRouter()
api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(uploads.router, prefix="", tags=["uploads"])
api_router.include_router(templates.router, prefix="", tags=["templates"])
api_router.include_router(jobs.router, prefix="", tags=["jobs"])

__all__ = ["api_router"]
