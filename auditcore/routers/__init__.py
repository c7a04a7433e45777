"""API routers for the audit core."""
from fastapi import APIRouter

from . import audit_logs, health


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(audit_logs.router)
    return api_router
