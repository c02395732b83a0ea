"""Router collecting every status API endpoint."""

from fastapi import APIRouter

from stackup.api.handlers import health, report

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(report.router, tags=["report"])
