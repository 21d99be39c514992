"""API v1 router - combines all endpoint routers."""

from fastapi import APIRouter

from analytics_import.api.v1.endpoints import google_analytics, imports

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(imports.router)
api_router.include_router(google_analytics.router)
