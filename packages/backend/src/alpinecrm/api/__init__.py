"""API route aggregation.

All routers registered here get mounted in main.py. The CRM's CRUD API
lives elsewhere; this service only exposes health for the realtime
fan-out.
"""

from fastapi import APIRouter

from alpinecrm.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
