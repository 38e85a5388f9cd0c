"""
API package for the ambulance dispatch backend.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter, Depends
from .v1.auth import router as auth_router
from .v1.emergencies import router as emergencies_router
from .v1.ambulances import router as ambulances_router
from .v1.patients import router as patients_router
from .v1.reports import router as reports_router
from .v1.hospitals import router as hospitals_router
from .v1.dashboard import router as dashboard_router
from .v1.health import router as health_router
from .v1.realtime import router as realtime_router
from ..core.auth import get_current_user

api_router = APIRouter()
protected = [Depends(get_current_user)]
api_router.include_router(auth_router)
api_router.include_router(health_router)
api_router.include_router(emergencies_router, dependencies=protected)
api_router.include_router(ambulances_router, dependencies=protected)
api_router.include_router(patients_router, dependencies=protected)
api_router.include_router(reports_router, dependencies=protected)
api_router.include_router(hospitals_router, dependencies=protected)
api_router.include_router(dashboard_router, dependencies=protected)
# The websocket checks its own token query parameter.
api_router.include_router(realtime_router)
