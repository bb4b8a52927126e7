"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from urbancleanse.app.api.v1.endpoints import (
    waste_requests, admin_requests, routes,
    collection, bins, notifications
)

router = APIRouter()

# Customer requests and waste type catalogue
router.include_router(waste_requests.router)

# Operator request management, worker board, dashboard stats
router.include_router(admin_requests.router)

# Routes
router.include_router(routes.router)

# Collector pickups
router.include_router(collection.router)

# Bins and sensor readings
router.include_router(bins.router)

router.include_router(notifications.router)
