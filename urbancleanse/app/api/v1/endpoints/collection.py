"""
Collector API Endpoints.

Collectors see their route for the day, confirm pickups by scan or manual
entry, and report bins they could not collect.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.api.v1.dependencies import get_collection_flow
from urbancleanse.app.core.guards import require_collector
from urbancleanse.app.db.session import get_db
from urbancleanse.app.domain.scheduling.collection_flow import CollectionFlow
from urbancleanse.app.models.scheduling_enums import CollectionMethod
from urbancleanse.app.schemas.collection import (
    CollectionCreate,
    CollectionResponse,
    CollectionResult,
    IssueReport,
)
from urbancleanse.app.schemas.route import RouteDetailResponse
from urbancleanse.app.services.route_views import build_route_detail

router = APIRouter(prefix="/collection", tags=["Collection"])


@router.get("/my-route", response_model=Optional[RouteDetailResponse])
async def get_my_route(
    day: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    current_user: dict = Depends(require_collector),
    flow: CollectionFlow = Depends(get_collection_flow),
    db: AsyncSession = Depends(get_db)
):
    """The collector's route for the day with bins in sequence, or null."""
    route = await flow.route_for_day(current_user["user_id"], day or date.today())
    if route is None:
        return None
    return await build_route_detail(db, route)


async def _collect(
    flow: CollectionFlow,
    current_user: dict,
    data: CollectionCreate,
    method: CollectionMethod,
) -> CollectionResult:
    collection, route, request = await flow.collect(
        current_user,
        data.bin_id,
        method,
        route_id=data.route_id,
        latitude=data.latitude,
        longitude=data.longitude,
        notes=data.notes,
    )
    return CollectionResult(
        collection=CollectionResponse.model_validate(collection),
        route_id=route.route_id,
        route_status=route.status,
        completed_bins=route.completed_bins,
        total_bins=route.total_bins,
        request_status=request.status if request is not None else None,
    )


@router.post("/scan", response_model=CollectionResult, status_code=status.HTTP_201_CREATED)
async def scan_bin(
    data: CollectionCreate,
    current_user: dict = Depends(require_collector),
    flow: CollectionFlow = Depends(get_collection_flow)
):
    """
    Confirm a pickup by scanning the bin tag.

    Completes the request, empties the bin and advances the route; the route
    completes when its last task does.
    """
    return await _collect(flow, current_user, data, CollectionMethod.SCAN)


@router.post("/manual", response_model=CollectionResult, status_code=status.HTTP_201_CREATED)
async def manual_collection(
    data: CollectionCreate,
    current_user: dict = Depends(require_collector),
    flow: CollectionFlow = Depends(get_collection_flow)
):
    """Confirm a pickup by typing the bin ID (tag unreadable)."""
    return await _collect(flow, current_user, data, CollectionMethod.MANUAL)


@router.post("/report-issue", response_model=CollectionResult, status_code=status.HTTP_201_CREATED)
async def report_issue(
    data: IssueReport,
    current_user: dict = Depends(require_collector),
    flow: CollectionFlow = Depends(get_collection_flow)
):
    """Record a failed pickup; the request stays approved for rescheduling."""
    collection, route, alert = await flow.report_issue(
        current_user,
        data.bin_id,
        data.issue_type,
        data.description,
        requires_admin=data.requires_admin,
        route_id=data.route_id,
        latitude=data.latitude,
        longitude=data.longitude,
    )
    return CollectionResult(
        collection=CollectionResponse.model_validate(collection),
        route_id=route.route_id,
        route_status=route.status,
        completed_bins=route.completed_bins,
        total_bins=route.total_bins,
        alert_id=alert.id if alert is not None else None,
    )


@router.get("/history", response_model=List[CollectionResponse])
async def collection_history(
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(require_collector),
    flow: CollectionFlow = Depends(get_collection_flow)
):
    """The collector's past pickups and failed attempts, newest first."""
    return await flow.history(current_user["user_id"], limit)
