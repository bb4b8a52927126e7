"""
Route Management API Endpoints.

Operators plan, list, inspect and cancel routes; operators and the owning
collector can move a route through its status table.
"""

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from urbancleanse.app.api.v1.dependencies import get_route_planner
from urbancleanse.app.core.dependencies import get_current_user
from urbancleanse.app.core.exceptions import InsufficientPermissionsError, NotFoundError
from urbancleanse.app.core.guards import is_collector, is_operator, require_operator
from urbancleanse.app.db.session import get_db
from urbancleanse.app.domain.scheduling import route_aggregator
from urbancleanse.app.domain.scheduling.lifecycle import notify_customer, scheduling_transaction
from urbancleanse.app.domain.scheduling.route_planner import RoutePlanner, bins_by_area
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.scheduling_enums import RouteStatus
from urbancleanse.app.schemas.route import (
    BinsByAreaResponse,
    RouteCreate,
    RouteCancelResponse,
    RouteDetailResponse,
    RouteListResponse,
    RouteResponse,
    RouteStatusUpdate,
)
from urbancleanse.app.services.audit import AuditAction, log_event
from urbancleanse.app.services.notification_service import NotificationDispatcher, get_dispatcher
from urbancleanse.app.services.route_views import build_route_detail
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, get_scheduling_locks, worker_key
from urbancleanse.app.services.stats import route_stats

router = APIRouter(prefix="/routes", tags=["Routes"])


async def _get_route_or_404(db: AsyncSession, route_id: str) -> Route:
    route = await route_aggregator.get_route(db, route_id)
    if not route:
        raise NotFoundError("Route", route_id)
    return route


def _enforce_route_access(route: Route, current_user: dict) -> None:
    if is_operator(current_user):
        return
    if is_collector(current_user) and route.collector_id == current_user.get("user_id"):
        return
    raise InsufficientPermissionsError("Access denied. This route is not assigned to you.")


@router.get("", response_model=RouteListResponse)
async def list_routes(
    status_filter: Optional[RouteStatus] = Query(None, alias="status"),
    day: Optional[date] = Query(None, alias="date"),
    collector_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """List routes with optional status, date and collector filters."""
    query = select(Route)
    if status_filter:
        query = query.where(Route.status == status_filter)
    if day:
        query = query.where(Route.assigned_date == day)
    if collector_id:
        query = query.where(Route.collector_id == collector_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Route.assigned_date.desc(), Route.id.desc()).offset((page - 1) * page_size).limit(page_size)
    )

    return RouteListResponse(
        routes=[RouteResponse.model_validate(r) for r in result.scalars().all()],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=Dict[str, Any])
async def get_route_stats(
    day: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """Per-day route statistics: status counts, bins, completion rate, efficiency (cached)."""
    return await route_stats(db, day or date.today())


@router.get("/bins-by-area", response_model=BinsByAreaResponse)
async def get_bins_by_area(
    day: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """Approved and paid requests scheduled on the day, grouped by bin area."""
    day = day or date.today()
    return BinsByAreaResponse(assigned_date=day, areas=await bins_by_area(db, day))


@router.post("", response_model=RouteDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    route_data: RouteCreate,
    current_user: dict = Depends(require_operator),
    planner: RoutePlanner = Depends(get_route_planner),
    db: AsyncSession = Depends(get_db)
):
    """
    Plan a route by hand (operator only).

    The day's approved and paid requests for the selected bins move to the
    collector, in the order the bins are given. The collector must not
    already have an active route that day.
    """
    route = await planner.create_route(
        current_user,
        route_data.collector_id,
        route_data.assigned_date,
        route_data.area,
        route_data.selected_bins,
        route_data.notes,
    )
    return await build_route_detail(db, route)


@router.get("/{route_id}", response_model=RouteDetailResponse)
async def get_route(
    route_id: str = Path(..., description="Route identifier"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Route detail with bins, for operators or the assigned collector."""
    route = await _get_route_or_404(db, route_id)
    _enforce_route_access(route, current_user)
    return await build_route_detail(db, route)


@router.put("/{route_id}/status", response_model=RouteDetailResponse)
async def update_route_status(
    update_data: RouteStatusUpdate,
    route_id: str = Path(..., description="Route identifier"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: SchedulingLocks = Depends(get_scheduling_locks)
):
    """
    Move a route along assigned -> in_progress -> completed.

    Cancellation goes through DELETE so the route's requests are reset.
    """
    route = await _get_route_or_404(db, route_id)
    _enforce_route_access(route, current_user)

    key = worker_key(route.collector_id, route.assigned_date)
    async with locks.hold(*key), scheduling_transaction(db, "route_status"):
        await db.refresh(route)
        previous = route.status
        await route_aggregator.set_route_status(db, route, update_data.status, update_data.notes)
        await log_event(
            db,
            AuditAction.ROUTE_STATUS_CHANGED,
            actor_id=current_user["user_id"],
            actor_username=current_user.get("sub"),
            entity_type="route",
            entity_id=route.route_id,
            metadata={"from": previous.value, "to": route.status.value},
            commit=False,
        )
    await db.refresh(route)

    return await build_route_detail(db, route)


@router.delete("/{route_id}", response_model=RouteCancelResponse)
async def cancel_route(
    route_id: str = Path(..., description="Route identifier"),
    reason: Optional[str] = Query(None, max_length=500),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    locks: SchedulingLocks = Depends(get_scheduling_locks),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """
    Cancel a route (operator only).

    Completed routes cannot be cancelled. Approved requests on the route go
    back to pending with their assignment cleared; the route keeps its tasks.
    """
    route = await _get_route_or_404(db, route_id)

    key = worker_key(route.collector_id, route.assigned_date)
    async with locks.hold(*key), scheduling_transaction(db, "cancel_route"):
        await db.refresh(route)
        reset = await route_aggregator.cancel_route(db, route, current_user["user_id"], reason)
        await log_event(
            db,
            AuditAction.ROUTE_CANCELLED,
            actor_id=current_user["user_id"],
            actor_username=current_user.get("sub"),
            entity_type="route",
            entity_id=route.route_id,
            metadata={"reason": reason, "reset_requests": [r.request_id for r in reset]},
            commit=False,
        )
    await db.refresh(route)

    for request in reset:
        await notify_customer(dispatcher, request)

    return RouteCancelResponse(
        route=RouteResponse.model_validate(route),
        reset_requests=[r.request_id for r in reset],
    )
