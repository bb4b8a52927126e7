"""
Operator Request Management API Endpoints.

Operators review requests, drive the request state machine, record payment
outcomes from the gateway, watch worker availability and work the alert
queue.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from urbancleanse.app.api.v1.dependencies import get_lifecycle
from urbancleanse.app.core.exceptions import NotFoundError
from urbancleanse.app.core.guards import require_operator
from urbancleanse.app.db.session import get_db
from urbancleanse.app.domain.scheduling import load_balancer
from urbancleanse.app.domain.scheduling.conflicts import validate_time_slot
from urbancleanse.app.domain.scheduling.lifecycle import RequestLifecycleManager, scheduling_transaction
from urbancleanse.app.models.alert import Alert
from urbancleanse.app.models.scheduling_enums import CollectionType, PaymentStatus, RequestStatus
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.schemas.alert import AdminAlertsResponse, AlertResponse
from urbancleanse.app.schemas.route import WorkerAvailabilityResponse
from urbancleanse.app.schemas.waste_request import (
    PaymentStatusUpdate,
    RequestStatusUpdate,
    WasteRequestListResponse,
    WasteRequestResponse,
)
from urbancleanse.app.services.audit import AuditAction, log_event
from urbancleanse.app.services.stats import admin_stats, scheduling_alerts

router = APIRouter(prefix="/admin", tags=["Operator - Requests"])


@router.get("/requests", response_model=WasteRequestListResponse)
async def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    collection_type: Optional[CollectionType] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    created_from: Optional[date] = Query(None, description="Created on or after (inclusive)"),
    created_to: Optional[date] = Query(None, description="Created on or before (inclusive)"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """List all requests with filters, newest first."""
    query = select(WasteRequest)
    if status_filter:
        query = query.where(WasteRequest.status == status_filter)
    if collection_type:
        query = query.where(WasteRequest.collection_type == collection_type)
    if payment_status:
        query = query.where(WasteRequest.payment_status == payment_status)
    if created_from:
        query = query.where(WasteRequest.created_at >= datetime.combine(created_from, time.min))
    if created_to:
        query = query.where(WasteRequest.created_at < datetime.combine(created_to + timedelta(days=1), time.min))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(WasteRequest.id.desc()).offset((page - 1) * page_size).limit(page_size)
    )

    return WasteRequestListResponse(
        requests=[WasteRequestResponse.model_validate(r) for r in result.scalars().all()],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


@router.put("/requests/{request_id}/status", response_model=WasteRequestResponse)
async def update_request_status(
    update_data: RequestStatusUpdate,
    request_id: str = Path(..., description="Request identifier (WR-...)"),
    current_user: dict = Depends(require_operator),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle)
):
    """
    Change a request's status.

    Validates:
    - The transition is allowed (completed is reached only through collection)
    - Approval: payment paid, worker (or auto_assign), date today or later, valid slot
    - Approval: worker eligible, below capacity and free in the slot
    - Reset to pending: no other active request for the bin, type and day
    """
    request = await lifecycle.update_status(
        request_id,
        current_user,
        update_data.status,
        worker_id=update_data.worker_id,
        scheduled_date=update_data.scheduled_date,
        time_slot=update_data.scheduled_time_slot,
        notes=update_data.notes,
        auto_assign=update_data.auto_assign,
    )
    return WasteRequestResponse.model_validate(request)


@router.put("/requests/{request_id}/payment", response_model=WasteRequestResponse)
async def update_payment_status(
    payment_data: PaymentStatusUpdate,
    request_id: str = Path(..., description="Request identifier (WR-...)"),
    current_user: dict = Depends(require_operator),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle)
):
    """Record a payment outcome reported by the payment gateway."""
    request = await lifecycle.set_payment_status(request_id, current_user, payment_data.payment_status)
    return WasteRequestResponse.model_validate(request)


@router.get("/workers/availability", response_model=List[WorkerAvailabilityResponse])
async def worker_availability(
    day: date = Query(..., alias="date", description="Collection date"),
    time_slot: Optional[str] = Query(None, description="Slot to check for conflicts"),
    request_id: Optional[str] = Query(None, description="Request being assigned (excluded from occupancy)"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """
    Worker board for a day: occupied and free slots, remaining capacity.

    Fully available workers come first, then by ascending load.
    """
    if time_slot:
        validate_time_slot(time_slot)
    board = await load_balancer.availability(db, day, time_slot, exclude_request_id=request_id)
    return [WorkerAvailabilityResponse.model_validate(w) for w in board]


@router.get("/stats", response_model=Dict[str, Any])
async def get_admin_stats(
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """Request counts by status and type, paid revenue and recent requests (cached)."""
    return await admin_stats(db)


@router.get("/alerts", response_model=AdminAlertsResponse)
async def get_admin_alerts(
    include_resolved: bool = Query(False, description="Also list resolved collection issues"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """
    Scheduling alerts with counts, plus the collection issues raised by
    collectors (newest first).
    """
    queue = await scheduling_alerts(db)
    query = select(Alert)
    if not include_resolved:
        query = query.where(Alert.is_resolved == False)  # noqa: E712
    result = await db.execute(query.order_by(Alert.id.desc()).limit(100))
    return AdminAlertsResponse(
        alerts=queue["alerts"],
        summary=queue["summary"],
        issues=[AlertResponse.model_validate(a) for a in result.scalars().all()],
    )


@router.patch("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int = Path(..., description="Alert id"),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """Mark a collection issue as handled."""
    alert = await db.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id)

    if not alert.is_resolved:
        async with scheduling_transaction(db, "resolve_alert"):
            alert.is_resolved = True
            await log_event(
                db,
                AuditAction.ALERT_RESOLVED,
                actor_id=current_user["user_id"],
                actor_username=current_user.get("sub"),
                entity_type="alert",
                entity_id=str(alert.id),
                metadata={"bin_id": alert.bin_id, "route_id": alert.route_id},
                commit=False,
            )
        await db.refresh(alert)
    return AlertResponse.model_validate(alert)
