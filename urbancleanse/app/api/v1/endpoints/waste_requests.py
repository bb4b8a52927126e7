"""
Customer Waste Request API Endpoints.

Customers browse the waste type catalogue, check bin availability and submit
pickup requests for their own bins.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from urbancleanse.app.api.v1.dependencies import get_lifecycle
from urbancleanse.app.core.dependencies import get_current_user
from urbancleanse.app.core.exceptions import NotFoundError, ValidationError
from urbancleanse.app.core.guards import require_customer, ownership_guard
from urbancleanse.app.db.session import get_db
from urbancleanse.app.domain.scheduling.conflicts import check_bin_schedule, parse_schedule_date
from urbancleanse.app.domain.scheduling.identifiers import is_valid_bin_id
from urbancleanse.app.domain.scheduling.lifecycle import RequestLifecycleManager
from urbancleanse.app.domain.scheduling.route_aggregator import resolve_route
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.scheduling_enums import CollectionType, RequestStatus
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.models.waste_type import WasteType
from urbancleanse.app.schemas.waste_request import (
    ScheduleCheckResponse,
    WasteRequestCreate,
    WasteRequestListResponse,
    WasteRequestResponse,
    WasteTypeResponse,
)

router = APIRouter(prefix="/waste", tags=["Waste Requests"])


@router.get("/types", response_model=List[WasteTypeResponse])
async def list_waste_types(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List active waste types with their base cost."""
    result = await db.execute(
        select(WasteType).where(WasteType.is_active == True).order_by(WasteType.id)  # noqa: E712
    )
    return result.scalars().all()


@router.get("/check-schedule", response_model=ScheduleCheckResponse)
async def check_schedule(
    bin_id: str = Query(..., description="Bin identifier"),
    collection_type: CollectionType = Query(..., description="Collection type"),
    date: str = Query(..., description="ISO date, today or later"),
    current_user: dict = Depends(require_customer),
    db: AsyncSession = Depends(get_db)
):
    """
    Check whether a bin can take another request of this type on a day.

    Read-only; the answer can change before the request is submitted.
    """
    if not is_valid_bin_id(bin_id):
        raise ValidationError("Invalid Bin ID format", details={"field": "bin_id", "value": bin_id})
    day = parse_schedule_date(date)

    result = await db.execute(select(Bin).where(Bin.bin_id == bin_id))
    bin = result.scalar_one_or_none()
    if not bin:
        raise NotFoundError("Bin", bin_id)
    ownership_guard.enforce(bin.owner_id, current_user, "bin")

    return await check_bin_schedule(db, bin_id, collection_type, day)


@router.post("/requests", response_model=WasteRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_waste_request(
    request_data: WasteRequestCreate,
    current_user: dict = Depends(require_customer),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle)
):
    """
    Submit a pickup request for one of the customer's bins.

    The request starts as pending with payment pending; cost is the waste
    type's base cost.
    """
    request = await lifecycle.create(
        current_user,
        bin_id=request_data.bin_id,
        collection_type=request_data.collection_type,
        preferred_date=request_data.preferred_date,
        preferred_time_slot=request_data.preferred_time_slot,
        notes=request_data.notes,
        address=request_data.address,
    )
    return WasteRequestResponse.model_validate(request)


@router.get("/requests", response_model=WasteRequestListResponse)
async def list_my_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_customer),
    db: AsyncSession = Depends(get_db)
):
    """List the current customer's requests, newest first."""
    query = select(WasteRequest).where(WasteRequest.user_id == current_user["user_id"])
    if status_filter:
        query = query.where(WasteRequest.status == status_filter)

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


@router.get("/requests/{request_id}", response_model=WasteRequestResponse)
async def get_waste_request(
    request_id: str = Path(..., description="Request identifier (WR-...)"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Get one request (owner or operator).

    A stale route reference is repaired on read.
    """
    result = await db.execute(select(WasteRequest).where(WasteRequest.request_id == request_id))
    request = result.scalar_one_or_none()
    if not request:
        raise NotFoundError("Waste request", request_id)
    ownership_guard.enforce(request.user_id, current_user, "request")

    stale = request.route_id
    await resolve_route(db, request)
    if request.route_id != stale:
        await db.commit()
        await db.refresh(request)

    return WasteRequestResponse.model_validate(request)
