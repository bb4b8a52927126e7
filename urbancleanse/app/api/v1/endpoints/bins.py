"""
Bin API Endpoints.

Customers see their own bins; operators see all bins and push sensor
readings (fill level, battery) into the bin state tracker.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from urbancleanse.app.core.dependencies import get_current_user
from urbancleanse.app.core.exceptions import InsufficientPermissionsError, NotFoundError
from urbancleanse.app.core.guards import is_operator, ownership_guard, require_operator
from urbancleanse.app.db.session import get_db
from urbancleanse.app.domain.scheduling import bin_state
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.scheduling_enums import BinStatus
from urbancleanse.app.schemas.bin import BinReadingUpdate, BinResponse
from urbancleanse.app.services.audit import AuditAction, log_event

router = APIRouter(prefix="/bins", tags=["Bins"])


async def _get_bin_or_404(db: AsyncSession, bin_id: str) -> Bin:
    result = await db.execute(select(Bin).where(Bin.bin_id == bin_id))
    bin = result.scalar_one_or_none()
    if not bin:
        raise NotFoundError("Bin", bin_id)
    return bin


@router.get("", response_model=List[BinResponse])
async def list_bins(
    status_filter: Optional[BinStatus] = Query(None, alias="status"),
    area: Optional[str] = Query(None),
    maintenance_required: Optional[bool] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List bins; customers only see bins they own."""
    query = select(Bin)
    if not is_operator(current_user):
        if current_user.get("role") != UserRole.CUSTOMER.value:
            raise InsufficientPermissionsError("Access denied. Only customers and operators can list bins.")
        query = query.where(Bin.owner_id == current_user["user_id"])
    if status_filter:
        query = query.where(Bin.status == status_filter)
    if area:
        query = query.where(Bin.area == area)
    if maintenance_required is not None:
        query = query.where(Bin.maintenance_required == maintenance_required)

    result = await db.execute(query.order_by(Bin.bin_id))
    return result.scalars().all()


@router.get("/{bin_id}", response_model=BinResponse)
async def get_bin(
    bin_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one bin (owner or operator)."""
    bin = await _get_bin_or_404(db, bin_id)
    ownership_guard.enforce(bin.owner_id, current_user, "bin")
    return bin


@router.put("/{bin_id}/reading", response_model=BinResponse)
async def update_bin_reading(
    reading: BinReadingUpdate,
    bin_id: str = Path(...),
    current_user: dict = Depends(require_operator),
    db: AsyncSession = Depends(get_db)
):
    """
    Store a sensor reading.

    Fill level is clamped to 0-150 and battery to 0-100; status and the
    maintenance flag are re-derived from the stored values.
    """
    bin = await _get_bin_or_404(db, bin_id)
    change = bin_state.apply_sensor_reading(bin, reading.fill_level, reading.battery)

    await log_event(
        db,
        AuditAction.BIN_READING_UPDATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        entity_type="bin",
        entity_id=bin.bin_id,
        metadata={
            "fill_level": [change.old_fill_level, change.new_fill_level],
            "status": [change.old_status.value, change.new_status.value],
            "battery": bin.battery,
        },
        commit=False,
    )
    await db.commit()
    await db.refresh(bin)
    return bin
