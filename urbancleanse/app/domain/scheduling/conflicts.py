"""
Conflict Detector.

Two independent "does an active commitment already hold this slot" checks:

* bin schedule: same bin, same collection type, same preferred day, status
  pending or approved. Different collection types on the same bin and day
  never conflict.
* worker schedule: same assigned worker, same scheduled day, same time slot,
  status approved or completed.

Inputs are validated first; validation failures raise ``ValidationError``,
conflicts raise ``ConflictError`` naming the conflicting request.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.config import settings
from urbancleanse.app.core.exceptions import ConflictError, ValidationError
from urbancleanse.app.models.scheduling_enums import CollectionType, RequestStatus
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest

BIN_BLOCKING_STATUSES = (RequestStatus.PENDING, RequestStatus.APPROVED)
WORKER_BLOCKING_STATUSES = (RequestStatus.APPROVED, RequestStatus.COMPLETED)


def parse_schedule_date(value: Union[str, date, datetime, None], today: Optional[date] = None) -> date:
    """
    Parse an ISO date (or datetime) and require it to be today or later.

    Raises:
        ValidationError: missing, unparseable or past date
    """
    if value is None or value == "":
        raise ValidationError("Date is required", details={"field": "date"})

    if isinstance(value, datetime):
        day = value.date()
    elif isinstance(value, date):
        day = value
    else:
        try:
            day = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")).date()
        except ValueError:
            raise ValidationError("Invalid date format", details={"field": "date", "value": str(value)})

    today = today or date.today()
    if day < today:
        raise ValidationError(
            "Date cannot be in the past",
            details={"field": "date", "value": day.isoformat(), "today": today.isoformat()},
        )
    return day


def validate_time_slot(value: Optional[str]) -> str:
    """Require one of the fixed collection windows."""
    if not value:
        raise ValidationError("Time slot is required", details={"field": "time_slot"})
    if value not in settings.time_slots:
        raise ValidationError(
            "Invalid time slot",
            details={"field": "time_slot", "value": value, "allowed": list(settings.time_slots)},
        )
    return value


async def _describe(db: AsyncSession, request: WasteRequest) -> Dict[str, Any]:
    customer = await db.get(User, request.user_id)
    return {
        "request_id": request.request_id,
        "status": request.status.value,
        "collection_type": request.collection_type.value,
        "preferred_date": request.preferred_date.isoformat() if request.preferred_date else None,
        "scheduled_date": request.scheduled_date.isoformat() if request.scheduled_date else None,
        "time_slot": request.scheduled_time_slot or request.preferred_time_slot,
        "customer": customer.display_name if customer else None,
    }


async def find_bin_conflict(
    db: AsyncSession,
    bin_id: str,
    collection_type: CollectionType,
    day: date,
    exclude_request_id: Optional[str] = None,
) -> Optional[WasteRequest]:
    query = select(WasteRequest).where(
        WasteRequest.bin_id == bin_id,
        WasteRequest.collection_type == collection_type,
        WasteRequest.preferred_date == day,
        WasteRequest.status.in_(BIN_BLOCKING_STATUSES),
    )
    if exclude_request_id:
        query = query.where(WasteRequest.request_id != exclude_request_id)

    result = await db.execute(query.order_by(WasteRequest.id).limit(1))
    return result.scalar_one_or_none()


async def find_worker_conflict(
    db: AsyncSession,
    worker_id: int,
    day: date,
    time_slot: str,
    exclude_request_id: Optional[str] = None,
) -> Optional[WasteRequest]:
    query = select(WasteRequest).where(
        WasteRequest.assigned_worker_id == worker_id,
        WasteRequest.scheduled_date == day,
        WasteRequest.scheduled_time_slot == time_slot,
        WasteRequest.status.in_(WORKER_BLOCKING_STATUSES),
    )
    if exclude_request_id:
        query = query.where(WasteRequest.request_id != exclude_request_id)

    result = await db.execute(query.order_by(WasteRequest.id).limit(1))
    return result.scalar_one_or_none()


async def ensure_no_bin_conflict(
    db: AsyncSession,
    bin_id: str,
    collection_type: CollectionType,
    day: date,
    exclude_request_id: Optional[str] = None,
) -> None:
    """
    Raises:
        ConflictError: another active request holds this bin, type and day
    """
    existing = await find_bin_conflict(db, bin_id, collection_type, day, exclude_request_id)
    if existing is not None:
        raise ConflictError(
            f"A {collection_type.value} collection for bin {bin_id} is already scheduled on {day.isoformat()}",
            details={"conflict_type": "bin_schedule", "conflicting_request": await _describe(db, existing)},
        )


async def ensure_no_worker_conflict(
    db: AsyncSession,
    worker_id: int,
    day: date,
    time_slot: str,
    exclude_request_id: Optional[str] = None,
) -> None:
    """
    Raises:
        ConflictError: the worker already holds this day and slot
    """
    existing = await find_worker_conflict(db, worker_id, day, time_slot, exclude_request_id)
    if existing is not None:
        raise ConflictError(
            f"Worker {worker_id} already has request {existing.request_id} "
            f"on {day.isoformat()} at {time_slot}",
            details={
                "conflict_type": "time_slot",
                "worker_id": worker_id,
                "conflicting_request": await _describe(db, existing),
            },
        )


async def check_bin_schedule(
    db: AsyncSession,
    bin_id: str,
    collection_type: CollectionType,
    day: date,
) -> Dict[str, Any]:
    """
    Read-only availability check for the customer "check schedule" view.

    Returns whether the bin/type/day is free, the conflicting request if not,
    and every other active request on that bin and day.
    """
    existing = await find_bin_conflict(db, bin_id, collection_type, day)

    result = await db.execute(
        select(WasteRequest).where(
            WasteRequest.bin_id == bin_id,
            WasteRequest.preferred_date == day,
            WasteRequest.status.in_(BIN_BLOCKING_STATUSES),
        ).order_by(WasteRequest.id)
    )
    same_day = result.scalars().all()

    return {
        "bin_id": bin_id,
        "collection_type": collection_type.value,
        "date": day.isoformat(),
        "available": existing is None,
        "conflicting_request": await _describe(db, existing) if existing else None,
        "scheduled_types": sorted({r.collection_type.value for r in same_day}),
        "requests_that_day": len(same_day),
    }
