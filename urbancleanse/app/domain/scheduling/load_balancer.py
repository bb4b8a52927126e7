"""
Worker Load Balancer.

Chooses or validates the collector for an approval and reports per-worker
slot occupancy for the operator board.

Load score for a worker on a day:
    routes that day (not cancelled) + requests assigned that day (approved/completed)

Ties are broken by ascending worker id so the choice is deterministic.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.config import settings
from urbancleanse.app.core.exceptions import AssignmentError
from urbancleanse.app.domain.scheduling.conflicts import WORKER_BLOCKING_STATUSES, ensure_no_worker_conflict
from urbancleanse.app.models.enums import COLLECTOR_ROLES
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.scheduling_enums import RouteStatus
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest

logger = logging.getLogger(__name__)

AVAILABLE = "available"
BUSY = "busy"
NOT_AVAILABLE = "not_available"

_LABEL_ORDER = {AVAILABLE: 0, BUSY: 1, NOT_AVAILABLE: 2}


@dataclass
class WorkerAvailability:
    worker_id: int
    name: str
    role: str
    load: int
    assigned_count: int
    remaining_capacity: int
    occupied_slots: List[str] = field(default_factory=list)
    available_slots: List[str] = field(default_factory=list)
    availability: str = AVAILABLE
    has_conflict: bool = False
    conflicting_request_id: Optional[str] = None


async def _active_collectors(db: AsyncSession) -> List[User]:
    result = await db.execute(
        select(User).where(
            User.role.in_(COLLECTOR_ROLES),
            User.is_active == True,  # noqa: E712
        ).order_by(User.id)
    )
    return list(result.scalars().all())


async def _assigned_requests(
    db: AsyncSession,
    worker_id: int,
    day: date,
    exclude_request_id: Optional[str] = None,
) -> List[WasteRequest]:
    query = select(WasteRequest).where(
        WasteRequest.assigned_worker_id == worker_id,
        WasteRequest.scheduled_date == day,
        WasteRequest.status.in_(WORKER_BLOCKING_STATUSES),
    )
    if exclude_request_id:
        query = query.where(WasteRequest.request_id != exclude_request_id)
    result = await db.execute(query.order_by(WasteRequest.id))
    return list(result.scalars().all())


async def workload(db: AsyncSession, worker_id: int, day: date) -> int:
    """Load score of one worker on one day."""
    routes = await db.scalar(
        select(func.count(Route.id)).where(
            Route.collector_id == worker_id,
            Route.assigned_date == day,
            Route.status != RouteStatus.CANCELLED,
        )
    )
    requests = await db.scalar(
        select(func.count(WasteRequest.id)).where(
            WasteRequest.assigned_worker_id == worker_id,
            WasteRequest.scheduled_date == day,
            WasteRequest.status.in_(WORKER_BLOCKING_STATUSES),
        )
    )
    return (routes or 0) + (requests or 0)


async def pick_worker(db: AsyncSession, day: date, time_slot: Optional[str] = None) -> User:
    """
    Pick the least-loaded active collector for a day.

    Workers at daily capacity are never picked; when a slot is given,
    workers already holding it are skipped too.

    Raises:
        AssignmentError: no eligible collector
    """
    best: Optional[User] = None
    best_load = None

    for worker in await _active_collectors(db):
        assigned = await _assigned_requests(db, worker.id, day)
        if len(assigned) >= settings.worker_daily_capacity:
            continue
        if time_slot and any(r.scheduled_time_slot == time_slot for r in assigned):
            continue

        load = await workload(db, worker.id, day)
        # Collectors are iterated by ascending id, so strict < keeps the lowest id on ties
        if best is None or load < best_load:
            best, best_load = worker, load

    if best is None:
        raise AssignmentError(
            "No collector available for the requested date and time slot",
            details={"date": day.isoformat(), "time_slot": time_slot},
        )

    logger.info("Picked worker %s (load %s) for %s %s", best.id, best_load, day, time_slot)
    return best


async def validate_worker(
    db: AsyncSession,
    worker_id: int,
    day: date,
    time_slot: str,
    exclude_request_id: Optional[str] = None,
) -> User:
    """
    Validate an operator-chosen worker for a day and slot.

    Raises:
        AssignmentError: unknown, inactive, non-collector or at capacity
        ConflictError: the worker already holds the slot
    """
    worker = await db.get(User, worker_id)
    if worker is None:
        raise AssignmentError("Worker not found", details={"worker_id": worker_id})
    if not worker.is_active:
        raise AssignmentError("Worker is not active", details={"worker_id": worker_id})
    if worker.role not in COLLECTOR_ROLES:
        raise AssignmentError(
            "Selected user is not a waste collector",
            details={"worker_id": worker_id, "role": worker.role.value},
        )

    assigned = await _assigned_requests(db, worker_id, day, exclude_request_id)
    if len(assigned) >= settings.worker_daily_capacity:
        raise AssignmentError(
            f"Worker has reached the daily capacity of {settings.worker_daily_capacity} collections",
            details={"worker_id": worker_id, "date": day.isoformat(), "assigned": len(assigned)},
        )

    await ensure_no_worker_conflict(db, worker_id, day, time_slot, exclude_request_id)
    return worker


async def availability(
    db: AsyncSession,
    day: date,
    time_slot: Optional[str] = None,
    exclude_request_id: Optional[str] = None,
) -> List[WorkerAvailability]:
    """
    Slot occupancy and remaining capacity of every active collector.

    Sorted fully available first, then by ascending load, then by id.
    """
    board = []
    for worker in await _active_collectors(db):
        assigned = await _assigned_requests(db, worker.id, day, exclude_request_id)
        occupied = [r.scheduled_time_slot for r in assigned]
        remaining = max(0, settings.worker_daily_capacity - len(assigned))

        conflict = next((r for r in assigned if time_slot and r.scheduled_time_slot == time_slot), None)

        if remaining == 0 or conflict is not None:
            label = NOT_AVAILABLE
        elif assigned:
            label = BUSY
        else:
            label = AVAILABLE

        board.append(WorkerAvailability(
            worker_id=worker.id,
            name=worker.display_name,
            role=worker.role.value,
            load=await workload(db, worker.id, day),
            assigned_count=len(assigned),
            remaining_capacity=remaining,
            occupied_slots=sorted(occupied),
            available_slots=[s for s in settings.time_slots if s not in occupied],
            availability=label,
            has_conflict=conflict is not None,
            conflicting_request_id=conflict.request_id if conflict else None,
        ))

    board.sort(key=lambda w: (_LABEL_ORDER[w.availability], w.load, w.worker_id))
    return board
