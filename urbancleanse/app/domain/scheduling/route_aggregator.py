"""
Route Aggregator.

Keeps each collector's daily route consistent with the requests assigned to
it. Functions take the caller's session and only flush; the caller holds the
(worker, day) scheduling lock and commits.

``WasteRequest.route_id`` and ``RouteBinTask.request_id`` form a weak,
lookup-only relation. Either side may be stale, so every lookup falls back
to scanning routes by request id.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.config import settings
from urbancleanse.app.core.exceptions import ConflictError, NotFoundError
from urbancleanse.app.domain.scheduling.identifiers import as_naive_utc, new_planned_route_id, new_route_id, utcnow
from urbancleanse.app.domain.scheduling.state_machine import advance_route, release_assignment
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.route_bin_task import RouteBinTask
from urbancleanse.app.models.scheduling_enums import (
    ACTIVE_ROUTE_STATUSES,
    CollectionOutcome,
    CollectionType,
    RequestStatus,
    RouteStatus,
    TaskPriority,
    TaskStatus,
)
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest

logger = logging.getLogger(__name__)

ESTIMATED_MINUTES = {
    CollectionType.FOOD: 15,
    CollectionType.POLYTHENE: 12,
    CollectionType.PAPER: 10,
    CollectionType.HAZARDOUS: 25,
    CollectionType.EWASTE: 20,
}
DEFAULT_ESTIMATED_MINUTES = 15


def task_priority(collection_type: CollectionType, fill_level: int = 0) -> TaskPriority:
    if collection_type == CollectionType.HAZARDOUS or fill_level > 90:
        return TaskPriority.URGENT
    if collection_type == CollectionType.EWASTE or fill_level > 70:
        return TaskPriority.HIGH
    return TaskPriority.NORMAL


def estimated_minutes(collection_type: CollectionType) -> int:
    return ESTIMATED_MINUTES.get(collection_type, DEFAULT_ESTIMATED_MINUTES)


def minutes_between(start: Optional[datetime], end: datetime) -> Optional[int]:
    if start is None:
        return None
    delta = as_naive_utc(end) - as_naive_utc(start)
    return max(0, int(delta.total_seconds() // 60))


async def load_tasks(db: AsyncSession, route: Route) -> List[RouteBinTask]:
    result = await db.execute(
        select(RouteBinTask)
        .where(RouteBinTask.route_pk == route.id)
        .order_by(RouteBinTask.sequence, RouteBinTask.id)
    )
    return list(result.scalars().all())


async def get_route(db: AsyncSession, route_id: str) -> Optional[Route]:
    result = await db.execute(select(Route).where(Route.route_id == route_id))
    return result.scalar_one_or_none()


async def find_active_route(db: AsyncSession, worker_id: int, day: date) -> Optional[Route]:
    result = await db.execute(
        select(Route).where(
            Route.collector_id == worker_id,
            Route.assigned_date == day,
            Route.status.in_(ACTIVE_ROUTE_STATUSES),
        ).order_by(Route.id).limit(1)
    )
    return result.scalar_one_or_none()


async def recount(db: AsyncSession, route: Route, tasks: List[RouteBinTask]) -> List[RouteBinTask]:
    """
    Deduplicate tasks by request id, resequence from 1 and refresh the
    route's counters. Returns the surviving tasks in order.
    """
    seen = set()
    kept = []
    for task in tasks:
        if task.request_id and task.request_id in seen:
            logger.warning("Dropping duplicate task for request %s on route %s", task.request_id, route.route_id)
            await db.delete(task)
            continue
        if task.request_id:
            seen.add(task.request_id)
        kept.append(task)

    for position, task in enumerate(kept, start=1):
        task.sequence = position

    route.total_bins = len(kept)
    route.completed_bins = sum(1 for t in kept if t.status == TaskStatus.COMPLETED)
    route.estimated_duration = sum(t.estimated_time or 0 for t in kept)
    return kept


async def drop_released_tasks(db: AsyncSession, route: Route, tasks: List[RouteBinTask]) -> List[RouteBinTask]:
    """
    Drop open tasks of an active route whose request still exists but is no
    longer approved or completed (left behind by a failed removal).
    Tasks without a request, or whose request is gone, are kept.
    """
    if route.status not in ACTIVE_ROUTE_STATUSES:
        return tasks
    request_ids = {t.request_id for t in tasks if t.request_id and t.status != TaskStatus.COMPLETED}
    if not request_ids:
        return tasks

    result = await db.execute(
        select(WasteRequest.request_id, WasteRequest.status).where(WasteRequest.request_id.in_(request_ids))
    )
    released = {
        request_id for request_id, status in result.all()
        if status not in (RequestStatus.APPROVED, RequestStatus.COMPLETED)
    }

    kept = []
    for task in tasks:
        if task.request_id in released and task.status != TaskStatus.COMPLETED:
            logger.warning("Dropping stale task for request %s on route %s", task.request_id, route.route_id)
            await db.delete(task)
        else:
            kept.append(task)
    return kept


def _finish(route: Route, now: datetime) -> None:
    advance_route(route, RouteStatus.COMPLETED)
    route.end_time = now
    route.actual_duration = minutes_between(route.start_time, now)


async def _new_task(
    db: AsyncSession,
    route: Route,
    request: WasteRequest,
    sequence: int,
    bin: Optional[Bin] = None,
) -> RouteBinTask:
    if bin is None:
        result = await db.execute(select(Bin).where(Bin.bin_id == request.bin_id))
        bin = result.scalar_one_or_none()
    customer = await db.get(User, request.user_id)
    task = RouteBinTask(
        route_pk=route.id,
        bin_id=request.bin_id,
        request_id=request.request_id,
        priority=task_priority(request.collection_type, bin.fill_level if bin else 0),
        estimated_time=estimated_minutes(request.collection_type),
        sequence=sequence,
        status=TaskStatus.PENDING,
        customer_name=customer.display_name if customer else None,
        customer_email=customer.email if customer else None,
        collection_type=request.collection_type.value,
        cost=request.cost,
    )
    db.add(task)
    return task


async def assign(
    db: AsyncSession,
    request: WasteRequest,
    worker_id: int,
    day: date,
    assigned_by_id: Optional[int] = None,
) -> Route:
    """
    Put the request on the worker's active route for the day.

    Creates the route when none is active. A request already present on the
    route is left as is and the existing route is returned.
    """
    bin_result = await db.execute(select(Bin).where(Bin.bin_id == request.bin_id))
    bin = bin_result.scalar_one_or_none()

    route = await find_active_route(db, worker_id, day)
    if route is None:
        route = Route(
            route_id=new_route_id(day),
            collector_id=worker_id,
            assigned_date=day,
            status=RouteStatus.ASSIGNED,
            area=(bin.area if bin and bin.area else settings.default_route_area),
            created_by_id=assigned_by_id,
            total_bins=0,
            completed_bins=0,
            estimated_duration=0,
        )
        db.add(route)
        await db.flush()
        tasks = []
        logger.info("Created route %s for worker %s on %s", route.route_id, worker_id, day)
    else:
        tasks = await drop_released_tasks(db, route, await load_tasks(db, route))
        tasks = await recount(db, route, tasks)
        if any(t.request_id == request.request_id for t in tasks):
            logger.info("Request %s already on route %s", request.request_id, route.route_id)
            return route

    task = await _new_task(db, route, request, len(tasks) + 1, bin)
    await recount(db, route, tasks + [task])
    await db.flush()

    logger.info("Added request %s to route %s (bins=%d)", request.request_id, route.route_id, route.total_bins)
    return route


async def create_planned_route(
    db: AsyncSession,
    collector_id: int,
    day: date,
    area: str,
    requests: List[WasteRequest],
    created_by_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> Route:
    """
    Open an operator-planned route with one task per request, in the given
    order. The requests must already be off any other active route.
    """
    route = Route(
        route_id=new_planned_route_id(),
        collector_id=collector_id,
        assigned_date=day,
        status=RouteStatus.ASSIGNED,
        area=area,
        created_by_id=created_by_id,
        notes=notes or f"Route created for {area} area on {day.isoformat()}",
        total_bins=0,
        completed_bins=0,
        estimated_duration=0,
    )
    db.add(route)
    await db.flush()

    tasks = [await _new_task(db, route, request, position) for position, request in enumerate(requests, start=1)]
    await recount(db, route, tasks)
    await db.flush()

    logger.info("Created planned route %s for worker %s on %s (bins=%d)", route.route_id, collector_id, day, len(tasks))
    return route


async def _scan_for_request(db: AsyncSession, request_id: str, active_only: bool) -> Optional[Route]:
    query = (
        select(Route)
        .join(RouteBinTask, RouteBinTask.route_pk == Route.id)
        .where(RouteBinTask.request_id == request_id)
    )
    if active_only:
        query = query.where(Route.status.in_(ACTIVE_ROUTE_STATUSES))
    result = await db.execute(query.order_by(Route.id.desc()).limit(1))
    return result.scalar_one_or_none()


async def _route_holds(db: AsyncSession, route: Route, request_id: str) -> bool:
    result = await db.execute(
        select(RouteBinTask.id).where(
            RouteBinTask.route_pk == route.id,
            RouteBinTask.request_id == request_id,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def locate_route(db: AsyncSession, request: WasteRequest, active_only: bool = True) -> Optional[Route]:
    """Find the route carrying the request, trusting ``request.route_id`` only when it checks out."""
    if request.route_id:
        route = await get_route(db, request.route_id)
        if route is not None and (not active_only or route.status in ACTIVE_ROUTE_STATUSES):
            if await _route_holds(db, route, request.request_id):
                return route
    return await _scan_for_request(db, request.request_id, active_only)


async def remove(db: AsyncSession, request: WasteRequest) -> Optional[Route]:
    """
    Strip the request's task from its active route.

    The route is deleted when no task is left. Terminal routes keep their
    tasks as history.

    Returns:
        The reduced route, or None when the route was deleted or not found
    """
    route = await locate_route(db, request)
    if route is None:
        logger.info("No active route carries request %s", request.request_id)
        return None

    tasks = await load_tasks(db, route)
    remaining = []
    for task in tasks:
        if task.request_id == request.request_id:
            await db.delete(task)
        else:
            remaining.append(task)
    remaining = await drop_released_tasks(db, route, remaining)
    await db.flush()

    if not remaining:
        await db.delete(route)
        await db.flush()
        logger.info("Deleted empty route %s after removing request %s", route.route_id, request.request_id)
        return None

    await recount(db, route, remaining)
    if route.completed_bins == route.total_bins:
        _finish(route, utcnow())
    await db.flush()
    logger.info("Removed request %s from route %s (bins=%d)", request.request_id, route.route_id, route.total_bins)
    return route


async def repair_route(db: AsyncSession, route: Route) -> Optional[Route]:
    """
    Drop stale tasks from an active route and refresh its counters. The route
    completes when every remaining task is completed and is deleted when no
    task is left.

    Returns:
        The repaired route, or None when it was deleted
    """
    tasks = await load_tasks(db, route)
    kept = await drop_released_tasks(db, route, tasks)
    if len(kept) == len(tasks):
        return route

    if not kept:
        await db.delete(route)
        await db.flush()
        logger.info("Deleted route %s, no live tasks left", route.route_id)
        return None

    await recount(db, route, kept)
    if route.completed_bins == route.total_bins:
        _finish(route, utcnow())
    await db.flush()
    logger.info("Repaired route %s (bins=%d)", route.route_id, route.total_bins)
    return route


async def reconcile_on_collection(
    db: AsyncSession,
    route: Route,
    request_id: Optional[str],
    bin_id: str,
    outcome: CollectionOutcome = CollectionOutcome.COLLECTED,
) -> RouteBinTask:
    """
    Apply a pickup attempt to the route.

    The task is marked completed (or failed), counters are refreshed, and the
    route either completes (all tasks completed) or is started.

    Raises:
        NotFoundError: the route has no open task for the request/bin
        ConflictError: the task was already collected
    """
    tasks = await drop_released_tasks(db, route, await load_tasks(db, route))
    tasks = await recount(db, route, tasks)

    task = None
    if request_id:
        task = next((t for t in tasks if t.request_id == request_id), None)
    if task is None:
        task = next(
            (t for t in tasks if t.bin_id == bin_id and t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)),
            None,
        )
    if task is None:
        raise NotFoundError("Route task", bin_id)
    if task.status == TaskStatus.COMPLETED:
        raise ConflictError(
            "Bin already collected on this route",
            details={"route_id": route.route_id, "bin_id": bin_id},
        )

    now = utcnow()
    task.status = TaskStatus.COMPLETED if outcome == CollectionOutcome.COLLECTED else TaskStatus.FAILED
    task.completed_at = now
    await recount(db, route, tasks)

    if route.total_bins and route.completed_bins == route.total_bins:
        # A route finished by its first pickup was never started: no duration
        _finish(route, now)
    elif route.start_time is None:
        advance_route(route, RouteStatus.IN_PROGRESS)
        route.start_time = now

    await db.flush()
    logger.info(
        "Route %s progress %d/%d (%s)", route.route_id, route.completed_bins, route.total_bins, route.status.value
    )
    return task


async def resolve_route(db: AsyncSession, request: WasteRequest) -> Optional[Route]:
    """
    Self-healing read: return the route carrying the request and repair a
    stale ``request.route_id`` (or clear it when no route holds the request).
    Only approved and completed requests keep a route reference.
    """
    route = None
    if request.status in (RequestStatus.APPROVED, RequestStatus.COMPLETED):
        route = await locate_route(db, request, active_only=False)
    found = route.route_id if route else None
    if request.route_id != found:
        logger.info("Repairing route reference of %s: %s -> %s", request.request_id, request.route_id, found)
        request.route_id = found
        await db.flush()
    return route


async def set_route_status(db: AsyncSession, route: Route, target: RouteStatus, notes: Optional[str] = None) -> Route:
    """
    Operator/collector status change through the route transition table.
    Same-status updates only append the note.
    """
    now = utcnow()
    if route.status != target:
        if target == RouteStatus.CANCELLED:
            raise ConflictError("Use route cancellation to cancel a route", details={"route_id": route.route_id})
        if target == RouteStatus.COMPLETED:
            _finish(route, now)
        else:
            advance_route(route, target)
            if target == RouteStatus.IN_PROGRESS and route.start_time is None:
                route.start_time = now
    route.append_note(notes)
    await db.flush()
    return route


async def cancel_route(
    db: AsyncSession,
    route: Route,
    operator_id: Optional[int],
    reason: Optional[str] = None,
) -> List[WasteRequest]:
    """
    Cancel a route and return its still-approved requests to pending.

    Tasks stay on the cancelled route as history.

    Returns:
        The requests that were reset

    Raises:
        ConflictError: the route is completed or already cancelled
    """
    if route.status == RouteStatus.COMPLETED:
        raise ConflictError("Cannot cancel a completed route", details={"route_id": route.route_id})

    tasks = await load_tasks(db, route)
    request_ids = {t.request_id for t in tasks if t.request_id}
    result = await db.execute(
        select(WasteRequest).where(
            (WasteRequest.request_id.in_(request_ids)) | (WasteRequest.route_id == route.route_id)
        ).order_by(WasteRequest.id)
    )

    note = f"Route {route.route_id} cancelled by operator"
    if reason:
        note = f"{note}: {reason}"

    advance_route(route, RouteStatus.CANCELLED)
    route.append_note(note)

    reset = []
    for request in result.scalars().all():
        if release_assignment(request, note):
            reset.append(request)

    await db.flush()
    logger.info("Cancelled route %s by %s, %d requests reset", route.route_id, operator_id, len(reset))
    return reset
