"""
Route Planner.

Operator-side route building: approved and paid requests for a day grouped
by bin area, and hand-built routes (``RT-`` ids) that move the selected
requests onto one collector.

Moving a request keeps every invariant of approval: the request leaves its
previous active route first, the target collector must be free in each
request's slot and below capacity, and the collector may hold only one
active route per day.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.config import settings
from urbancleanse.app.core.exceptions import AssignmentError, ConflictError, ValidationError
from urbancleanse.app.domain.scheduling import route_aggregator
from urbancleanse.app.domain.scheduling.conflicts import parse_schedule_date
from urbancleanse.app.domain.scheduling.identifiers import utcnow
from urbancleanse.app.domain.scheduling.lifecycle import scheduling_transaction
from urbancleanse.app.domain.scheduling.load_balancer import validate_worker
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.enums import COLLECTOR_ROLES
from urbancleanse.app.models.notification import NotificationType
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.scheduling_enums import PaymentStatus, RequestStatus
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.services.audit import AuditAction, log_event
from urbancleanse.app.services.notification_service import NotificationDispatcher
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, request_key, worker_key

logger = logging.getLogger(__name__)


async def _scheduled_requests(db: AsyncSession, day: date, bin_ids: Optional[List[str]] = None) -> List[WasteRequest]:
    query = select(WasteRequest).where(
        WasteRequest.status == RequestStatus.APPROVED,
        WasteRequest.payment_status == PaymentStatus.PAID,
        WasteRequest.scheduled_date == day,
    )
    if bin_ids is not None:
        query = query.where(WasteRequest.bin_id.in_(bin_ids))
    # populate_existing so a re-read under the locks sees concurrent commits
    result = await db.execute(query.order_by(WasteRequest.id).execution_options(populate_existing=True))
    return list(result.scalars().all())


async def bins_by_area(db: AsyncSession, day: date) -> List[Dict]:
    """
    Approved and paid requests scheduled on ``day``, grouped by the area of
    their (active) bin and sorted by area name.
    """
    requests = await _scheduled_requests(db, day)
    if not requests:
        return []

    result = await db.execute(
        select(Bin).where(Bin.bin_id.in_({r.bin_id for r in requests}), Bin.is_active == True)  # noqa: E712
    )
    bins = {b.bin_id: b for b in result.scalars().all()}

    areas: Dict[str, Dict] = {}
    for request in requests:
        bin = bins.get(request.bin_id)
        if bin is None:
            continue
        area = bin.area or settings.default_route_area
        group = areas.setdefault(area, {"area": area, "bins": [], "total_requests": 0, "estimated_duration": 0})

        entry = next((b for b in group["bins"] if b["bin_id"] == bin.bin_id), None)
        if entry is None:
            entry = {
                "bin_id": bin.bin_id,
                "address": bin.address,
                "fill_level": bin.fill_level,
                "battery": bin.battery,
                "status": bin.status.value,
                "requests": [],
            }
            group["bins"].append(entry)
        entry["requests"].append({
            "request_id": request.request_id,
            "collection_type": request.collection_type.value,
            "scheduled_time_slot": request.scheduled_time_slot,
            "assigned_worker_id": request.assigned_worker_id,
            "route_id": request.route_id,
        })
        group["total_requests"] += 1
        group["estimated_duration"] += route_aggregator.estimated_minutes(request.collection_type)

    return [areas[name] for name in sorted(areas)]


class RoutePlanner:
    """Builds operator-planned routes under the scheduling locks."""

    def __init__(self, db: AsyncSession, locks: SchedulingLocks, dispatcher: NotificationDispatcher):
        self.db = db
        self.locks = locks
        self.dispatcher = dispatcher

    async def create_route(
        self,
        operator: dict,
        collector_id: int,
        assigned_date: Union[str, date],
        area: str,
        selected_bins: List[str],
        notes: Optional[str] = None,
    ) -> Route:
        """
        Put the day's approved and paid requests for ``selected_bins`` on a new
        route for ``collector_id``.

        Raises:
            ValidationError: no bins selected, bad date, or no eligible requests
            AssignmentError: the collector is unknown, inactive or not a collector,
                or would exceed the daily capacity
            ConflictError: the collector already has an active route that day,
                a slot clashes, or the requests changed concurrently
        """
        if not selected_bins:
            raise ValidationError("At least one bin must be selected", details={"field": "selected_bins"})
        if not area:
            raise ValidationError("Area is required", details={"field": "area"})
        day = parse_schedule_date(assigned_date)

        collector = await self.db.get(User, collector_id)
        if collector is None or collector.role not in COLLECTOR_ROLES or not collector.is_active:
            raise AssignmentError(
                "Invalid collector ID or collector is not an active waste collector",
                details={"collector_id": collector_id},
            )

        candidates = await _scheduled_requests(self.db, day, selected_bins)
        if not candidates:
            raise ValidationError(
                "No approved and paid requests found for selected bins on this date",
                details={"date": day.isoformat(), "selected_bins": selected_bins},
            )
        snapshot = {r.request_id: r.assigned_worker_id for r in candidates}

        worker_ids = {collector_id} | {w for w in snapshot.values() if w is not None}
        keys = [request_key(rid) for rid in sorted(snapshot)]
        keys += [worker_key(w, day) for w in sorted(worker_ids)]

        async with self.locks.hold_many(keys), scheduling_transaction(self.db, "create_route"):
            if await route_aggregator.find_active_route(self.db, collector_id, day) is not None:
                raise ConflictError(
                    f"Collector {collector.display_name} already has a route assigned for {day.isoformat()}",
                    details={"collector_id": collector_id, "date": day.isoformat()},
                )

            requests = await _scheduled_requests(self.db, day, selected_bins)
            if {r.request_id: r.assigned_worker_id for r in requests} != snapshot:
                raise ConflictError(
                    "Requests changed while waiting for the schedule lock",
                    details={"date": day.isoformat(), "selected_bins": selected_bins},
                )

            order = {bin_id: position for position, bin_id in enumerate(selected_bins)}
            requests.sort(key=lambda r: (order.get(r.bin_id, len(order)), r.id))

            for request in requests:
                await route_aggregator.remove(self.db, request)
                await validate_worker(self.db, collector_id, day, request.scheduled_time_slot,
                                      exclude_request_id=request.request_id)
                request.assigned_worker_id = collector_id
                await self.db.flush()

            route = await route_aggregator.create_planned_route(
                self.db, collector_id, day, area, requests, operator.get("user_id"), notes
            )
            now = utcnow()
            for request in requests:
                request.assigned_by_id = operator.get("user_id")
                request.assigned_at = now
                request.route_id = route.route_id
                request.append_note(f"Moved to route {route.route_id} for {collector.display_name}")

            await log_event(
                self.db,
                AuditAction.ROUTE_CREATED,
                actor_id=operator.get("user_id"),
                actor_username=operator.get("sub"),
                entity_type="route",
                entity_id=route.route_id,
                metadata={
                    "collector_id": collector_id,
                    "date": day.isoformat(),
                    "area": area,
                    "requests": [r.request_id for r in requests],
                },
                commit=False,
            )

        logger.info("Planned route %s: %d requests for worker %s on %s", route.route_id, len(requests), collector_id, day)

        await self.dispatcher.notify(
            collector_id,
            NotificationType.ROUTE_ASSIGNED,
            "New Route Assigned",
            f"You have been assigned a new collection route {route.route_id} for {day.isoformat()}. "
            f"Total bins: {route.total_bins}",
            related_id=route.route_id,
        )
        await self.db.refresh(route)
        return route
