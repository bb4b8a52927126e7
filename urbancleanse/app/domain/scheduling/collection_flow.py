"""
Collection flow.

A collector's pickup attempt is applied in one transaction under the
route's (worker, day) lock:

    bin emptied -> request approved -> completed -> route task reconciled

Failed attempts (issue reports) record a failed collection and a failed
task, leave the request approved, and raise an operator alert when asked.
"""

import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    NotFoundError,
)
from urbancleanse.app.domain.scheduling import bin_state, route_aggregator
from urbancleanse.app.domain.scheduling.identifiers import new_collection_id
from urbancleanse.app.domain.scheduling.lifecycle import complete_request, notify_customer, scheduling_transaction
from urbancleanse.app.models.alert import Alert
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.collection import Collection
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.notification import NotificationType
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.route_bin_task import RouteBinTask
from urbancleanse.app.models.scheduling_enums import (
    ACTIVE_ROUTE_STATUSES,
    CollectionMethod,
    CollectionOutcome,
    PaymentStatus,
    RequestStatus,
    RouteStatus,
    TaskStatus,
)
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.services.audit import AuditAction, log_event
from urbancleanse.app.services.notification_service import NotificationDispatcher
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, worker_key

logger = logging.getLogger(__name__)

COLLECTION_CONFLICT = "Collection conflicted with a concurrent update"
OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class CollectionFlow:

    def __init__(self, db: AsyncSession, locks: SchedulingLocks, dispatcher: NotificationDispatcher):
        self.db = db
        self.locks = locks
        self.dispatcher = dispatcher

    async def _find_route(self, collector_id: int, bin_id: str, route_id: Optional[str]) -> Route:
        """Active route of the collector with an open task for the bin."""
        if route_id:
            route = await route_aggregator.get_route(self.db, route_id)
            if route is None:
                raise NotFoundError("Route", route_id)
            if route.collector_id != collector_id:
                raise InsufficientPermissionsError("This route is assigned to another collector")
            if route.status not in ACTIVE_ROUTE_STATUSES:
                raise ConflictError(
                    f"Route is {route.status.value}",
                    details={"route_id": route_id, "status": route.status.value},
                )
            return route

        result = await self.db.execute(
            select(Route)
            .join(RouteBinTask, RouteBinTask.route_pk == Route.id)
            .where(
                Route.collector_id == collector_id,
                Route.status.in_(ACTIVE_ROUTE_STATUSES),
                RouteBinTask.bin_id == bin_id,
                RouteBinTask.status.in_(OPEN_TASK_STATUSES),
            )
            .order_by(Route.assigned_date, Route.id)
            .limit(1)
        )
        route = result.scalar_one_or_none()
        if route is not None:
            return route

        result = await self.db.execute(
            select(Route.route_id)
            .join(RouteBinTask, RouteBinTask.route_pk == Route.id)
            .where(
                Route.collector_id == collector_id,
                Route.assigned_date >= date.today(),
                Route.status != RouteStatus.CANCELLED,
                RouteBinTask.bin_id == bin_id,
                RouteBinTask.status == TaskStatus.COMPLETED,
            )
            .limit(1)
        )
        collected_on = result.scalar_one_or_none()
        if collected_on is not None:
            raise ConflictError(
                "Bin already collected on this route",
                details={"route_id": collected_on, "bin_id": bin_id},
            )
        raise NotFoundError("Scheduled collection for bin", bin_id)

    async def _open_task(self, route: Route, bin_id: str) -> RouteBinTask:
        tasks = await route_aggregator.load_tasks(self.db, route)
        task = next((t for t in tasks if t.bin_id == bin_id and t.status in OPEN_TASK_STATUSES), None)
        if task is not None:
            return task
        if any(t.bin_id == bin_id and t.status == TaskStatus.COMPLETED for t in tasks):
            raise ConflictError(
                "Bin already collected on this route",
                details={"route_id": route.route_id, "bin_id": bin_id},
            )
        raise NotFoundError("Route task", bin_id)

    async def _request_for(self, task: RouteBinTask) -> Optional[WasteRequest]:
        if not task.request_id:
            return None
        result = await self.db.execute(select(WasteRequest).where(WasteRequest.request_id == task.request_id))
        return result.scalar_one_or_none()

    async def collect(
        self,
        collector: dict,
        bin_id: str,
        method: CollectionMethod,
        route_id: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Tuple[Collection, Route, Optional[WasteRequest]]:
        """
        Record a successful pickup (scan or manual entry).

        Validates:
        - The collector has an active route with an open task for the bin
        - The task's request is approved and paid (orphaned tasks are still collectable)
        """
        collector_id = collector["user_id"]
        route = await self._find_route(collector_id, bin_id, route_id)

        key = worker_key(route.collector_id, route.assigned_date)
        async with self.locks.hold(*key), scheduling_transaction(self.db, "collect", COLLECTION_CONFLICT):
            await self.db.refresh(route)
            if route.status not in ACTIVE_ROUTE_STATUSES:
                raise ConflictError(f"Route is {route.status.value}", details={"route_id": route.route_id})

            task = await self._open_task(route, bin_id)
            request = await self._request_for(task)
            if request is not None:
                if request.status == RequestStatus.COMPLETED:
                    raise ConflictError(
                        "Request already collected",
                        details={"request_id": request.request_id, "bin_id": bin_id},
                    )
                if request.status != RequestStatus.APPROVED or request.payment_status != PaymentStatus.PAID:
                    raise ConflictError(
                        "No approved and paid request for this bin",
                        details={"request_id": request.request_id, "status": request.status.value},
                    )
            else:
                logger.warning("Collecting orphaned task for bin %s on route %s", bin_id, route.route_id)

            collection = Collection(
                collection_id=new_collection_id(),
                collector_id=collector_id,
                bin_id=bin_id,
                route_id=route.route_id,
                request_id=task.request_id,
                method=method,
                outcome=CollectionOutcome.COLLECTED,
                latitude=latitude,
                longitude=longitude,
                notes=notes,
            )
            self.db.add(collection)

            result = await self.db.execute(select(Bin).where(Bin.bin_id == bin_id))
            bin = result.scalar_one_or_none()
            if bin is not None:
                bin_state.apply_collection_completed(bin)
            else:
                logger.warning("Collected bin %s is not registered", bin_id)

            if request is not None:
                complete_request(request, f"Collected by collector {collector_id} via {method.value} ({collection.collection_id})")

            await route_aggregator.reconcile_on_collection(
                self.db, route, task.request_id, bin_id, CollectionOutcome.COLLECTED
            )
            await log_event(
                self.db,
                AuditAction.BIN_COLLECTED,
                actor_id=collector_id,
                actor_username=collector.get("sub"),
                entity_type="collection",
                entity_id=collection.collection_id,
                metadata={"bin_id": bin_id, "route_id": route.route_id, "request_id": task.request_id},
                commit=False,
            )
        await self.db.refresh(collection)

        logger.info("Collected bin %s on route %s (%s)", bin_id, route.route_id, method.value)
        if request is not None:
            await notify_customer(self.dispatcher, request)
        return collection, route, request

    async def report_issue(
        self,
        collector: dict,
        bin_id: str,
        issue_type: str,
        description: str,
        requires_admin: bool = False,
        route_id: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Tuple[Collection, Route, Optional[Alert]]:
        """Record a failed pickup attempt; the request stays approved."""
        collector_id = collector["user_id"]
        route = await self._find_route(collector_id, bin_id, route_id)

        key = worker_key(route.collector_id, route.assigned_date)
        async with self.locks.hold(*key), scheduling_transaction(self.db, "report_issue", COLLECTION_CONFLICT):
            await self.db.refresh(route)
            task = await self._open_task(route, bin_id)

            collection = Collection(
                collection_id=new_collection_id(),
                collector_id=collector_id,
                bin_id=bin_id,
                route_id=route.route_id,
                request_id=task.request_id,
                method=CollectionMethod.MANUAL,
                outcome=CollectionOutcome.FAILED,
                issue_type=issue_type,
                issue_description=description,
                requires_admin=requires_admin,
                latitude=latitude,
                longitude=longitude,
            )
            self.db.add(collection)

            await route_aggregator.reconcile_on_collection(
                self.db, route, task.request_id, bin_id, CollectionOutcome.FAILED
            )

            alert = None
            if requires_admin:
                alert = Alert(
                    alert_type="collection_issue",
                    severity="high",
                    message=f"{issue_type}: {description}",
                    bin_id=bin_id,
                    route_id=route.route_id,
                    collection_id=collection.collection_id,
                    raised_by_id=collector_id,
                )
                self.db.add(alert)

            await log_event(
                self.db,
                AuditAction.COLLECTION_ISSUE_REPORTED,
                actor_id=collector_id,
                actor_username=collector.get("sub"),
                entity_type="collection",
                entity_id=collection.collection_id,
                metadata={"bin_id": bin_id, "issue_type": issue_type, "requires_admin": requires_admin},
                commit=False,
            )
        await self.db.refresh(collection)

        logger.info("Issue %s reported for bin %s on route %s", issue_type, bin_id, route.route_id)
        if requires_admin:
            await self.dispatcher.notify_role(
                UserRole.OPERATOR,
                NotificationType.COLLECTION_ISSUE,
                "Collection Issue Reported",
                f"Collector reported '{issue_type}' for bin {bin_id} on route {route.route_id}: {description}",
                related_id=route.route_id,
            )
        return collection, route, alert

    async def route_for_day(self, collector_id: int, day: date) -> Optional[Route]:
        """
        The collector's route for a day, preferring an active one.

        An active route is repaired first so the collector never sees tasks
        of requests that were cancelled or reset.
        """
        active = await route_aggregator.find_active_route(self.db, collector_id, day)
        if active is not None:
            async with self.locks.hold(*worker_key(collector_id, day)), scheduling_transaction(self.db, "repair_route"):
                await self.db.refresh(active)
                if active.status in ACTIVE_ROUTE_STATUSES:
                    active = await route_aggregator.repair_route(self.db, active)
            if active is not None:
                return active

        result = await self.db.execute(
            select(Route).where(
                Route.collector_id == collector_id,
                Route.assigned_date == day,
                Route.status != RouteStatus.CANCELLED,
            ).order_by(Route.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, collector_id: int, limit: int = 50) -> List[Collection]:
        result = await self.db.execute(
            select(Collection)
            .where(Collection.collector_id == collector_id)
            .order_by(Collection.collected_at.desc(), Collection.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
