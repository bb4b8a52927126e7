"""
Scheduling dependencies for v1 endpoints.

Bind the request-scoped session to the process-wide lock registry and
notification dispatcher.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.db.session import get_db
from urbancleanse.app.domain.scheduling.collection_flow import CollectionFlow
from urbancleanse.app.domain.scheduling.lifecycle import RequestLifecycleManager
from urbancleanse.app.domain.scheduling.route_planner import RoutePlanner
from urbancleanse.app.services.notification_service import NotificationDispatcher, get_dispatcher
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, get_scheduling_locks


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    locks: SchedulingLocks = Depends(get_scheduling_locks),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> RequestLifecycleManager:
    return RequestLifecycleManager(db, locks, dispatcher)


def get_collection_flow(
    db: AsyncSession = Depends(get_db),
    locks: SchedulingLocks = Depends(get_scheduling_locks),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> CollectionFlow:
    return CollectionFlow(db, locks, dispatcher)


def get_route_planner(
    db: AsyncSession = Depends(get_db),
    locks: SchedulingLocks = Depends(get_scheduling_locks),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> RoutePlanner:
    return RoutePlanner(db, locks, dispatcher)
