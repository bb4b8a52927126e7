"""
Statistics service.

Aggregate request and route statistics for operators and reporting. Results
are cached through ``CacheService`` so repeated dashboard reads stay off the
assignment path.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.config import settings
from urbancleanse.app.domain.scheduling.identifiers import utcnow
from urbancleanse.app.models.alert import Alert
from urbancleanse.app.models.enums import COLLECTOR_ROLES
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.scheduling_enums import PaymentStatus, RequestStatus, RouteStatus
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.services.cache import CacheService

logger = logging.getLogger(__name__)

ADMIN_STATS_KEY = "stats:admin"
ROUTE_STATS_PREFIX = "stats:routes:"


async def compute_admin_stats(db: AsyncSession) -> Dict[str, Any]:
    by_status = {s.value: 0 for s in RequestStatus}
    result = await db.execute(
        select(WasteRequest.status, func.count(WasteRequest.id)).group_by(WasteRequest.status)
    )
    for status, count in result.all():
        by_status[status.value] = count

    result = await db.execute(
        select(WasteRequest.collection_type, func.count(WasteRequest.id)).group_by(WasteRequest.collection_type)
    )
    by_type = {ctype.value: count for ctype, count in result.all()}

    revenue = await db.scalar(
        select(func.coalesce(func.sum(WasteRequest.cost), 0.0)).where(
            WasteRequest.payment_status == PaymentStatus.PAID
        )
    )

    result = await db.execute(select(WasteRequest).order_by(WasteRequest.id.desc()).limit(5))
    recent = [
        {
            "request_id": r.request_id,
            "bin_id": r.bin_id,
            "collection_type": r.collection_type.value,
            "status": r.status.value,
            "preferred_date": r.preferred_date.isoformat(),
        }
        for r in result.scalars().all()
    ]

    return {
        "total_requests": sum(by_status.values()),
        "requests_by_status": by_status,
        "requests_by_type": by_type,
        "total_revenue": float(revenue or 0),
        "recent_requests": recent,
    }


async def compute_route_stats(db: AsyncSession, day: date) -> Dict[str, Any]:
    result = await db.execute(
        select(Route, User.role)
        .join(User, User.id == Route.collector_id, isouter=True)
        .where(Route.assigned_date == day)
    )
    rows = result.all()

    by_status = {s.value: 0 for s in RouteStatus}
    worker_types = {r.value: 0 for r in COLLECTOR_ROLES}
    areas = set()
    workers = set()
    total_bins = completed_bins = estimated = actual = 0

    for route, role in rows:
        by_status[route.status.value] += 1
        total_bins += route.total_bins or 0
        completed_bins += route.completed_bins or 0
        estimated += route.estimated_duration or 0
        actual += route.actual_duration or 0
        if route.area:
            areas.add(route.area)
        if role is not None and role.value in worker_types:
            worker_types[role.value] += 1
            workers.add(route.collector_id)

    return {
        "date": day.isoformat(),
        "total_routes": len(rows),
        "routes_by_status": by_status,
        "total_bins": total_bins,
        "completed_bins": completed_bins,
        "total_workers": len(workers),
        "estimated_duration": estimated,
        "actual_duration": actual,
        "completion_rate": round(completed_bins / total_bins * 100) if total_bins else 0,
        "efficiency": round(estimated / actual * 100) if estimated and actual else 0,
        "areas": sorted(areas),
        "worker_types": worker_types,
    }


async def admin_stats(db: AsyncSession) -> Dict[str, Any]:
    cached = await CacheService.get(ADMIN_STATS_KEY)
    if cached is not None:
        return cached
    stats = await compute_admin_stats(db)
    await CacheService.set(ADMIN_STATS_KEY, stats, ttl_seconds=settings.stats_cache_ttl_seconds)
    return stats


async def route_stats(db: AsyncSession, day: date) -> Dict[str, Any]:
    key = f"{ROUTE_STATS_PREFIX}{day.isoformat()}"
    cached = await CacheService.get(key)
    if cached is not None:
        return cached
    stats = await compute_route_stats(db, day)
    await CacheService.set(key, stats, ttl_seconds=settings.stats_cache_ttl_seconds)
    logger.info("Route stats for %s: %d routes, %d%% complete", day, stats["total_routes"], stats["completion_rate"])
    return stats


async def invalidate_stats() -> None:
    """Drop cached statistics after a scheduling change."""
    await CacheService.invalidate("stats:")


async def scheduling_alerts(db: AsyncSession) -> Dict[str, Any]:
    """
    Operator work queue: paid requests awaiting approval, approved requests
    past their date or without a worker, and payments that failed in the last
    24 hours. Not cached; the counts drive immediate action.
    """
    today = date.today()
    pending = await db.scalar(
        select(func.count(WasteRequest.id)).where(
            WasteRequest.status == RequestStatus.PENDING,
            WasteRequest.payment_status == PaymentStatus.PAID,
        )
    )
    overdue = await db.scalar(
        select(func.count(WasteRequest.id)).where(
            WasteRequest.status == RequestStatus.APPROVED,
            WasteRequest.scheduled_date < today,
        )
    )
    failed_payments = await db.scalar(
        select(func.count(WasteRequest.id)).where(
            WasteRequest.payment_status == PaymentStatus.FAILED,
            WasteRequest.created_at >= utcnow() - timedelta(hours=24),
        )
    )
    unassigned = await db.scalar(
        select(func.count(WasteRequest.id)).where(
            WasteRequest.status == RequestStatus.APPROVED,
            WasteRequest.payment_status == PaymentStatus.PAID,
            WasteRequest.assigned_worker_id.is_(None),
        )
    )
    open_issues = await db.scalar(
        select(func.count(Alert.id)).where(Alert.is_resolved == False)  # noqa: E712
    )

    alerts = []
    if pending:
        alerts.append({
            "type": "pending_requests", "severity": "medium", "count": pending,
            "message": f"{pending} paid request(s) pending approval",
            "action": "Review and approve pending requests",
        })
    if overdue:
        alerts.append({
            "type": "overdue_collections", "severity": "high", "count": overdue,
            "message": f"{overdue} collection(s) are overdue",
            "action": "Check collection status and reschedule if needed",
        })
    if failed_payments:
        alerts.append({
            "type": "failed_payments", "severity": "low", "count": failed_payments,
            "message": f"{failed_payments} payment(s) failed in the last 24 hours",
            "action": "Follow up with customers on payment issues",
        })
    if unassigned:
        alerts.append({
            "type": "unassigned_requests", "severity": "medium", "count": unassigned,
            "message": f"{unassigned} approved request(s) not assigned to workers",
            "action": "Assign workers to approved requests",
        })
    if open_issues:
        alerts.append({
            "type": "collection_issues", "severity": "high", "count": open_issues,
            "message": f"{open_issues} collection issue(s) reported by collectors",
            "action": "Resolve the reported issues and reschedule the bins",
        })

    return {
        "alerts": alerts,
        "summary": {
            "pending_requests": pending or 0,
            "overdue_collections": overdue or 0,
            "failed_payments": failed_payments or 0,
            "unassigned_requests": unassigned or 0,
            "collection_issues": open_issues or 0,
        },
    }
