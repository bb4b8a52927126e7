"""
Read models for routes.

Route detail is enriched with live bin and request data; tasks whose request
or bin is gone fall back to the customer info stored on the task.
"""

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.domain.scheduling.route_aggregator import load_tasks
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.schemas.route import RouteBinDetail, RouteDetailResponse


async def build_route_detail(db: AsyncSession, route: Route) -> RouteDetailResponse:
    tasks = await load_tasks(db, route)

    bin_ids = {t.bin_id for t in tasks}
    request_ids = {t.request_id for t in tasks if t.request_id}

    bins = {}
    if bin_ids:
        result = await db.execute(select(Bin).where(Bin.bin_id.in_(bin_ids)))
        bins = {b.bin_id: b for b in result.scalars().all()}

    requests = {}
    if request_ids:
        result = await db.execute(select(WasteRequest).where(WasteRequest.request_id.in_(request_ids)))
        requests = {r.request_id: r for r in result.scalars().all()}

    details: List[RouteBinDetail] = []
    for task in tasks:
        detail = RouteBinDetail.model_validate(task)
        bin = bins.get(task.bin_id)
        request = requests.get(task.request_id) if task.request_id else None
        if bin is not None:
            detail.bin_fill_level = bin.fill_level
            detail.bin_status = bin.status.value
            detail.bin_area = bin.area
        if request is not None:
            detail.request_status = request.status.value
        detail.orphaned = request is None
        details.append(detail)

    collector = await db.get(User, route.collector_id)
    response = RouteDetailResponse.model_validate(route)
    response.collector_name = collector.display_name if collector else None
    response.bins = details
    return response
