"""
Route Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import Any, Dict, Optional, List
from urbancleanse.app.models.scheduling_enums import RouteStatus, TaskStatus, TaskPriority


class RouteBinTaskResponse(BaseModel):
    bin_id: str
    request_id: Optional[str]
    priority: TaskPriority
    estimated_time: int
    sequence: int
    status: TaskStatus
    completed_at: Optional[datetime]
    customer_name: Optional[str]
    customer_email: Optional[str]
    collection_type: Optional[str]
    cost: Optional[float]

    class Config:
        from_attributes = True


class RouteBinDetail(RouteBinTaskResponse):
    """Task enriched with live bin and request data, when they still exist."""
    bin_fill_level: Optional[int] = None
    bin_status: Optional[str] = None
    bin_area: Optional[str] = None
    request_status: Optional[str] = None
    orphaned: bool = False


class RouteResponse(BaseModel):
    """Schema for route response."""
    id: int
    route_id: str
    collector_id: int
    assigned_date: date
    status: RouteStatus
    total_bins: int
    completed_bins: int
    estimated_duration: int
    actual_duration: Optional[int]
    area: Optional[str]
    notes: Optional[str]
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class RouteDetailResponse(RouteResponse):
    collector_name: Optional[str] = None
    bins: List[RouteBinDetail] = []


class RouteListResponse(BaseModel):
    routes: List[RouteResponse]
    total: int
    page: int
    page_size: int


class RouteStatusUpdate(BaseModel):
    status: RouteStatus
    notes: Optional[str] = Field(None, max_length=1000)


class RouteCancelResponse(BaseModel):
    route: RouteResponse
    reset_requests: List[str]


class WorkerAvailabilityResponse(BaseModel):
    worker_id: int
    name: str
    role: str
    load: int
    assigned_count: int
    remaining_capacity: int
    occupied_slots: List[str]
    available_slots: List[str]
    availability: str
    has_conflict: bool
    conflicting_request_id: Optional[str]

    class Config:
        from_attributes = True


class RouteCreate(BaseModel):
    """Operator-planned route over the day's approved bins."""
    collector_id: int
    assigned_date: str = Field(..., description="ISO date, today or later")
    area: str = Field(..., min_length=1, max_length=255)
    selected_bins: List[str] = Field(..., description="Bin ids in visiting order")
    notes: Optional[str] = Field(None, max_length=1000)


class AreaBinRequest(BaseModel):
    request_id: str
    collection_type: str
    scheduled_time_slot: Optional[str]
    assigned_worker_id: Optional[int]
    route_id: Optional[str]


class AreaBin(BaseModel):
    bin_id: str
    address: Optional[Dict[str, Any]] = None
    fill_level: int
    battery: int
    status: str
    requests: List[AreaBinRequest]


class AreaGroup(BaseModel):
    area: str
    bins: List[AreaBin]
    total_requests: int
    estimated_duration: int


class BinsByAreaResponse(BaseModel):
    assigned_date: date
    areas: List[AreaGroup]
