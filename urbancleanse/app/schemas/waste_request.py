"""
Waste request Pydantic schemas.

Dates and collection types are accepted as plain strings and validated by
the scheduling core so malformed values get the scheduling error envelope.
"""

from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import Optional, List, Dict, Any
from urbancleanse.app.models.scheduling_enums import (
    RequestStatus,
    PaymentStatus,
    CollectionType,
)


class WasteRequestCreate(BaseModel):
    """Schema for submitting a pickup request."""
    bin_id: str = Field(..., min_length=1, max_length=64, description="Bin identifier (BIN-<millis>-<alnum>)")
    collection_type: str = Field(..., description="food, polythene, paper, hazardous or ewaste")
    preferred_date: str = Field(..., description="ISO date, today or later")
    preferred_time_slot: str = Field(..., description="One of the fixed collection windows")
    notes: Optional[str] = Field(None, max_length=1000)
    address: Optional[Dict[str, Any]] = None


class RequestStatusUpdate(BaseModel):
    """Operator status change. Approval needs a worker (or auto_assign), date and slot."""
    status: RequestStatus
    worker_id: Optional[int] = None
    scheduled_date: Optional[str] = None
    scheduled_time_slot: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)
    auto_assign: bool = False


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class WasteRequestResponse(BaseModel):
    """Schema for waste request response."""
    id: int
    request_id: str
    user_id: int
    bin_id: str
    collection_type: CollectionType
    preferred_date: date
    preferred_time_slot: str
    scheduled_date: Optional[date]
    scheduled_time_slot: Optional[str]
    status: RequestStatus
    payment_status: PaymentStatus
    cost: float
    notes: Optional[str]
    address: Optional[Dict[str, Any]]
    assigned_worker_id: Optional[int]
    assigned_by_id: Optional[int]
    assigned_at: Optional[datetime]
    route_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WasteRequestListResponse(BaseModel):
    """Schema for paginated request list."""
    requests: List[WasteRequestResponse]
    total: int
    page: int
    page_size: int


class WasteTypeResponse(BaseModel):
    id: int
    name: CollectionType
    description: Optional[str]
    base_cost: float
    max_weight: Optional[float]
    is_active: bool

    class Config:
        from_attributes = True


class ScheduleCheckResponse(BaseModel):
    bin_id: str
    collection_type: str
    date: str
    available: bool
    conflicting_request: Optional[Dict[str, Any]]
    scheduled_types: List[str]
    requests_that_day: int
