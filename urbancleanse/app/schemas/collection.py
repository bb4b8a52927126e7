"""
Collection Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from urbancleanse.app.models.scheduling_enums import CollectionMethod, CollectionOutcome, RequestStatus, RouteStatus


class CollectionCreate(BaseModel):
    """Scan or manual pickup confirmation."""
    bin_id: str = Field(..., min_length=1, max_length=64)
    route_id: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    notes: Optional[str] = Field(None, max_length=1000)


class IssueReport(BaseModel):
    bin_id: str = Field(..., min_length=1, max_length=64)
    issue_type: str = Field(..., min_length=1, max_length=50, description="e.g. bin_damaged, access_blocked")
    description: str = Field(..., min_length=1, max_length=1000)
    requires_admin: bool = False
    route_id: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class CollectionResponse(BaseModel):
    collection_id: str
    collector_id: int
    bin_id: str
    route_id: Optional[str]
    request_id: Optional[str]
    method: CollectionMethod
    outcome: CollectionOutcome
    issue_type: Optional[str]
    issue_description: Optional[str]
    requires_admin: bool
    notes: Optional[str]
    collected_at: datetime

    class Config:
        from_attributes = True


class CollectionResult(BaseModel):
    """Outcome of a pickup attempt with the route progress it produced."""
    collection: CollectionResponse
    route_id: str
    route_status: RouteStatus
    completed_bins: int
    total_bins: int
    request_status: Optional[RequestStatus] = None
    alert_id: Optional[int] = None
