"""
Operator alert schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict


class AlertResponse(BaseModel):
    """Collection issue raised by a collector."""
    id: int
    alert_type: str
    severity: str
    message: str
    bin_id: Optional[str]
    route_id: Optional[str]
    collection_id: Optional[str]
    raised_by_id: Optional[int]
    is_resolved: bool
    created_at: datetime

    class Config:
        from_attributes = True


class SchedulingAlert(BaseModel):
    type: str
    severity: str
    count: int
    message: str
    action: str


class AdminAlertsResponse(BaseModel):
    alerts: List[SchedulingAlert]
    summary: Dict[str, int]
    issues: List[AlertResponse]
