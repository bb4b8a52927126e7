"""
Bin Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any
from urbancleanse.app.models.scheduling_enums import BinStatus


class BinReadingUpdate(BaseModel):
    """Sensor reading; values outside the valid range are clamped."""
    fill_level: int = Field(..., description="Fill percentage, 0-150")
    battery: Optional[int] = Field(None, description="Battery percentage, 0-100")


class BinResponse(BaseModel):
    id: int
    bin_id: str
    owner_id: int
    area: Optional[str]
    address: Optional[Dict[str, Any]]
    latitude: Optional[float]
    longitude: Optional[float]
    fill_level: int
    battery: int
    status: BinStatus
    maintenance_required: bool
    bin_type: str
    is_active: bool
    is_approved: bool
    last_collected: Optional[datetime]
    last_updated: datetime

    class Config:
        from_attributes = True
