"""
Bin State Tracker.

Derives bin status from fill level and applies the fill-level heuristics
triggered by scheduling events. Status is never set independently of the
fill level.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from urbancleanse.app.domain.scheduling.identifiers import utcnow
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.scheduling_enums import BinStatus

logger = logging.getLogger(__name__)

MAX_FILL_LEVEL = 150
MAX_BATTERY = 100
LOW_BATTERY_THRESHOLD = 20

# Heuristic fill levels
REQUEST_BASE_FILL = 60
REQUEST_STEP_FILL = 15
REQUEST_MAX_FILL = 90
RECENTLY_COLLECTED_FILL = 50
APPROVED_MIN_FILL = 70


@dataclass
class BinStateChange:
    bin_id: str
    old_fill_level: int
    new_fill_level: int
    old_status: BinStatus
    new_status: BinStatus
    reason: str


def status_for_fill_level(fill_level: int) -> BinStatus:
    """Map a fill level to its status band."""
    if fill_level < 40:
        return BinStatus.EMPTY
    if fill_level < 80:
        return BinStatus.HALF_FULL
    if fill_level <= 100:
        return BinStatus.FULL
    return BinStatus.OVERFLOW


def maintenance_required(fill_level: int, battery: int) -> bool:
    return battery < LOW_BATTERY_THRESHOLD or fill_level > 100


def _set_fill_level(bin: Bin, fill_level: int, reason: str) -> BinStateChange:
    change = BinStateChange(
        bin_id=bin.bin_id,
        old_fill_level=bin.fill_level,
        new_fill_level=fill_level,
        old_status=bin.status,
        new_status=status_for_fill_level(fill_level),
        reason=reason,
    )
    bin.fill_level = fill_level
    bin.status = change.new_status
    bin.maintenance_required = maintenance_required(fill_level, bin.battery)
    bin.last_updated = utcnow()
    logger.info(
        "Bin %s fill %d -> %d (%s)", bin.bin_id, change.old_fill_level, fill_level, reason
    )
    return change


def apply_request_created(
    bin: Bin,
    other_active_requests_today: int,
    completed_earlier_today: bool,
) -> Optional[BinStateChange]:
    """
    Raise the fill level of an apparently empty bin when a pickup is requested.

    Only applies when the bin is Empty or at most 20% full. Other active
    requests for the bin that day push the estimate up (capped at 90);
    otherwise a pickup completed earlier the same day means the bin only
    partially refilled.

    Returns:
        The applied change, or None when the bin was left untouched
    """
    if bin.status != BinStatus.EMPTY and bin.fill_level > 20:
        return None

    if other_active_requests_today > 0:
        fill = min(REQUEST_MAX_FILL, REQUEST_BASE_FILL + REQUEST_STEP_FILL * other_active_requests_today)
    elif completed_earlier_today:
        fill = RECENTLY_COLLECTED_FILL
    else:
        fill = REQUEST_BASE_FILL

    return _set_fill_level(bin, fill, "request_created")


def apply_request_approved(bin: Bin) -> Optional[BinStateChange]:
    """An approved pickup implies accumulated waste: raise an Empty bin to at least 70."""
    if status_for_fill_level(bin.fill_level) != BinStatus.EMPTY:
        return None
    return _set_fill_level(bin, max(bin.fill_level, APPROVED_MIN_FILL), "request_approved")


def apply_collection_completed(bin: Bin) -> BinStateChange:
    change = _set_fill_level(bin, 0, "collection_completed")
    bin.last_collected = utcnow()
    return change


def apply_sensor_reading(bin: Bin, fill_level: int, battery: Optional[int] = None) -> BinStateChange:
    """Store a clamped sensor reading and re-derive status and maintenance flag."""
    if battery is not None:
        bin.battery = max(0, min(MAX_BATTERY, battery))
    return _set_fill_level(bin, max(0, min(MAX_FILL_LEVEL, fill_level)), "sensor_reading")
