"""
Bin state tracker tests.

Status bands, maintenance flag and the fill-level heuristics applied on
request creation, approval, collection and sensor readings.
"""

import pytest
from urbancleanse.app.domain.scheduling import bin_state
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.scheduling_enums import BinStatus


def _bin(fill_level=0, battery=100):
    return Bin(
        bin_id="BIN-1700000000000-ABC123",
        owner_id=1,
        fill_level=fill_level,
        battery=battery,
        status=bin_state.status_for_fill_level(fill_level),
        maintenance_required=False,
    )


@pytest.mark.parametrize("fill_level,expected", [
    (0, BinStatus.EMPTY),
    (39, BinStatus.EMPTY),
    (40, BinStatus.HALF_FULL),
    (79, BinStatus.HALF_FULL),
    (80, BinStatus.FULL),
    (100, BinStatus.FULL),
    (101, BinStatus.OVERFLOW),
    (150, BinStatus.OVERFLOW),
])
def test_status_bands(fill_level, expected):
    assert bin_state.status_for_fill_level(fill_level) == expected


def test_maintenance_required_on_low_battery_or_overflow():
    assert bin_state.maintenance_required(50, 19)
    assert bin_state.maintenance_required(101, 100)
    assert not bin_state.maintenance_required(100, 20)


def test_request_created_on_empty_bin_sets_base_fill():
    bin = _bin(0)
    change = bin_state.apply_request_created(bin, other_active_requests_today=0, completed_earlier_today=False)

    assert change is not None
    assert bin.fill_level == 60
    assert bin.status == BinStatus.HALF_FULL
    assert change.old_status == BinStatus.EMPTY


def test_request_created_scales_with_other_requests_and_caps():
    bin = _bin(10)
    bin_state.apply_request_created(bin, other_active_requests_today=1, completed_earlier_today=False)
    assert bin.fill_level == 75

    bin = _bin(10)
    bin_state.apply_request_created(bin, other_active_requests_today=4, completed_earlier_today=True)
    assert bin.fill_level == 90


def test_request_created_after_pickup_same_day():
    bin = _bin(0)
    bin_state.apply_request_created(bin, other_active_requests_today=0, completed_earlier_today=True)
    assert bin.fill_level == 50


def test_request_created_leaves_filled_bin_alone():
    bin = _bin(55)
    assert bin_state.apply_request_created(bin, 0, False) is None
    assert bin.fill_level == 55


def test_request_approved_raises_empty_bin():
    bin = _bin(10)
    change = bin_state.apply_request_approved(bin)
    assert change.new_fill_level == 70
    assert bin.status == BinStatus.HALF_FULL

    bin = _bin(45)
    assert bin_state.apply_request_approved(bin) is None


def test_collection_completed_empties_bin():
    bin = _bin(120)
    bin_state.apply_collection_completed(bin)

    assert bin.fill_level == 0
    assert bin.status == BinStatus.EMPTY
    assert bin.last_collected is not None
    assert not bin.maintenance_required


def test_sensor_reading_is_clamped():
    bin = _bin(0)
    bin_state.apply_sensor_reading(bin, 180, battery=-5)

    assert bin.fill_level == 150
    assert bin.battery == 0
    assert bin.status == BinStatus.OVERFLOW
    assert bin.maintenance_required

    bin_state.apply_sensor_reading(bin, -10, battery=140)
    assert bin.fill_level == 0
    assert bin.battery == 100
    assert not bin.maintenance_required
