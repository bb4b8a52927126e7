"""
Public identifiers and clock helpers for scheduling entities.

Formats:
    WR-<epoch millis>-<6 base36>                 waste request
    ROUTE-<yyyymmdd>-<epoch millis>-<4 base36>   route
    RT-<epoch millis>-<6 base36>                 route planned by an operator
    COL-<epoch millis>-<6 base36>                collection
    BIN-<epoch millis>-<alnum>                   bin

Uniqueness is enforced by the store's unique constraints; the random suffix
only makes collisions unlikely.
"""

import re
import secrets
import time
from datetime import date, datetime, timezone
from typing import NewType, Optional

RequestId = NewType("RequestId", str)
RouteId = NewType("RouteId", str)
CollectionId = NewType("CollectionId", str)
BinId = NewType("BinId", str)

BIN_ID_PATTERN = re.compile(r"^BIN-\d+-[A-Z0-9]+$")

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _suffix(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def _millis() -> int:
    return int(time.time() * 1000)


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable with values read back from SQLite and Postgres."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_request_id() -> RequestId:
    return RequestId(f"WR-{_millis()}-{_suffix(6)}")


def new_route_id(day: date) -> RouteId:
    return RouteId(f"ROUTE-{day.strftime('%Y%m%d')}-{_millis()}-{_suffix(4)}")


def new_planned_route_id() -> RouteId:
    return RouteId(f"RT-{_millis()}-{_suffix(6)}")


def new_collection_id() -> CollectionId:
    return CollectionId(f"COL-{_millis()}-{_suffix(6)}")


def new_bin_id() -> BinId:
    return BinId(f"BIN-{_millis()}-{_suffix(6)}")


def is_valid_bin_id(value: str) -> bool:
    return bool(value) and BIN_ID_PATTERN.match(value) is not None
