"""
Scheduling-related enumerations.

Values are the lowercase wire strings used by the API; the database stores
member names.
"""

import enum


class RequestStatus(str, enum.Enum):
    """Waste request lifecycle status."""
    PENDING = "pending"  # Submitted, awaiting operator decision
    APPROVED = "approved"  # Paid, worker and slot assigned, on a route
    COMPLETED = "completed"  # Collected by the assigned worker
    CANCELLED = "cancelled"  # Withdrawn; may be reopened to pending


class PaymentStatus(str, enum.Enum):
    """Payment status reported by the payment gateway."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class CollectionType(str, enum.Enum):
    """Waste collection type."""
    FOOD = "food"
    POLYTHENE = "polythene"
    PAPER = "paper"
    HAZARDOUS = "hazardous"
    EWASTE = "ewaste"


class RouteStatus(str, enum.Enum):
    """Route status enumeration."""
    ASSIGNED = "assigned"  # Created, collector not started
    IN_PROGRESS = "in_progress"  # First bin collected or started manually
    COMPLETED = "completed"  # All bins collected
    CANCELLED = "cancelled"  # Cancelled by operator, kept as history


ACTIVE_ROUTE_STATUSES = (RouteStatus.ASSIGNED, RouteStatus.IN_PROGRESS)


class TaskStatus(str, enum.Enum):
    """Route bin-task status enumeration."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(str, enum.Enum):
    """Route bin-task priority."""
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class BinStatus(str, enum.Enum):
    """Bin status derived from fill level."""
    EMPTY = "Empty"
    HALF_FULL = "Half-Full"
    FULL = "Full"
    OVERFLOW = "Overflow"


class CollectionMethod(str, enum.Enum):
    SCAN = "scan"
    MANUAL = "manual"


class CollectionOutcome(str, enum.Enum):
    COLLECTED = "collected"
    FAILED = "failed"
