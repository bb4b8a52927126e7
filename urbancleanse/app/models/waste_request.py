"""
Waste request database model.

A customer's pickup request for one bin and one collection type. Requests
are never deleted, only transitioned.
"""

from sqlalchemy import Column, Integer, String, Float, Text, Date, DateTime, Enum, ForeignKey, JSON, Index, text
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
from urbancleanse.app.models.scheduling_enums import RequestStatus, PaymentStatus, CollectionType

_ACTIVE_BIN_REQUEST = text("status IN ('PENDING', 'APPROVED')")
_HELD_WORKER_SLOT = text("status IN ('APPROVED', 'COMPLETED')")


class WasteRequest(Base):
    """
    Waste request model.

    Invariants:
    - APPROVED only while payment_status is PAID
    - APPROVED implies assigned worker, scheduled date and scheduled slot
    - ``route_id`` is a weak reference to ``Route.route_id`` and may be stale
    """
    __tablename__ = "waste_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    request_id = Column(String(64), unique=True, index=True, nullable=False)

    # Ownership and subject
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    bin_id = Column(String(64), ForeignKey('bins.bin_id'), nullable=False, index=True)
    collection_type = Column(Enum(CollectionType), nullable=False)

    # Customer preference
    preferred_date = Column(Date, nullable=False, index=True)
    preferred_time_slot = Column(String(20), nullable=False)

    # Operator schedule
    scheduled_date = Column(Date, nullable=True, index=True)
    scheduled_time_slot = Column(String(20), nullable=True)

    # Status
    status = Column(Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    cost = Column(Float, nullable=False, default=0.0)

    notes = Column(Text, nullable=True)  # Append-only audit text
    address = Column(JSON, nullable=True)

    # Assignment
    assigned_worker_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    assigned_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    route_id = Column(String(64), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        # One active request per (bin, type, preferred day)
        Index('ix_waste_requests_active_bin_day', 'bin_id', 'collection_type', 'preferred_date',
              unique=True, postgresql_where=_ACTIVE_BIN_REQUEST, sqlite_where=_ACTIVE_BIN_REQUEST),
        # One held slot per (worker, scheduled day, slot)
        Index('ix_waste_requests_worker_slot', 'assigned_worker_id', 'scheduled_date', 'scheduled_time_slot',
              unique=True, postgresql_where=_HELD_WORKER_SLOT, sqlite_where=_HELD_WORKER_SLOT),
    )

    def append_note(self, note: str) -> None:
        if not note:
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def clear_assignment(self) -> None:
        self.assigned_worker_id = None
        self.assigned_by_id = None
        self.assigned_at = None
        self.scheduled_date = None
        self.scheduled_time_slot = None
        self.route_id = None

    def __repr__(self):
        return f"<WasteRequest(request_id='{self.request_id}', bin='{self.bin_id}', status='{self.status.value}')>"
