"""
Route database model.

A collector's daily run. Bin-tasks live in ``route_bin_tasks`` and are
loaded explicitly by the route aggregator.
"""

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Enum, ForeignKey, Index, text
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
from urbancleanse.app.models.scheduling_enums import RouteStatus

_ACTIVE_ROUTE = text("status IN ('ASSIGNED', 'IN_PROGRESS')")


class Route(Base):
    """
    Route model.

    Invariants:
    - total_bins equals the number of tasks
    - completed_bins equals the number of completed tasks
    - an active route always has at least one task
    - at most one active route per (collector, day)
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    route_id = Column(String(64), unique=True, index=True, nullable=False)

    collector_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    assigned_date = Column(Date, nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    status = Column(Enum(RouteStatus), default=RouteStatus.ASSIGNED, nullable=False, index=True)

    # Progress
    total_bins = Column(Integer, default=0, nullable=False)
    completed_bins = Column(Integer, default=0, nullable=False)
    estimated_duration = Column(Integer, default=0, nullable=False)  # minutes
    actual_duration = Column(Integer, nullable=True)  # minutes

    area = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # Timestamps
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_routes_active_collector_day', 'collector_id', 'assigned_date',
              unique=True, postgresql_where=_ACTIVE_ROUTE, sqlite_where=_ACTIVE_ROUTE),
    )

    def append_note(self, note: str) -> None:
        if not note:
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def __repr__(self):
        return f"<Route(route_id='{self.route_id}', collector={self.collector_id}, status='{self.status.value}')>"
