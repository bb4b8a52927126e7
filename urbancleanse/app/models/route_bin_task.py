"""
Route bin-task database model.

One stop on a route: a bin to empty for a specific request. Customer data
is denormalised so the task stays readable when the request is gone.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
from urbancleanse.app.models.scheduling_enums import TaskStatus, TaskPriority


class RouteBinTask(Base):
    __tablename__ = "route_bin_tasks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Route reference
    route_pk = Column(Integer, ForeignKey('routes.id', ondelete="CASCADE"), nullable=False, index=True)

    # Weak references
    bin_id = Column(String(64), nullable=False, index=True)
    request_id = Column(String(64), nullable=True, index=True)

    priority = Column(Enum(TaskPriority), default=TaskPriority.NORMAL, nullable=False)
    estimated_time = Column(Integer, default=15, nullable=False)  # minutes
    sequence = Column(Integer, nullable=False)  # Order in route (1, 2, 3, ...)

    status = Column(Enum(TaskStatus), default=TaskStatus.PENDING, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Denormalised customer info
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    collection_type = Column(String(20), nullable=True)
    cost = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<RouteBinTask(route={self.route_pk}, bin='{self.bin_id}', seq={self.sequence}, status='{self.status.value}')>"
