"""
Audit Log Database Model.

Tracks scheduling state changes (request transitions, route changes,
collections) for operators and compliance.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged include REQUEST_CREATED, REQUEST_STATUS_CHANGED,
    ROUTE_STATUS_CHANGED, ROUTE_CANCELLED and BIN_COLLECTED.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What was acted upon
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(64), index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity='{self.entity_type}:{self.entity_id}')>"
