"""
Alert database model.

Raised for collection issues that need an operator.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    alert_type = Column(String(50), nullable=False, index=True)  # e.g. collection_issue
    severity = Column(String(20), default="medium", nullable=False)
    message = Column(Text, nullable=False)

    bin_id = Column(String(64), nullable=True, index=True)
    route_id = Column(String(64), nullable=True)
    collection_id = Column(String(64), nullable=True)
    raised_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    is_resolved = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Alert(id={self.id}, type='{self.alert_type}', bin='{self.bin_id}')>"
