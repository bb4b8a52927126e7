"""
Notification database model.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    REQUEST_APPROVED = "REQUEST_APPROVED"
    REQUEST_COMPLETED = "REQUEST_COMPLETED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    NEW_REQUEST = "NEW_REQUEST"
    ROUTE_ASSIGNED = "ROUTE_ASSIGNED"
    COLLECTION_ISSUE = "COLLECTION_ISSUE"
    INFO = "INFO"


class Notification(Base):
    """
    In-app notification.
    Written by the notification dispatcher outside the scheduling transaction.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Content
    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(String(64), nullable=True, index=True)  # request or route id
    metadata_payload = Column(JSON, nullable=True)

    # State
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, title='{self.title}')>"
