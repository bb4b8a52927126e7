"""
Collection database model.

Immutable record of one pickup attempt (successful or failed). Rows are
never updated after insert.
"""

from sqlalchemy import Column, Integer, String, Float, Text, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
from urbancleanse.app.models.scheduling_enums import CollectionMethod, CollectionOutcome


class Collection(Base):
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    collection_id = Column(String(64), unique=True, index=True, nullable=False)

    collector_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    bin_id = Column(String(64), nullable=False, index=True)
    route_id = Column(String(64), nullable=True, index=True)
    request_id = Column(String(64), nullable=True, index=True)

    method = Column(Enum(CollectionMethod), nullable=False)
    outcome = Column(Enum(CollectionOutcome), default=CollectionOutcome.COLLECTED, nullable=False)

    # Issue (failed attempts)
    issue_type = Column(String(50), nullable=True)
    issue_description = Column(Text, nullable=True)
    requires_admin = Column(Boolean, default=False, nullable=False)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    collected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Collection(collection_id='{self.collection_id}', bin='{self.bin_id}', outcome='{self.outcome.value}')>"
