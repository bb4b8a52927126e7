"""
Bin database model.

Smart bins registered by customers. Status and maintenance flag are derived
from fill level and battery, never set on their own.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Enum, ForeignKey, JSON
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
from urbancleanse.app.models.scheduling_enums import BinStatus


class Bin(Base):
    """
    Bin model.

    ``bin_id`` is the public identifier (``BIN-<millis>-<alnum>``) that
    requests and route tasks reference.
    """
    __tablename__ = "bins"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    bin_id = Column(String(64), unique=True, index=True, nullable=False)

    # Ownership
    owner_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Location
    area = Column(String(255), nullable=True)
    address = Column(JSON, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Sensor state
    fill_level = Column(Integer, default=0, nullable=False)  # 0-150
    battery = Column(Integer, default=100, nullable=False)  # 0-100
    status = Column(Enum(BinStatus), default=BinStatus.EMPTY, nullable=False)
    maintenance_required = Column(Boolean, default=False, nullable=False)

    bin_type = Column(String(50), default="general", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=False, nullable=False)

    # Timestamps
    last_collected = Column(DateTime(timezone=True), nullable=True)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Bin(bin_id='{self.bin_id}', fill={self.fill_level}, status='{self.status.value}')>"
