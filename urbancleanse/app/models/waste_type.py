"""
Waste type catalogue model.

One row per collection type; request cost is taken from ``base_cost`` at
submission time.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from urbancleanse.app.db.session import Base
from urbancleanse.app.models.scheduling_enums import CollectionType


class WasteType(Base):
    __tablename__ = "waste_types"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(Enum(CollectionType), unique=True, nullable=False)
    description = Column(String(500), nullable=True)
    base_cost = Column(Float, nullable=False)
    max_weight = Column(Float, nullable=True)  # kg
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<WasteType(name='{self.name.value}', base_cost={self.base_cost})>"
