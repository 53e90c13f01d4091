"""Manual status of one virtual spot in a capacity section (row exists only while withdrawn)."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from tappark.db.base import Base


class CapacitySpotStatus(Base):
    __tablename__ = "capacity_spot_status"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(Integer, ForeignKey("parking_sections.id"), nullable=False, index=True)
    spot_number = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, server_default="unavailable")
    reason = Column(String(256), nullable=True)
    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("section_id", "spot_number", name="uq_capacity_spot_status_section_spot"),)
