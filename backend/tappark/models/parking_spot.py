"""Individually addressable spot (car spaces). is_occupied mirrors status == occupied."""
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from tappark.db.base import Base


class ParkingSpot(Base):
    __tablename__ = "parking_spots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(Integer, ForeignKey("parking_sections.id"), nullable=False, index=True)
    spot_number = Column(String(32), nullable=False)
    spot_type = Column(String(32), nullable=False, server_default="car")
    status = Column(String(16), nullable=False, server_default="available", default="available", index=True)
    is_occupied = Column(Boolean, nullable=False, server_default="0", default=False)
    unavailable_reason = Column(String(256), nullable=True)
