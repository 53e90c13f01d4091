"""Registered vehicle. Guest vehicles are reused by plate number."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from tappark.db.base import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plate_number = Column(String(20), nullable=False, index=True)
    vehicle_type = Column(String(32), nullable=False)  # car | motorcycle | bike | bicycle | ebike
    brand = Column(String(50), nullable=True)
    color = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
