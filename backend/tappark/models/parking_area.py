"""Parking area (lot). Realtime area rooms are keyed by this id."""
from sqlalchemy import Column, Integer, String

from tappark.db.base import Base


class ParkingArea(Base):
    __tablename__ = "parking_areas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    location = Column(String(256), nullable=True)
