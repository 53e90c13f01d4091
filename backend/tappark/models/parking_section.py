"""
Section of an area. In capacity_only mode the section is a counter, not a set of rows:
reserved_count + parked_count + unavailable_count <= total_capacity, all counters >= 0.
Spot numbers inside it are virtual labels "{section_name}-{n}", n in 1..total_capacity.
"""
from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String

from tappark.db.base import Base


class ParkingSection(Base):
    __tablename__ = "parking_sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    area_id = Column(Integer, ForeignKey("parking_areas.id"), nullable=False, index=True)
    section_name = Column(String(64), nullable=False)
    vehicle_type = Column(String(32), nullable=False, server_default="car")
    section_mode = Column(String(16), nullable=False, server_default="slots")  # slots | capacity_only
    total_capacity = Column(Integer, nullable=False, server_default="0", default=0)
    reserved_count = Column(Integer, nullable=False, server_default="0", default=0)
    parked_count = Column(Integer, nullable=False, server_default="0", default=0)
    unavailable_count = Column(Integer, nullable=False, server_default="0", default=0)
    status = Column(String(16), nullable=False, server_default="available", default="available")

    __table_args__ = (
        CheckConstraint("reserved_count >= 0", name="ck_section_reserved_nonneg"),
        CheckConstraint("parked_count >= 0", name="ck_section_parked_nonneg"),
        CheckConstraint("unavailable_count >= 0", name="ck_section_unavailable_nonneg"),
        CheckConstraint(
            "reserved_count + parked_count + unavailable_count <= total_capacity",
            name="ck_section_capacity_ceiling",
        ),
    )

    @property
    def used_count(self) -> int:
        return (self.reserved_count or 0) + (self.parked_count or 0) + (self.unavailable_count or 0)

    @property
    def available_capacity(self) -> int:
        return max(0, (self.total_capacity or 0) - self.used_count)
