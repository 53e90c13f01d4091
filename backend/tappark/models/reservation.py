"""
One user's claim on an individual spot (parking_spot_id) or a capacity-section slot
(parking_section_id + spot_number). Exactly one target is set.

Lifecycle: reserved -> active (start_time) -> completed (end_time);
reserved -> invalid (grace-period expiry: waiting_end_time, end_time); reserved -> cancelled.
Partial unique indexes allow at most one reserved/active row per spot and per section slot.
"""
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.sql import func

from tappark.db.base import Base

_HOLDING = "booking_status IN ('reserved', 'active')"


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    parking_spot_id = Column(Integer, ForeignKey("parking_spots.id"), nullable=True, index=True)
    parking_section_id = Column(Integer, ForeignKey("parking_sections.id"), nullable=True, index=True)
    spot_number = Column(String(100), nullable=True)  # display label; virtual slot key for sections
    booking_status = Column(String(16), nullable=False, server_default="reserved", default="reserved", index=True)
    qr_key = Column(String(64), nullable=False, unique=True)
    time_stamp = Column(DateTime(timezone=True), nullable=False)  # reservation instant; grace deadline base
    start_time = Column(DateTime(timezone=True), nullable=True)  # check-in marker
    end_time = Column(DateTime(timezone=True), nullable=True)
    waiting_end_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(parking_spot_id IS NULL) <> (parking_section_id IS NULL)",
            name="ck_reservation_single_target",
        ),
        CheckConstraint(
            "NOT (booking_status = 'reserved' AND start_time IS NOT NULL)",
            name="ck_reservation_reserved_not_started",
        ),
        Index(
            "uq_reservations_holding_spot",
            "parking_spot_id",
            unique=True,
            postgresql_where=text(f"parking_spot_id IS NOT NULL AND {_HOLDING}"),
            sqlite_where=text(f"parking_spot_id IS NOT NULL AND {_HOLDING}"),
        ),
        Index(
            "uq_reservations_holding_section_slot",
            "parking_section_id",
            "spot_number",
            unique=True,
            postgresql_where=text(f"parking_section_id IS NOT NULL AND {_HOLDING}"),
            sqlite_where=text(f"parking_section_id IS NOT NULL AND {_HOLDING}"),
        ),
        Index("ix_reservations_status_time_stamp", "booking_status", "time_stamp"),
    )
