"""Which attendant created a guest reservation."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer
from sqlalchemy.sql import func

from tappark.db.base import Base


class GuestBooking(Base):
    __tablename__ = "guest_bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    guest_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, unique=True)
    attendant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
