from tappark.models.capacity_spot_status import CapacitySpotStatus
from tappark.models.guest_booking import GuestBooking
from tappark.models.parking_area import ParkingArea
from tappark.models.parking_section import ParkingSection
from tappark.models.parking_spot import ParkingSpot
from tappark.models.penalty import Penalty
from tappark.models.penalty_settlement import PenaltySettlement
from tappark.models.reservation import Reservation
from tappark.models.subscription import Subscription
from tappark.models.user import User
from tappark.models.user_log import UserLog
from tappark.models.vehicle import Vehicle

__all__ = [
    "CapacitySpotStatus",
    "GuestBooking",
    "ParkingArea",
    "ParkingSection",
    "ParkingSpot",
    "Penalty",
    "PenaltySettlement",
    "Reservation",
    "Subscription",
    "User",
    "UserLog",
    "Vehicle",
]
