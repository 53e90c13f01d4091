"""
Check-in, checkout and cancel for reservations (QR scan or reservation id).

Each call locks the reservation row first, the same lock the grace-period sweeper takes, so a
check-in racing an expiry has exactly one winner. Checkout bills the parked time through
charge_user in the same transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from tappark.core.clock import as_utc, hours_between, utcnow
from tappark.core.constants import (
    ACTION_RESERVATION_CANCELLED,
    ACTION_SESSION_ENDED,
    ACTION_SESSION_STARTED,
    BOOKING_ACTIVE,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_RESERVED,
    MIN_SESSION_CHARGE_HOURS,
    ROLE_GUEST,
    SPOT_AVAILABLE,
    SPOT_OCCUPIED,
)
from tappark.core.errors import InvariantViolation, ReservationNotFound, Unauthorized
from tappark.core.identity import Identity
from tappark.db.session import transaction
from tappark.models.reservation import Reservation
from tappark.models.user import User
from tappark.services import occupancy
from tappark.services.billing_service import ChargeResult, charge_user
from tappark.services.user_log_service import log_user_activity

logger = logging.getLogger(__name__)

SOURCE_CHECK_IN = "check-in"
SOURCE_CHECKOUT = "checkout"
SOURCE_CANCEL = "cancel"


@dataclass
class SessionResult:
    reservation_id: int
    booking_status: str
    spot_number: str | None
    start_time: datetime | None = None
    end_time: datetime | None = None
    charged_hours: float = 0.0
    penalty_hours: float = 0.0
    new_balance: float | None = None

    def to_dict(self) -> dict:
        return {
            "reservation_id": self.reservation_id,
            "booking_status": self.booking_status,
            "spot_number": self.spot_number,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "charged_hours": round(self.charged_hours, 4),
            "penalty_hours": round(self.penalty_hours, 4),
            "new_balance": round(self.new_balance, 4) if self.new_balance is not None else None,
        }


def _lock_target(db: Session, reservation: Reservation) -> None:
    if reservation.parking_spot_id is not None:
        occupancy.lock_spot(db, reservation.parking_spot_id)
    elif reservation.parking_section_id is not None:
        occupancy.lock_section(db, reservation.parking_section_id)


def _check_actor(actor: Identity, reservation: Reservation) -> None:
    if not actor.can_manage(reservation.user_id):
        raise Unauthorized(reservation_id=reservation.id)


def complete_locked(db: Session, reservation: Reservation, now: datetime) -> ChargeResult:
    """
    active -> completed with end_time, spot freed / parked_count - 1, parked time billed
    (at least MIN_SESSION_CHARGE_HOURS). The reservation row must already be locked. Guests are
    not billed against an hour balance.
    """
    if reservation.booking_status != BOOKING_ACTIVE or reservation.start_time is None:
        raise ReservationNotFound("No active parking session for this reservation", reservation_id=reservation.id)

    _lock_target(db, reservation)
    occupancy.release_reservation_target(db, reservation, occupancy.PARKED_COUNTER)

    hours = max(MIN_SESSION_CHARGE_HOURS, hours_between(reservation.start_time, now))
    reservation.booking_status = BOOKING_COMPLETED
    reservation.end_time = now

    user = db.get(User, reservation.user_id)
    if user is not None and user.role == ROLE_GUEST:
        charge = ChargeResult(user_id=reservation.user_id, charged_hours=0.0)
    else:
        charge = charge_user(db, reservation.user_id, hours, reservation_id=reservation.id)
    log_user_activity(
        db,
        reservation.user_id,
        ACTION_SESSION_ENDED,
        f"Parking session at {reservation.spot_number} ended after {hours:.2f} hours",
        target_id=reservation.id,
    )
    return charge


def start_session(
    db: Session,
    *,
    actor: Identity,
    qr_key: str | None = None,
    reservation_id: int | None = None,
    hub=None,
) -> SessionResult:
    """reserved -> active: start_time set, spot occupied or section reserved - 1 / parked + 1."""
    with transaction(db):
        reservation = occupancy.lock_reservation(db, reservation_id=reservation_id, qr_key=qr_key)
        _check_actor(actor, reservation)
        if reservation.booking_status != BOOKING_RESERVED or reservation.start_time is not None:
            # Expired, cancelled or already checked in.
            raise ReservationNotFound("Reservation not found or no longer reserved", reservation_id=reservation.id)

        _lock_target(db, reservation)
        if reservation.parking_spot_id is not None:
            occupancy.occupy_spot(db, reservation.parking_spot_id)
        else:
            occupancy.move_section_counter(
                db, reservation.parking_section_id, occupancy.RESERVED_COUNTER, occupancy.PARKED_COUNTER
            )
        now = utcnow()
        reservation.booking_status = BOOKING_ACTIVE
        reservation.start_time = now
        log_user_activity(
            db,
            reservation.user_id,
            ACTION_SESSION_STARTED,
            f"Parking session started at {reservation.spot_number}",
            target_id=reservation.id,
        )
        db.flush()
        area_id = occupancy.area_id_for(db, reservation)
        result = SessionResult(
            reservation_id=reservation.id,
            booking_status=reservation.booking_status,
            spot_number=reservation.spot_number,
            start_time=now,
        )
        events = occupancy.events_for(reservation, area_id, SPOT_OCCUPIED, SOURCE_CHECK_IN)

    logger.info("Reservation %s checked in by user %s", result.reservation_id, actor.user_id)
    occupancy.publish_all(hub, events)
    return result


def end_session(
    db: Session,
    *,
    actor: Identity,
    qr_key: str | None = None,
    reservation_id: int | None = None,
    hub=None,
) -> SessionResult:
    with transaction(db):
        reservation = occupancy.lock_reservation(db, reservation_id=reservation_id, qr_key=qr_key)
        _check_actor(actor, reservation)
        now = utcnow()
        charge = complete_locked(db, reservation, now)
        db.flush()
        area_id = occupancy.area_id_for(db, reservation)
        result = SessionResult(
            reservation_id=reservation.id,
            booking_status=reservation.booking_status,
            spot_number=reservation.spot_number,
            start_time=as_utc(reservation.start_time),
            end_time=now,
            charged_hours=charge.charged_hours,
            penalty_hours=charge.penalty_hours,
            new_balance=charge.new_balance,
        )
        events = occupancy.events_for(reservation, area_id, SPOT_AVAILABLE, SOURCE_CHECKOUT)

    logger.info(
        "Reservation %s checked out: %.4fh charged, %.4fh penalty",
        result.reservation_id,
        result.charged_hours,
        result.penalty_hours,
    )
    occupancy.publish_all(hub, events)
    return result


def cancel_reservation(db: Session, *, actor: Identity, reservation_id: int, hub=None) -> SessionResult:
    """reserved -> cancelled. Not billed; the spot or section unit is given back."""
    with transaction(db):
        reservation = occupancy.lock_reservation(db, reservation_id=reservation_id)
        _check_actor(actor, reservation)
        if reservation.booking_status != BOOKING_RESERVED:
            raise ReservationNotFound("Reservation not found or no longer reserved", reservation_id=reservation.id)
        if reservation.start_time is not None:
            raise InvariantViolation("reserved reservation has a start_time", reservation_id=reservation.id)

        _lock_target(db, reservation)
        occupancy.release_reservation_target(db, reservation, occupancy.RESERVED_COUNTER)
        now = utcnow()
        reservation.booking_status = BOOKING_CANCELLED
        reservation.end_time = now
        log_user_activity(
            db,
            reservation.user_id,
            ACTION_RESERVATION_CANCELLED,
            f"Reservation at {reservation.spot_number} cancelled",
            target_id=reservation.id,
        )
        db.flush()
        area_id = occupancy.area_id_for(db, reservation)
        result = SessionResult(
            reservation_id=reservation.id,
            booking_status=reservation.booking_status,
            spot_number=reservation.spot_number,
            end_time=now,
        )
        events = occupancy.events_for(reservation, area_id, SPOT_AVAILABLE, SOURCE_CANCEL)

    logger.info("Reservation %s cancelled by user %s", result.reservation_id, actor.user_id)
    occupancy.publish_all(hub, events)
    return result
