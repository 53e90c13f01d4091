"""
Spot and section-slot assignment: user bookings, attendant and guest assignments, release,
manual availability, and the capacity read models.

Every mutation is one short transaction that decides on a conditional UPDATE; events are
published only after commit. A lost race surfaces as SpotUnavailable or CapacityExceeded,
never as a double booking (the partial unique indexes on reservations back this up).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tappark.core.clock import utcnow
from tappark.core.constants import (
    ACTION_GUEST_BOOKING,
    ACTION_RESERVATION_CANCELLED,
    ACTION_RESERVATION_CREATED,
    ACTION_STATUS_CHANGED,
    BOOKING_ACTIVE,
    BOOKING_CANCELLED,
    BOOKING_RESERVED,
    HOLDING_STATUSES,
    ROLE_GUEST,
    SECTION_AVAILABLE,
    SECTION_MODE_CAPACITY,
    SECTION_UNAVAILABLE,
    SPOT_AVAILABLE,
    SPOT_OCCUPIED,
    SPOT_RESERVED,
    SPOT_UNAVAILABLE,
)
from tappark.core.errors import (
    ActiveReservationExists,
    CapacityExceeded,
    NotFound,
    SectionNotFound,
    SpotNotFound,
    SpotUnavailable,
    Unauthorized,
    VehicleNotFound,
)
from tappark.core.identity import Identity
from tappark.db.session import transaction
from tappark.models.capacity_spot_status import CapacitySpotStatus
from tappark.models.guest_booking import GuestBooking
from tappark.models.parking_area import ParkingArea
from tappark.models.parking_section import ParkingSection
from tappark.models.parking_spot import ParkingSpot
from tappark.models.reservation import Reservation
from tappark.models.user import User
from tappark.models.vehicle import Vehicle
from tappark.realtime.events import capacity_updated, spots_updated
from tappark.services import occupancy
from tappark.services.billing_service import _lock_user, require_booking_eligibility
from tappark.services.parking_session_service import complete_locked
from tappark.services.qr import new_qr_key, qr_payload
from tappark.services.slot_allocation import allocate_spot_number, parse_spot_number, spot_label
from tappark.services.user_log_service import log_user_activity

logger = logging.getLogger(__name__)

SOURCE_BOOKING = "booking"
SOURCE_GUEST = "guest-assign"
SOURCE_RELEASE = "release"
SOURCE_STATUS = "status-update"


@dataclass
class ReservationReceipt:
    reservation_id: int
    qr_key: str
    qr_payload: str
    booking_status: str
    spot_number: str | None
    user_id: int
    spot_id: int | None = None
    section_id: int | None = None
    area_id: int | None = None
    time_stamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "qr_key": self.qr_key,
            "qr": self.qr_payload,
            "booking_status": self.booking_status,
            "spot_number": self.spot_number,
            "user_id": self.user_id,
            "spot_id": self.spot_id,
            "section_id": self.section_id,
            "area_id": self.area_id,
            "time_stamp": self.time_stamp.isoformat() if self.time_stamp else None,
        }


@dataclass
class GuestDetails:
    first_name: str
    last_name: str
    plate_number: str
    vehicle_type: str
    brand: str | None = None
    color: str | None = None


@dataclass
class ReleaseResult:
    released: bool
    reservation_id: int | None = None
    booking_status: str | None = None
    charged_hours: float = 0.0


@dataclass
class StatusTarget:
    """One of: spot_id; section_id + spot_number (virtual spot); section_id alone (whole section)."""

    spot_id: int | None = None
    section_id: int | None = None
    spot_number: Any = None

    @property
    def is_section(self) -> bool:
        return self.spot_id is None and self.section_id is not None and self.spot_number in (None, "")


@dataclass
class StatusChange:
    changed: bool
    status: str
    target: dict = field(default_factory=dict)


# --- helpers ---


def _owned_vehicle(db: Session, vehicle_id: int, user_id: int) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.user_id == user_id).one_or_none()
    if vehicle is None:
        raise VehicleNotFound(vehicle_id=vehicle_id, user_id=user_id)
    return vehicle


def _ensure_no_holding_reservation(db: Session, user_id: int) -> None:
    existing = (
        db.query(Reservation.id)
        .filter(Reservation.user_id == user_id, Reservation.booking_status.in_(HOLDING_STATUSES))
        .first()
    )
    if existing is not None:
        raise ActiveReservationExists(reservation_id=existing[0])


def _require_privileged(actor: Identity) -> None:
    if not actor.is_privileged:
        raise Unauthorized("Only attendants and admins can do this", user_id=actor.user_id)


def _slot_number(section: ParkingSection, spot_number) -> int:
    """Accept 3, "3" or "{section_name}-3"; must lie in 1..total_capacity."""
    n = None
    if isinstance(spot_number, int):
        n = spot_number
    elif isinstance(spot_number, str):
        raw = spot_number.strip()
        n = int(raw) if raw.isdigit() else parse_spot_number(raw, section.section_name)
    if n is None or n < 1 or n > (section.total_capacity or 0):
        raise SpotNotFound("Spot number is not part of this section", section_id=section.id, spot_number=spot_number)
    return n


def _new_reservation(**kwargs) -> Reservation:
    now = utcnow()
    kwargs.setdefault("time_stamp", now)
    return Reservation(qr_key=new_qr_key(), **kwargs)


def _receipt(reservation: Reservation, area_id: int | None) -> ReservationReceipt:
    return ReservationReceipt(
        reservation_id=reservation.id,
        qr_key=reservation.qr_key,
        qr_payload=qr_payload(reservation.qr_key),
        booking_status=reservation.booking_status,
        spot_number=reservation.spot_number,
        user_id=reservation.user_id,
        spot_id=reservation.parking_spot_id,
        section_id=reservation.parking_section_id,
        area_id=area_id,
        time_stamp=reservation.time_stamp,
    )


def _booking_events(reservation: Reservation, area_id: int | None, source: str) -> list:
    target_status = SPOT_OCCUPIED if reservation.booking_status == BOOKING_ACTIVE else SPOT_RESERVED
    return occupancy.events_for(reservation, area_id, target_status, source)


# --- individual spots ---


def _book_spot_locked(
    db: Session,
    spot_id: int,
    user_id: int,
    vehicle: Vehicle,
    *,
    active: bool,
) -> tuple[Reservation, int]:
    spot = occupancy.lock_spot(db, spot_id)
    section = db.get(ParkingSection, spot.section_id)
    occupancy.check_vehicle_fits(vehicle.vehicle_type, spot.spot_type)
    if spot.status != SPOT_AVAILABLE or (section is not None and section.status == SECTION_UNAVAILABLE):
        raise SpotUnavailable(spot_id=spot_id, status=spot.status)
    if not occupancy.claim_spot(db, spot_id, SPOT_OCCUPIED if active else SPOT_RESERVED):
        raise SpotUnavailable(spot_id=spot_id)
    now = utcnow()
    reservation = _new_reservation(
        user_id=user_id,
        vehicle_id=vehicle.id,
        parking_spot_id=spot_id,
        spot_number=spot.spot_number,
        booking_status=BOOKING_ACTIVE if active else BOOKING_RESERVED,
        time_stamp=now,
        start_time=now if active else None,
    )
    db.add(reservation)
    db.flush()
    return reservation, (section.area_id if section else None)


def reserve_individual_spot(db: Session, *, spot_id: int, user_id: int, vehicle_id: int, hub=None) -> ReservationReceipt:
    """Book one available spot for the user. The spot goes available -> reserved."""
    try:
        with transaction(db):
            spot_row = occupancy.lock_spot(db, spot_id)
            _lock_user(db, user_id)
            require_booking_eligibility(db, user_id)
            _ensure_no_holding_reservation(db, user_id)
            vehicle = _owned_vehicle(db, vehicle_id, user_id)
            reservation, area_id = _book_spot_locked(db, spot_row.id, user_id, vehicle, active=False)
            log_user_activity(
                db,
                user_id,
                ACTION_RESERVATION_CREATED,
                f"Reserved spot {reservation.spot_number}",
                target_id=reservation.id,
            )
            receipt = _receipt(reservation, area_id)
            events = _booking_events(reservation, area_id, SOURCE_BOOKING)
    except IntegrityError as e:
        raise SpotUnavailable(spot_id=spot_id) from e

    logger.info("User %s reserved spot %s (reservation %s)", user_id, spot_id, receipt.reservation_id)
    occupancy.publish_all(hub, events)
    return receipt


# --- capacity section slots ---


def _book_slot_locked(
    db: Session,
    section: ParkingSection,
    user_id: int,
    vehicle: Vehicle,
    spot_number=None,
    *,
    active: bool,
) -> Reservation:
    occupancy.check_vehicle_fits(vehicle.vehicle_type, section.vehicle_type)
    if section.status == SECTION_UNAVAILABLE:
        raise SpotUnavailable("This section is currently unavailable", section_id=section.id)
    if (section.section_mode or "") != SECTION_MODE_CAPACITY:
        raise SpotUnavailable("This section is booked by individual spot", section_id=section.id)

    taken = occupancy.taken_slot_numbers(db, section)
    requested = _slot_number(section, spot_number) if spot_number not in (None, "") else None
    if requested is not None and requested in taken:
        raise SpotUnavailable(
            "This spot is already taken or unavailable",
            section_id=section.id,
            spot_number=spot_label(section.section_name, requested),
        )

    counter = occupancy.PARKED_COUNTER if active else occupancy.RESERVED_COUNTER
    if not occupancy.claim_section_capacity(db, section.id, counter):
        raise CapacityExceeded(section_id=section.id, total_capacity=section.total_capacity)

    # Re-read under the write lock: a slot committed since the first read is taken now.
    taken = occupancy.taken_slot_numbers(db, section)
    if requested is not None and requested in taken:
        raise SpotUnavailable(
            "This spot is already taken or unavailable",
            section_id=section.id,
            spot_number=spot_label(section.section_name, requested),
        )
    n = requested if requested is not None else allocate_spot_number(section.total_capacity or 0, taken)
    if n is None:
        # Counters said there was room but every number is held; counters have drifted.
        logger.warning("Section %s counters allow a booking but no spot number is free", section.id)
        raise CapacityExceeded(section_id=section.id, total_capacity=section.total_capacity)

    now = utcnow()
    reservation = _new_reservation(
        user_id=user_id,
        vehicle_id=vehicle.id,
        parking_section_id=section.id,
        spot_number=spot_label(section.section_name, n),
        booking_status=BOOKING_ACTIVE if active else BOOKING_RESERVED,
        time_stamp=now,
        start_time=now if active else None,
    )
    db.add(reservation)
    db.flush()
    return reservation


def reserve_section_slot(
    db: Session,
    *,
    section_id: int,
    user_id: int,
    vehicle_id: int,
    spot_number=None,
    hub=None,
) -> ReservationReceipt:
    """
    Take one unit of a capacity section. With spot_number the named virtual spot is booked,
    otherwise the lowest free number is assigned.
    """
    try:
        with transaction(db):
            section = occupancy.lock_section(db, section_id)
            _lock_user(db, user_id)
            require_booking_eligibility(db, user_id)
            _ensure_no_holding_reservation(db, user_id)
            vehicle = _owned_vehicle(db, vehicle_id, user_id)
            reservation = _book_slot_locked(db, section, user_id, vehicle, spot_number, active=False)
            log_user_activity(
                db,
                user_id,
                ACTION_RESERVATION_CREATED,
                f"Reserved {reservation.spot_number}",
                target_id=reservation.id,
            )
            receipt = _receipt(reservation, section.area_id)
            events = _booking_events(reservation, section.area_id, SOURCE_BOOKING)
    except IntegrityError as e:
        raise SpotUnavailable(section_id=section_id, spot_number=spot_number) from e

    logger.info(
        "User %s reserved %s in section %s (reservation %s)",
        user_id,
        receipt.spot_number,
        section_id,
        receipt.reservation_id,
    )
    occupancy.publish_all(hub, events)
    return receipt


def assign_motorcycle_spot(
    db: Session,
    *,
    actor: Identity,
    section_id: int,
    spot_number,
    user_id: int,
    vehicle_id: int,
    hub=None,
) -> ReservationReceipt:
    """Attendant books a named virtual spot for a registered user. Skips the balance check."""
    _require_privileged(actor)
    try:
        with transaction(db):
            section = occupancy.lock_section(db, section_id)
            _lock_user(db, user_id)
            _ensure_no_holding_reservation(db, user_id)
            vehicle = _owned_vehicle(db, vehicle_id, user_id)
            reservation = _book_slot_locked(db, section, user_id, vehicle, spot_number, active=False)
            log_user_activity(
                db,
                user_id,
                ACTION_RESERVATION_CREATED,
                f"Assigned {reservation.spot_number} by attendant {actor.user_id}",
                target_id=reservation.id,
            )
            receipt = _receipt(reservation, section.area_id)
            events = _booking_events(reservation, section.area_id, SOURCE_BOOKING)
    except IntegrityError as e:
        raise SpotUnavailable(section_id=section_id, spot_number=spot_number) from e

    logger.info("Attendant %s assigned %s to user %s", actor.user_id, receipt.spot_number, user_id)
    occupancy.publish_all(hub, events)
    return receipt


# --- guests ---


def _guest_user_and_vehicle(db: Session, guest: GuestDetails) -> tuple[User, Vehicle]:
    """
    A known plate reuses its vehicle row. Its owner is reused only when that owner is a
    guest; a registered owner is never booked or billed for a walk-in, so a fresh guest
    user parks the registered vehicle instead.
    """
    plate = guest.plate_number.strip().upper()
    vehicle = db.query(Vehicle).filter(Vehicle.plate_number == plate).order_by(Vehicle.id.desc()).first()
    if vehicle is not None:
        holding = (
            db.query(Reservation.id)
            .filter(Reservation.vehicle_id == vehicle.id, Reservation.booking_status.in_(HOLDING_STATUSES))
            .first()
        )
        if holding is not None:
            raise ActiveReservationExists(reservation_id=holding[0])
        owner = db.get(User, vehicle.user_id)
        if owner is not None and owner.role == ROLE_GUEST:
            owner = _lock_user(db, owner.id)
            _ensure_no_holding_reservation(db, owner.id)
            return owner, vehicle

    user = User(
        email=f"guest_{new_qr_key()[:16]}@guest.local",
        first_name=guest.first_name.strip() or "Guest",
        last_name=guest.last_name.strip() or "Guest",
        role=ROLE_GUEST,
        hour_balance=0.0,
    )
    db.add(user)
    db.flush()
    if vehicle is None:
        vehicle = Vehicle(
            user_id=user.id,
            plate_number=plate,
            vehicle_type=guest.vehicle_type,
            brand=guest.brand,
            color=guest.color,
        )
        db.add(vehicle)
        db.flush()
    return user, vehicle


def assign_spot_guest(
    db: Session,
    *,
    actor: Identity,
    guest: GuestDetails,
    spot_id: int | None = None,
    section_id: int | None = None,
    spot_number=None,
    hub=None,
) -> ReservationReceipt:
    """
    Walk-in guest parked by an attendant. The reservation is active immediately
    (spot occupied / parked_count + 1) and a GuestBooking records who created it.
    """
    _require_privileged(actor)
    if spot_id is None and section_id is None:
        raise SpotNotFound("Give a spot_id or a section_id")
    try:
        with transaction(db):
            if spot_id is not None:
                occupancy.lock_spot(db, spot_id)
                section = None
            else:
                section = occupancy.lock_section(db, section_id)
            user, vehicle = _guest_user_and_vehicle(db, guest)
            if spot_id is not None:
                reservation, area_id = _book_spot_locked(db, spot_id, user.id, vehicle, active=True)
            else:
                reservation = _book_slot_locked(db, section, user.id, vehicle, spot_number, active=True)
                area_id = section.area_id
            db.add(
                GuestBooking(
                    guest_user_id=user.id,
                    vehicle_id=vehicle.id,
                    reservation_id=reservation.id,
                    attendant_id=actor.user_id,
                )
            )
            log_user_activity(
                db,
                actor.user_id,
                ACTION_GUEST_BOOKING,
                f"Guest {user.full_name} ({vehicle.plate_number}) parked at {reservation.spot_number}",
                target_id=reservation.id,
            )
            receipt = _receipt(reservation, area_id)
            events = _booking_events(reservation, area_id, SOURCE_GUEST)
    except IntegrityError as e:
        raise SpotUnavailable(spot_id=spot_id, section_id=section_id, spot_number=spot_number) from e

    logger.info("Attendant %s parked guest at %s (reservation %s)", actor.user_id, receipt.spot_number, receipt.reservation_id)
    occupancy.publish_all(hub, events)
    return receipt


# --- release ---


def _holding_reservation(db: Session, spot_id: int | None, section: ParkingSection | None, spot_number) -> Reservation | None:
    q = db.query(Reservation).filter(Reservation.booking_status.in_(HOLDING_STATUSES))
    if spot_id is not None:
        q = q.filter(Reservation.parking_spot_id == spot_id)
    else:
        label = spot_label(section.section_name, _slot_number(section, spot_number))
        q = q.filter(Reservation.parking_section_id == section.id, Reservation.spot_number == label)
    return q.order_by(Reservation.id.desc()).with_for_update().first()


def release_spot(
    db: Session,
    *,
    actor: Identity,
    spot_id: int | None = None,
    section_id: int | None = None,
    spot_number=None,
    hub=None,
) -> ReleaseResult:
    """
    Give back whatever holds the spot. Reserved -> cancelled; active -> completed through
    the billed checkout. Nothing holding the spot is a successful no-op.
    """
    if spot_id is None and (section_id is None or spot_number in (None, "")):
        raise SpotNotFound("Give a spot_id or a section_id with spot_number")

    with transaction(db):
        if spot_id is not None:
            spot = db.get(ParkingSpot, spot_id)
            if spot is None:
                raise SpotNotFound(spot_id=spot_id)
            section = db.get(ParkingSection, spot.section_id)
            reservation = _holding_reservation(db, spot_id, None, None)
        else:
            section = db.get(ParkingSection, section_id)
            if section is None:
                raise SectionNotFound(section_id=section_id)
            reservation = _holding_reservation(db, None, section, spot_number)

        if reservation is None:
            return ReleaseResult(released=False)
        if not actor.can_manage(reservation.user_id):
            raise Unauthorized(reservation_id=reservation.id)

        area_id = section.area_id if section else None
        charged = 0.0
        if reservation.booking_status == BOOKING_ACTIVE:
            charge = complete_locked(db, reservation, utcnow())
            charged = charge.charged_hours
        else:
            if reservation.parking_spot_id is not None:
                occupancy.lock_spot(db, reservation.parking_spot_id)
            else:
                occupancy.lock_section(db, reservation.parking_section_id)
            occupancy.release_reservation_target(db, reservation, occupancy.RESERVED_COUNTER)
            reservation.booking_status = BOOKING_CANCELLED
            reservation.end_time = utcnow()
            log_user_activity(
                db,
                reservation.user_id,
                ACTION_RESERVATION_CANCELLED,
                f"Released {reservation.spot_number}",
                target_id=reservation.id,
            )
        db.flush()
        result = ReleaseResult(
            released=True,
            reservation_id=reservation.id,
            booking_status=reservation.booking_status,
            charged_hours=charged,
        )
        events = occupancy.events_for(reservation, area_id, SPOT_AVAILABLE, SOURCE_RELEASE)

    logger.info("Released reservation %s (%s) by user %s", result.reservation_id, result.booking_status, actor.user_id)
    occupancy.publish_all(hub, events)
    return result


# --- manual availability ---


def _sync_unavailable_count(db: Session, section: ParkingSection) -> int:
    """unavailable_count = number of manual unavailable rows (within capacity)."""
    labels = occupancy.manual_unavailable_labels(db, section.id)
    count = len({parse_spot_number(label, section.section_name) for label in labels} - {None})
    section.unavailable_count = min(count, section.total_capacity or 0)
    return section.unavailable_count


def _set_virtual_spot(
    db: Session,
    actor: Identity,
    section: ParkingSection,
    spot_number,
    unavailable: bool,
    reason: str | None,
) -> bool:
    label = spot_label(section.section_name, _slot_number(section, spot_number))
    row = (
        db.query(CapacitySpotStatus)
        .filter(CapacitySpotStatus.section_id == section.id, CapacitySpotStatus.spot_number == label)
        .one_or_none()
    )
    if unavailable:
        if row is not None and row.status == SPOT_UNAVAILABLE:
            return False
        if _holding_reservation(db, None, section, label) is not None:
            raise SpotUnavailable("Spot is reserved or in use", section_id=section.id, spot_number=label)
        if section.used_count >= (section.total_capacity or 0):
            raise CapacityExceeded("No free capacity left to withdraw", section_id=section.id)
        if row is None:
            row = CapacitySpotStatus(section_id=section.id, spot_number=label)
            db.add(row)
        row.status = SPOT_UNAVAILABLE
        row.reason = reason
        row.updated_by = actor.user_id
    else:
        if row is None:
            return False
        db.delete(row)
    db.flush()
    _sync_unavailable_count(db, section)
    return True


def _set_spot(db: Session, spot_id: int, unavailable: bool, reason: str | None) -> bool:
    spot = occupancy.lock_spot(db, spot_id)
    if unavailable:
        if spot.status == SPOT_UNAVAILABLE:
            return False
        holding = _holding_reservation(db, spot_id, None, None)
        if holding is not None or spot.status != SPOT_AVAILABLE:
            raise SpotUnavailable("Spot is reserved or in use", spot_id=spot_id, status=spot.status)
        spot.status = SPOT_UNAVAILABLE
        spot.is_occupied = False
        spot.unavailable_reason = reason
    else:
        if spot.status != SPOT_UNAVAILABLE:
            return False
        spot.status = SPOT_AVAILABLE
        spot.is_occupied = False
        spot.unavailable_reason = None
    return True


def _set_status(db: Session, *, actor: Identity, target: StatusTarget, unavailable: bool, reason: str | None, hub):
    _require_privileged(actor)
    status = SPOT_UNAVAILABLE if unavailable else SPOT_AVAILABLE
    with transaction(db):
        if target.spot_id is not None:
            changed = _set_spot(db, target.spot_id, unavailable, reason)
            spot = db.get(ParkingSpot, target.spot_id)
            section = db.get(ParkingSection, spot.section_id)
            area_id = section.area_id if section else None
            events = [spots_updated(spot_id=target.spot_id, status=status, source=SOURCE_STATUS, area_id=area_id)]
            description = f"Spot {spot.spot_number} set {status}"
        elif target.section_id is not None:
            section = occupancy.lock_section(db, target.section_id)
            area_id = section.area_id
            if target.is_section:
                new = SECTION_UNAVAILABLE if unavailable else SECTION_AVAILABLE
                changed = section.status != new
                section.status = new
                description = f"Section {section.section_name} set {new}"
            else:
                changed = _set_virtual_spot(db, actor, section, target.spot_number, unavailable, reason)
                description = f"Spot {spot_label(section.section_name, _slot_number(section, target.spot_number))} set {status}"
            events = [capacity_updated(section_id=section.id, status=status, source=SOURCE_STATUS, area_id=area_id)]
        else:
            raise SpotNotFound("Give a spot_id or a section_id")
        if changed:
            log_user_activity(db, actor.user_id, ACTION_STATUS_CHANGED, description)

    if changed:
        logger.info("%s by user %s", description, actor.user_id)
        occupancy.publish_all(hub, events)
    return StatusChange(
        changed=changed,
        status=status,
        target={"spot_id": target.spot_id, "section_id": target.section_id, "spot_number": target.spot_number},
    )


def set_unavailable(db: Session, *, actor: Identity, target: StatusTarget, reason: str | None = None, hub=None) -> StatusChange:
    """Withdraw a spot, a virtual spot or a whole section. Refuses while a reservation holds the spot."""
    return _set_status(db, actor=actor, target=target, unavailable=True, reason=reason, hub=hub)


def set_available(db: Session, *, actor: Identity, target: StatusTarget, hub=None) -> StatusChange:
    return _set_status(db, actor=actor, target=target, unavailable=False, reason=None, hub=hub)


# --- read models ---


def get_capacity_status(db: Session, area_id: int, user_id: int | None = None) -> dict[str, Any]:
    """Per-section counters for an area, plus the caller's own holding reservation if any."""
    area = db.get(ParkingArea, area_id)
    if area is None:
        raise NotFound("Parking area not found", area_id=area_id)
    sections = db.query(ParkingSection).filter(ParkingSection.area_id == area_id).order_by(ParkingSection.id).all()
    out = []
    for s in sections:
        row = {
            "section_id": s.id,
            "section_name": s.section_name,
            "vehicle_type": s.vehicle_type,
            "section_mode": s.section_mode,
            "status": s.status,
            "total_capacity": s.total_capacity,
            "reserved_count": s.reserved_count,
            "parked_count": s.parked_count,
            "unavailable_count": s.unavailable_count,
            "available_capacity": s.available_capacity if s.status == SECTION_AVAILABLE else 0,
        }
        if s.section_mode != SECTION_MODE_CAPACITY:
            spots = db.query(ParkingSpot.status).filter(ParkingSpot.section_id == s.id).all()
            row["spot_count"] = len(spots)
            row["available_spots"] = sum(1 for (st,) in spots if st == SPOT_AVAILABLE)
        out.append(row)

    mine = None
    if user_id is not None:
        section_ids = [s.id for s in sections]
        res = (
            db.query(Reservation)
            .outerjoin(ParkingSpot, ParkingSpot.id == Reservation.parking_spot_id)
            .filter(
                Reservation.user_id == user_id,
                Reservation.booking_status.in_(HOLDING_STATUSES),
                (Reservation.parking_section_id.in_(section_ids)) | (ParkingSpot.section_id.in_(section_ids)),
            )
            .first()
        ) if section_ids else None
        if res is not None:
            mine = {
                "reservation_id": res.id,
                "booking_status": res.booking_status,
                "spot_number": res.spot_number,
                "spot_id": res.parking_spot_id,
                "section_id": res.parking_section_id,
            }
    return {"area_id": area.id, "area_name": area.name, "sections": out, "my_reservation": mine}


def list_section_spots(db: Session, section_id: int, user_id: int | None = None) -> dict[str, Any]:
    """
    Spots of a section. Capacity sections list virtual spots 1..total_capacity with their
    reservation or manual status; slot sections list their spot rows.
    """
    section = db.get(ParkingSection, section_id)
    if section is None:
        raise SectionNotFound(section_id=section_id)

    if section.section_mode != SECTION_MODE_CAPACITY:
        spots = db.query(ParkingSpot).filter(ParkingSpot.section_id == section.id).order_by(ParkingSpot.id).all()
        holding = {
            r.parking_spot_id: r
            for r in db.query(Reservation)
            .filter(
                Reservation.parking_spot_id.in_([s.id for s in spots] or [0]),
                Reservation.booking_status.in_(HOLDING_STATUSES),
            )
            .all()
        }
        items = []
        for s in spots:
            r = holding.get(s.id)
            items.append(
                {
                    "spot_id": s.id,
                    "spot_number": s.spot_number,
                    "spot_type": s.spot_type,
                    "status": s.status,
                    "is_mine": bool(r is not None and user_id is not None and r.user_id == user_id),
                    "reservation_id": r.id if r is not None and user_id is not None and r.user_id == user_id else None,
                }
            )
        return {"section_id": section.id, "section_name": section.section_name, "spots": items}

    reservations = {
        r.spot_number: r
        for r in db.query(Reservation)
        .filter(Reservation.parking_section_id == section.id, Reservation.booking_status.in_(HOLDING_STATUSES))
        .all()
    }
    manual = {
        row.spot_number: row
        for row in db.query(CapacitySpotStatus).filter(CapacitySpotStatus.section_id == section.id).all()
    }
    items = []
    for n in range(1, (section.total_capacity or 0) + 1):
        label = spot_label(section.section_name, n)
        r = reservations.get(label)
        m = manual.get(label)
        if r is not None:
            status = SPOT_OCCUPIED if r.booking_status == BOOKING_ACTIVE else SPOT_RESERVED
        elif m is not None and m.status == SPOT_UNAVAILABLE:
            status = SPOT_UNAVAILABLE
        elif section.status == SECTION_UNAVAILABLE:
            status = SPOT_UNAVAILABLE
        else:
            status = SPOT_AVAILABLE
        mine = r is not None and user_id is not None and r.user_id == user_id
        items.append(
            {
                "spot_number": label,
                "number": n,
                "status": status,
                "is_mine": mine,
                "reservation_id": r.id if mine else None,
                "reason": m.reason if m is not None else None,
            }
        )
    return {
        "section_id": section.id,
        "section_name": section.section_name,
        "total_capacity": section.total_capacity,
        "spots": items,
    }
