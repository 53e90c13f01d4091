"""
Row-level primitives shared by booking, check-in/out, release and the grace-period sweeper.

The decisive writes are conditional UPDATEs whose rowcount says whether we won:
a spot is claimed only WHERE status = 'available', a section slot only WHERE
reserved + parked + unavailable < total_capacity. Counter decrements are floored at 0.
None of these commit.

Lock order for every writer: reservation -> spot / section -> user -> subscriptions -> penalties.
"""
from sqlalchemy import case, update
from sqlalchemy.orm import Session

from tappark.core.constants import (
    BOOKING_ACTIVE,
    HOLDING_STATUSES,
    SECTION_AVAILABLE,
    SPOT_AVAILABLE,
    SPOT_OCCUPIED,
    SPOT_UNAVAILABLE,
    VEHICLE_SPOT_TYPE_ALIASES,
)
from tappark.core.errors import ReservationNotFound, SectionNotFound, SpotNotFound, VehicleTypeMismatch
from tappark.models.capacity_spot_status import CapacitySpotStatus
from tappark.models.parking_section import ParkingSection
from tappark.models.parking_spot import ParkingSpot
from tappark.models.reservation import Reservation
from tappark.realtime.events import RealtimeEvent, capacity_updated, reservation_updated, spots_updated
from tappark.services.slot_allocation import taken_numbers

RESERVED_COUNTER = "reserved_count"
PARKED_COUNTER = "parked_count"
UNAVAILABLE_COUNTER = "unavailable_count"


def normalize_vehicle_type(value: str | None) -> str:
    v = (value or "").strip().lower()
    return VEHICLE_SPOT_TYPE_ALIASES.get(v, v)


def check_vehicle_fits(vehicle_type: str | None, spot_type: str | None) -> None:
    if normalize_vehicle_type(vehicle_type) != normalize_vehicle_type(spot_type):
        raise VehicleTypeMismatch(
            f"Vehicle type '{vehicle_type}' does not match spot type '{spot_type}'",
            vehicle_type=vehicle_type,
            spot_type=spot_type,
        )


# --- locked reads ---


def lock_spot(db: Session, spot_id: int) -> ParkingSpot:
    spot = db.query(ParkingSpot).filter(ParkingSpot.id == spot_id).populate_existing().with_for_update().one_or_none()
    if spot is None:
        raise SpotNotFound(spot_id=spot_id)
    return spot


def lock_section(db: Session, section_id: int) -> ParkingSection:
    section = (
        db.query(ParkingSection)
        .filter(ParkingSection.id == section_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if section is None:
        raise SectionNotFound(section_id=section_id)
    return section


def lock_reservation(db: Session, reservation_id: int | None = None, qr_key: str | None = None) -> Reservation:
    q = db.query(Reservation)
    if reservation_id is not None:
        q = q.filter(Reservation.id == reservation_id)
    elif qr_key:
        q = q.filter(Reservation.qr_key == qr_key)
    else:
        raise ReservationNotFound()
    reservation = q.populate_existing().with_for_update().one_or_none()
    if reservation is None:
        raise ReservationNotFound(reservation_id=reservation_id)
    return reservation


# --- conditional writes ---


def claim_spot(db: Session, spot_id: int, new_status: str) -> bool:
    """available -> new_status. False when someone else got there first."""
    result = db.execute(
        update(ParkingSpot)
        .where(ParkingSpot.id == spot_id, ParkingSpot.status == SPOT_AVAILABLE)
        .values(status=new_status, is_occupied=(new_status == SPOT_OCCUPIED))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def free_spot(db: Session, spot_id: int) -> bool:
    """reserved/occupied -> available. A spot withdrawn by staff stays unavailable."""
    result = db.execute(
        update(ParkingSpot)
        .where(ParkingSpot.id == spot_id, ParkingSpot.status != SPOT_UNAVAILABLE)
        .values(status=SPOT_AVAILABLE, is_occupied=False)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def occupy_spot(db: Session, spot_id: int) -> None:
    db.execute(
        update(ParkingSpot)
        .where(ParkingSpot.id == spot_id)
        .values(status=SPOT_OCCUPIED, is_occupied=True)
        .execution_options(synchronize_session=False)
    )


def claim_section_capacity(db: Session, section_id: int, counter: str) -> bool:
    """counter + 1 if the section is open and below its ceiling. False when full."""
    column = getattr(ParkingSection, counter)
    used = ParkingSection.reserved_count + ParkingSection.parked_count + ParkingSection.unavailable_count
    result = db.execute(
        update(ParkingSection)
        .where(
            ParkingSection.id == section_id,
            ParkingSection.status == SECTION_AVAILABLE,
            used < ParkingSection.total_capacity,
        )
        .values({column: column + 1})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_section_counter(db: Session, section_id: int, counter: str) -> None:
    """counter - 1, floored at 0."""
    column = getattr(ParkingSection, counter)
    db.execute(
        update(ParkingSection)
        .where(ParkingSection.id == section_id)
        .values({column: case((column > 0, column - 1), else_=0)})
        .execution_options(synchronize_session=False)
    )


def move_section_counter(db: Session, section_id: int, from_counter: str, to_counter: str) -> None:
    """One unit from one counter to another (reserved -> parked on check-in)."""
    src = getattr(ParkingSection, from_counter)
    dst = getattr(ParkingSection, to_counter)
    db.execute(
        update(ParkingSection)
        .where(ParkingSection.id == section_id)
        .values({src: case((src > 0, src - 1), else_=0), dst: dst + 1})
        .execution_options(synchronize_session=False)
    )


def counter_for(reservation: Reservation) -> str:
    return PARKED_COUNTER if reservation.booking_status == BOOKING_ACTIVE else RESERVED_COUNTER


def release_reservation_target(db: Session, reservation: Reservation, counter: str) -> None:
    """Give back whatever the reservation held: the spot, or one unit of the section counter."""
    if reservation.parking_spot_id is not None:
        free_spot(db, reservation.parking_spot_id)
    elif reservation.parking_section_id is not None:
        release_section_counter(db, reservation.parking_section_id, counter)


# --- section slot bookkeeping ---


def holding_labels(db: Session, section_id: int) -> list[str]:
    rows = (
        db.query(Reservation.spot_number)
        .filter(Reservation.parking_section_id == section_id, Reservation.booking_status.in_(HOLDING_STATUSES))
        .all()
    )
    return [r[0] for r in rows]


def manual_unavailable_labels(db: Session, section_id: int) -> list[str]:
    rows = (
        db.query(CapacitySpotStatus.spot_number)
        .filter(CapacitySpotStatus.section_id == section_id, CapacitySpotStatus.status == SPOT_UNAVAILABLE)
        .all()
    )
    return [r[0] for r in rows]


def taken_slot_numbers(db: Session, section: ParkingSection) -> set[int]:
    labels = holding_labels(db, section.id) + manual_unavailable_labels(db, section.id)
    return taken_numbers(labels, section.section_name, section.total_capacity or 0)


# --- realtime ---


def area_id_for(db: Session, reservation: Reservation) -> int | None:
    section_id = reservation.parking_section_id
    if section_id is None and reservation.parking_spot_id is not None:
        spot = db.get(ParkingSpot, reservation.parking_spot_id)
        section_id = spot.section_id if spot else None
    if section_id is None:
        return None
    section = db.get(ParkingSection, section_id)
    return section.area_id if section else None


def events_for(reservation: Reservation, area_id: int | None, target_status: str, source: str) -> list[RealtimeEvent]:
    """reservation:updated plus the matching spots:/capacity:updated event for one transition."""
    events = [
        reservation_updated(
            reservation_id=reservation.id,
            status=reservation.booking_status,
            source=source,
            area_id=area_id,
            user_id=reservation.user_id,
        )
    ]
    if reservation.parking_spot_id is not None:
        events.append(spots_updated(area_id=area_id, spot_id=reservation.parking_spot_id, status=target_status, source=source))
    elif reservation.parking_section_id is not None:
        events.append(
            capacity_updated(area_id=area_id, section_id=reservation.parking_section_id, status=target_status, source=source)
        )
    return events


def publish_all(hub, events: list[RealtimeEvent]) -> None:
    if hub is None:
        return
    for event in events:
        hub.publish(event)
