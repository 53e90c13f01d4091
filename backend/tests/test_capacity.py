from functools import partial

import pytest

from tappark.core.constants import ROLE_ADMIN, ROLE_ATTENDANT, ROLE_GUEST
from tappark.core.errors import (
    ActiveReservationExists,
    BookingNotAllowed,
    CapacityExceeded,
    NotFound,
    SpotNotFound,
    SpotUnavailable,
    Unauthorized,
    VehicleTypeMismatch,
)
from tappark.core.identity import Identity
from tappark.models import CapacitySpotStatus, GuestBooking, ParkingSection, ParkingSpot, Reservation, User, Vehicle
from tappark.services import capacity_service
from tappark.services.capacity_service import GuestDetails, StatusTarget
from tappark.services.parking_session_service import end_session, start_session
from tappark.services.qr import parse_qr_payload


def _counters(db, section_id):
    section = db.get(ParkingSection, section_id, populate_existing=True)
    return section.reserved_count, section.parked_count, section.unavailable_count


def _spot_status(db, spot_id):
    return db.get(ParkingSpot, spot_id, populate_existing=True).status


def _attendant(build):
    return Identity(user_id=build.user(role=ROLE_ATTENDANT).id, role=ROLE_ATTENDANT)


# --- individual spots ---


def test_reserve_spot(db, build, hub):
    area, _, spot = build.car_spot()
    user, vehicle = build.driver()

    receipt = capacity_service.reserve_individual_spot(
        db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id, hub=hub
    )

    assert receipt.booking_status == "reserved"
    assert receipt.spot_number == "A-1"
    assert receipt.area_id == area.id
    assert parse_qr_payload(receipt.qr_payload) == receipt.qr_key
    assert _spot_status(db, spot.id) == "reserved"
    assert hub.types() == ["reservation:updated", "spots:updated"]
    assert all(e.source == "booking" for e in hub.events)


def test_reserved_spot_cannot_be_booked_again(db, build, hub):
    _, _, spot = build.car_spot()
    first, first_vehicle = build.driver()
    second, second_vehicle = build.driver()
    capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=first.id, vehicle_id=first_vehicle.id)

    with pytest.raises(SpotUnavailable):
        capacity_service.reserve_individual_spot(
            db, spot_id=spot.id, user_id=second.id, vehicle_id=second_vehicle.id, hub=hub
        )
    assert hub.events == []


def test_one_holding_reservation_per_user(db, build):
    _, section, spot = build.car_spot()
    other = build.spot(section.id, "A-2")
    user, vehicle = build.driver()
    capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)

    with pytest.raises(ActiveReservationExists):
        capacity_service.reserve_individual_spot(db, spot_id=other.id, user_id=user.id, vehicle_id=vehicle.id)
    assert _spot_status(db, other.id) == "available"


def test_vehicle_must_fit_the_spot(db, build):
    _, _, spot = build.car_spot()
    user, bike = build.driver(vehicle_type="motorcycle")
    with pytest.raises(VehicleTypeMismatch):
        capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=bike.id)
    assert _spot_status(db, spot.id) == "available"


def test_booking_needs_hours(db, build):
    _, _, spot = build.car_spot()
    user = build.user()
    vehicle = build.vehicle(user.id)
    with pytest.raises(BookingNotAllowed) as exc:
        capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)
    assert exc.value.code == "INSUFFICIENT_BALANCE"
    assert db.query(Reservation).count() == 0


def test_unknown_spot(db, build):
    user, vehicle = build.driver()
    with pytest.raises(SpotNotFound):
        capacity_service.reserve_individual_spot(db, spot_id=404, user_id=user.id, vehicle_id=vehicle.id)


def _reserve_spot(session_factory, spot_id, user_id, vehicle_id):
    db = session_factory()
    try:
        return capacity_service.reserve_individual_spot(db, spot_id=spot_id, user_id=user_id, vehicle_id=vehicle_id)
    finally:
        db.close()


def test_concurrent_bookings_of_one_spot_have_one_winner(db, build, session_factory, concurrently):
    _, _, spot = build.car_spot()
    drivers = [build.driver() for _ in range(6)]

    results = concurrently(
        [partial(_reserve_spot, session_factory, spot.id, user.id, vehicle.id) for user, vehicle in drivers]
    )

    winners = [value for kind, value in results if kind == "ok"]
    losers = [value for kind, value in results if kind == "error"]
    assert len(winners) == 1
    assert len(losers) == 5
    assert all(isinstance(e, SpotUnavailable) for e in losers)
    holding = db.query(Reservation).filter(Reservation.booking_status.in_(("reserved", "active"))).all()
    assert [r.id for r in holding] == [winners[0].reservation_id]
    assert _spot_status(db, spot.id) == "reserved"


# --- capacity sections ---


def test_section_booking_takes_lowest_free_number(db, build, hub):
    area, section = build.motorcycle_section(capacity=3)
    a_user, a_bike = build.driver(vehicle_type="motorcycle")
    b_user, b_bike = build.driver(vehicle_type="motorcycle")

    first = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=a_user.id, vehicle_id=a_bike.id)
    second = capacity_service.reserve_section_slot(
        db, section_id=section.id, user_id=b_user.id, vehicle_id=b_bike.id, hub=hub
    )

    assert (first.spot_number, second.spot_number) == ("M-1", "M-2")
    assert second.area_id == area.id
    assert _counters(db, section.id) == (2, 0, 0)
    assert hub.types() == ["reservation:updated", "capacity:updated"]


def test_section_booking_by_number(db, build):
    _, section = build.motorcycle_section(capacity=3)
    a_user, a_bike = build.driver(vehicle_type="motorcycle")
    b_user, b_bike = build.driver(vehicle_type="motorcycle")

    receipt = capacity_service.reserve_section_slot(
        db, section_id=section.id, user_id=a_user.id, vehicle_id=a_bike.id, spot_number="M-2"
    )
    assert receipt.spot_number == "M-2"

    with pytest.raises(SpotUnavailable):
        capacity_service.reserve_section_slot(
            db, section_id=section.id, user_id=b_user.id, vehicle_id=b_bike.id, spot_number="2"
        )
    with pytest.raises(SpotNotFound):
        capacity_service.reserve_section_slot(
            db, section_id=section.id, user_id=b_user.id, vehicle_id=b_bike.id, spot_number="M-4"
        )
    assert _counters(db, section.id) == (1, 0, 0)

    nxt = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=b_user.id, vehicle_id=b_bike.id)
    assert nxt.spot_number == "M-1"


def test_full_section_raises_capacity_exceeded(db, build):
    _, section = build.motorcycle_section(capacity=1)
    a_user, a_bike = build.driver(vehicle_type="motorcycle")
    b_user, b_bike = build.driver(vehicle_type="motorcycle")
    capacity_service.reserve_section_slot(db, section_id=section.id, user_id=a_user.id, vehicle_id=a_bike.id)

    with pytest.raises(CapacityExceeded):
        capacity_service.reserve_section_slot(db, section_id=section.id, user_id=b_user.id, vehicle_id=b_bike.id)
    assert _counters(db, section.id) == (1, 0, 0)


def test_slot_sections_are_booked_by_spot(db, build):
    _, section, _ = build.car_spot()
    user, vehicle = build.driver()
    with pytest.raises(SpotUnavailable):
        capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=vehicle.id)


def test_car_cannot_take_motorcycle_capacity(db, build):
    _, section = build.motorcycle_section()
    user, car = build.driver()
    with pytest.raises(VehicleTypeMismatch):
        capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=car.id)


def _reserve_slot(session_factory, section_id, user_id, vehicle_id):
    db = session_factory()
    try:
        return capacity_service.reserve_section_slot(db, section_id=section_id, user_id=user_id, vehicle_id=vehicle_id)
    finally:
        db.close()


def test_concurrent_section_bookings_never_exceed_capacity(db, build, session_factory, concurrently):
    _, section = build.motorcycle_section(capacity=3)
    drivers = [build.driver(vehicle_type="motorcycle") for _ in range(8)]

    results = concurrently(
        [partial(_reserve_slot, session_factory, section.id, user.id, bike.id) for user, bike in drivers]
    )

    winners = [value for kind, value in results if kind == "ok"]
    losers = [value for kind, value in results if kind == "error"]
    assert len(winners) == 3
    assert sorted(r.spot_number for r in winners) == ["M-1", "M-2", "M-3"]
    assert len(losers) == 5
    assert all(isinstance(e, CapacityExceeded) for e in losers)
    assert _counters(db, section.id) == (3, 0, 0)


# --- attendant assignment ---


def test_attendant_assigns_named_spot_without_balance_check(db, build):
    _, section = build.motorcycle_section(capacity=3)
    user = build.user()
    bike = build.vehicle(user.id, "motorcycle")
    attendant = _attendant(build)

    receipt = capacity_service.assign_motorcycle_spot(
        db, actor=attendant, section_id=section.id, spot_number="M-3", user_id=user.id, vehicle_id=bike.id
    )

    assert receipt.spot_number == "M-3"
    assert receipt.booking_status == "reserved"
    assert _counters(db, section.id) == (1, 0, 0)
    with pytest.raises(ActiveReservationExists):
        capacity_service.assign_motorcycle_spot(
            db, actor=attendant, section_id=section.id, spot_number=1, user_id=user.id, vehicle_id=bike.id
        )


def test_assignment_needs_privileged_role(db, build):
    _, section = build.motorcycle_section()
    user, bike = build.driver(vehicle_type="motorcycle")
    with pytest.raises(Unauthorized):
        capacity_service.assign_motorcycle_spot(
            db,
            actor=Identity(user.id),
            section_id=section.id,
            spot_number="M-1",
            user_id=user.id,
            vehicle_id=bike.id,
        )


def test_guest_is_parked_immediately(db, build, hub):
    _, _, spot = build.car_spot()
    attendant = _attendant(build)
    guest = GuestDetails(first_name="Walk", last_name="In", plate_number="xyz 123", vehicle_type="car")

    receipt = capacity_service.assign_spot_guest(db, actor=attendant, guest=guest, spot_id=spot.id, hub=hub)

    assert receipt.booking_status == "active"
    assert _spot_status(db, spot.id) == "occupied"
    guest_user = db.get(User, receipt.user_id)
    assert guest_user.role == ROLE_GUEST
    assert guest_user.email.endswith("@guest.local")
    booking = db.query(GuestBooking).one()
    assert booking.attendant_id == attendant.user_id
    assert booking.reservation_id == receipt.reservation_id
    assert db.query(Vehicle).filter(Vehicle.plate_number == "XYZ 123").count() == 1
    assert hub.types() == ["reservation:updated", "spots:updated"]
    assert hub.events[1].status == "occupied"


def test_returning_guest_reuses_vehicle(db, build):
    _, section = build.motorcycle_section(capacity=2)
    attendant = _attendant(build)
    guest = GuestDetails(first_name="Walk", last_name="In", plate_number="MC-1", vehicle_type="motorcycle")

    first = capacity_service.assign_spot_guest(db, actor=attendant, guest=guest, section_id=section.id)
    assert _counters(db, section.id) == (0, 1, 0)
    capacity_service.release_spot(db, actor=attendant, section_id=section.id, spot_number=first.spot_number)
    second = capacity_service.assign_spot_guest(db, actor=attendant, guest=guest, section_id=section.id)

    assert second.user_id == first.user_id
    assert db.query(Vehicle).filter(Vehicle.plate_number == "MC-1").count() == 1
    assert _counters(db, section.id) == (0, 1, 0)


def test_guest_with_registered_plate_is_a_separate_user(db, build):
    _, section, spot = build.car_spot()
    other_spot = build.spot(section.id, "A-2")
    driver, car = build.driver(hours=5)
    second_car = build.vehicle(driver.id, plate="REG-1")
    held = capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=driver.id, vehicle_id=car.id)
    attendant = _attendant(build)
    guest = GuestDetails(first_name="Walk", last_name="In", plate_number="reg-1", vehicle_type="car")

    receipt = capacity_service.assign_spot_guest(db, actor=attendant, guest=guest, spot_id=other_spot.id)
    end_session(db, actor=attendant, reservation_id=receipt.reservation_id)

    assert receipt.user_id != driver.id
    assert db.get(User, receipt.user_id).role == ROLE_GUEST
    assert db.get(Reservation, receipt.reservation_id).vehicle_id == second_car.id
    holding = db.query(Reservation).filter(
        Reservation.user_id == driver.id, Reservation.booking_status.in_(["reserved", "active"])
    )
    assert [r.id for r in holding] == [held.reservation_id]
    assert db.get(User, driver.id, populate_existing=True).hour_balance == pytest.approx(5)


def test_guest_plate_already_parked_is_refused(db, build):
    _, section, spot = build.car_spot()
    other_spot = build.spot(section.id, "A-2")
    driver, car = build.driver()
    held = capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=driver.id, vehicle_id=car.id)
    guest = GuestDetails(first_name="Walk", last_name="In", plate_number=car.plate_number, vehicle_type="car")

    with pytest.raises(ActiveReservationExists) as exc:
        capacity_service.assign_spot_guest(db, actor=_attendant(build), guest=guest, spot_id=other_spot.id)

    assert exc.value.data["reservation_id"] == held.reservation_id
    assert _spot_status(db, other_spot.id) == "available"


def test_guest_assignment_needs_privileged_role(db, build):
    _, _, spot = build.car_spot()
    user = build.user()
    guest = GuestDetails(first_name="A", last_name="B", plate_number="P1", vehicle_type="car")
    with pytest.raises(Unauthorized):
        capacity_service.assign_spot_guest(db, actor=Identity(user.id), guest=guest, spot_id=spot.id)


# --- release ---


def test_release_reserved_spot_cancels_it(db, build, hub):
    _, _, spot = build.car_spot()
    user, vehicle = build.driver()
    receipt = capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)

    result = capacity_service.release_spot(db, actor=Identity(user.id), spot_id=spot.id, hub=hub)

    assert result.released
    assert result.reservation_id == receipt.reservation_id
    assert result.booking_status == "cancelled"
    assert result.charged_hours == 0
    assert _spot_status(db, spot.id) == "available"
    assert hub.events[0].source == "release"

    again = capacity_service.release_spot(db, actor=Identity(user.id), spot_id=spot.id)
    assert not again.released
    assert _spot_status(db, spot.id) == "available"


def test_releasing_a_section_slot_twice_decrements_once(db, build):
    _, section = build.motorcycle_section()
    user, bike = build.driver(vehicle_type="motorcycle")
    other, other_bike = build.driver(vehicle_type="motorcycle")
    capacity_service.reserve_section_slot(db, section_id=section.id, user_id=other.id, vehicle_id=other_bike.id)
    receipt = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=bike.id)
    assert _counters(db, section.id) == (2, 0, 0)

    first = capacity_service.release_spot(
        db, actor=Identity(user.id), section_id=section.id, spot_number=receipt.spot_number
    )
    second = capacity_service.release_spot(
        db, actor=Identity(user.id), section_id=section.id, spot_number=receipt.spot_number
    )

    assert first.released
    assert not second.released
    assert _counters(db, section.id) == (1, 0, 0)


def test_release_active_session_bills_it(db, build):
    _, section = build.motorcycle_section()
    user, bike = build.driver(hours=2, vehicle_type="motorcycle")
    receipt = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=bike.id)
    start_session(db, actor=Identity(user.id), qr_key=receipt.qr_key)
    assert _counters(db, section.id) == (0, 1, 0)

    result = capacity_service.release_spot(
        db, actor=Identity(user.id), section_id=section.id, spot_number=receipt.spot_number
    )

    assert result.booking_status == "completed"
    assert result.charged_hours == pytest.approx(1 / 60)
    assert _counters(db, section.id) == (0, 0, 0)
    assert db.get(User, user.id, populate_existing=True).hour_balance == pytest.approx(2 - 1 / 60)


def test_release_of_someone_elses_reservation(db, build):
    _, _, spot = build.car_spot()
    user, vehicle = build.driver()
    stranger = build.user()
    capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)

    with pytest.raises(Unauthorized):
        capacity_service.release_spot(db, actor=Identity(stranger.id), spot_id=spot.id)
    assert _spot_status(db, spot.id) == "reserved"

    result = capacity_service.release_spot(db, actor=Identity(stranger.id, ROLE_ADMIN), spot_id=spot.id)
    assert result.released


# --- manual availability ---


def test_spot_withdrawn_and_restored(db, build, hub):
    _, _, spot = build.car_spot()
    attendant = _attendant(build)
    user, vehicle = build.driver()

    change = capacity_service.set_unavailable(
        db, actor=attendant, target=StatusTarget(spot_id=spot.id), reason="repainting", hub=hub
    )
    assert change.changed
    assert _spot_status(db, spot.id) == "unavailable"
    assert hub.types() == ["spots:updated"]
    again = capacity_service.set_unavailable(db, actor=attendant, target=StatusTarget(spot_id=spot.id))
    assert not again.changed

    with pytest.raises(SpotUnavailable):
        capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)

    capacity_service.set_available(db, actor=attendant, target=StatusTarget(spot_id=spot.id))
    assert _spot_status(db, spot.id) == "available"
    capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)


def test_held_spot_cannot_be_withdrawn(db, build):
    _, _, spot = build.car_spot()
    user, vehicle = build.driver()
    capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)
    with pytest.raises(SpotUnavailable):
        capacity_service.set_unavailable(db, actor=_attendant(build), target=StatusTarget(spot_id=spot.id))
    assert _spot_status(db, spot.id) == "reserved"


def test_status_changes_need_privileged_role(db, build):
    _, _, spot = build.car_spot()
    user = build.user()
    with pytest.raises(Unauthorized):
        capacity_service.set_unavailable(db, actor=Identity(user.id), target=StatusTarget(spot_id=spot.id))


def test_withdrawn_virtual_spot_is_skipped_by_allocation(db, build):
    _, section = build.motorcycle_section(capacity=3)
    attendant = _attendant(build)
    a_user, a_bike = build.driver(vehicle_type="motorcycle")
    b_user, b_bike = build.driver(vehicle_type="motorcycle")

    capacity_service.set_unavailable(
        db, actor=attendant, target=StatusTarget(section_id=section.id, spot_number="M-1"), reason="oil"
    )
    assert _counters(db, section.id) == (0, 0, 1)

    first = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=a_user.id, vehicle_id=a_bike.id)
    second = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=b_user.id, vehicle_id=b_bike.id)
    assert (first.spot_number, second.spot_number) == ("M-2", "M-3")

    listing = capacity_service.list_section_spots(db, section.id, user_id=a_user.id)
    by_label = {s["spot_number"]: s for s in listing["spots"]}
    assert by_label["M-1"]["status"] == "unavailable"
    assert by_label["M-1"]["reason"] == "oil"
    assert by_label["M-2"]["is_mine"]
    assert by_label["M-3"]["status"] == "reserved"
    assert not by_label["M-3"]["is_mine"]

    capacity_service.set_available(db, actor=attendant, target=StatusTarget(section_id=section.id, spot_number=1))
    assert _counters(db, section.id) == (2, 0, 0)
    assert db.query(CapacitySpotStatus).count() == 0


def test_held_virtual_spot_cannot_be_withdrawn(db, build):
    _, section = build.motorcycle_section(capacity=2)
    attendant = _attendant(build)
    for _ in range(2):
        user, bike = build.driver(vehicle_type="motorcycle")
        capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=bike.id)

    with pytest.raises(SpotUnavailable):
        capacity_service.set_unavailable(db, actor=attendant, target=StatusTarget(section_id=section.id, spot_number="M-1"))
    capacity_service.release_spot(db, actor=attendant, section_id=section.id, spot_number="M-2")
    capacity_service.set_unavailable(db, actor=attendant, target=StatusTarget(section_id=section.id, spot_number="M-2"))
    assert _counters(db, section.id) == (1, 0, 1)


def test_closed_section_refuses_bookings(db, build, hub):
    area, section = build.motorcycle_section()
    user, bike = build.driver(vehicle_type="motorcycle")
    attendant = _attendant(build)

    capacity_service.set_unavailable(db, actor=attendant, target=StatusTarget(section_id=section.id), hub=hub)
    assert hub.types() == ["capacity:updated"]
    with pytest.raises(SpotUnavailable):
        capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=bike.id)
    status = capacity_service.get_capacity_status(db, area.id)
    assert status["sections"][0]["available_capacity"] == 0

    capacity_service.set_available(db, actor=attendant, target=StatusTarget(section_id=section.id))
    capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=bike.id)


# --- read models ---


def test_capacity_status_shows_counters_and_my_reservation(db, build):
    area, section = build.motorcycle_section(capacity=4)
    user, bike = build.driver(vehicle_type="motorcycle")
    receipt = capacity_service.reserve_section_slot(db, section_id=section.id, user_id=user.id, vehicle_id=bike.id)

    status = capacity_service.get_capacity_status(db, area.id, user_id=user.id)

    assert status["area_id"] == area.id
    row = status["sections"][0]
    assert row["total_capacity"] == 4
    assert row["reserved_count"] == 1
    assert row["available_capacity"] == 3
    assert status["my_reservation"]["reservation_id"] == receipt.reservation_id

    other = capacity_service.get_capacity_status(db, area.id, user_id=build.user().id)
    assert other["my_reservation"] is None


def test_capacity_status_for_spot_sections(db, build):
    area, section, spot = build.car_spot()
    build.spot(section.id, "A-2")
    user, vehicle = build.driver()
    capacity_service.reserve_individual_spot(db, spot_id=spot.id, user_id=user.id, vehicle_id=vehicle.id)

    row = capacity_service.get_capacity_status(db, area.id, user_id=user.id)["sections"][0]
    assert row["spot_count"] == 2
    assert row["available_spots"] == 1

    listing = capacity_service.list_section_spots(db, section.id, user_id=user.id)
    assert [s["status"] for s in listing["spots"]] == ["reserved", "available"]
    assert listing["spots"][0]["is_mine"]


def test_unknown_area(db):
    with pytest.raises(NotFound):
        capacity_service.get_capacity_status(db, 12345)
