"""
Recompute denormalized counters from the rows they summarize and report (optionally fix) drift.

- section.reserved_count / parked_count: reserved / active reservations on the section
- section.unavailable_count: manual unavailable rows for the section's virtual spots
- spot.status / is_occupied: from the holding reservation (staff-withdrawn spots are left alone)
- user.hour_balance: SUM(hours_remaining) over active subscriptions
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.orm import Session

from tappark.core.constants import (
    BOOKING_ACTIVE,
    BOOKING_RESERVED,
    HOLDING_STATUSES,
    HOURS_EPSILON,
    SECTION_MODE_CAPACITY,
    SPOT_AVAILABLE,
    SPOT_OCCUPIED,
    SPOT_RESERVED,
    SPOT_UNAVAILABLE,
    SUBSCRIPTION_ACTIVE,
)
from tappark.db.session import transaction
from tappark.models.parking_section import ParkingSection
from tappark.models.parking_spot import ParkingSpot
from tappark.models.reservation import Reservation
from tappark.models.subscription import Subscription
from tappark.models.user import User
from tappark.services import occupancy
from tappark.services.billing_service import _lock_user
from tappark.services.slot_allocation import taken_numbers

logger = logging.getLogger(__name__)


@dataclass
class Drift:
    entity: str
    entity_id: int
    field: str
    stored: object
    expected: object

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "id": self.entity_id,
            "field": self.field,
            "stored": self.stored,
            "expected": self.expected,
        }


@dataclass
class ReconcileReport:
    fixed: bool
    drifts: list[Drift] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.drifts

    def to_dict(self) -> dict:
        return {"fixed": self.fixed, "clean": self.clean, "drifts": [d.to_dict() for d in self.drifts]}


def _count(db: Session, section_id: int, status: str) -> int:
    return (
        db.query(func.count(Reservation.id))
        .filter(Reservation.parking_section_id == section_id, Reservation.booking_status == status)
        .scalar()
        or 0
    )


def reconcile_section(db: Session, section: ParkingSection, fix: bool = False) -> list[Drift]:
    if section.section_mode == SECTION_MODE_CAPACITY:
        labels = occupancy.manual_unavailable_labels(db, section.id)
        unavailable = len(taken_numbers(labels, section.section_name, section.total_capacity or 0))
    else:
        unavailable = section.unavailable_count or 0
    expected = {
        "reserved_count": _count(db, section.id, BOOKING_RESERVED),
        "parked_count": _count(db, section.id, BOOKING_ACTIVE),
        "unavailable_count": unavailable,
    }
    drifts = []
    for name, value in expected.items():
        stored = getattr(section, name) or 0
        if stored != value:
            drifts.append(Drift("section", section.id, name, stored, value))
            if fix:
                setattr(section, name, value)
    return drifts


def reconcile_spot(db: Session, spot: ParkingSpot, fix: bool = False) -> list[Drift]:
    if spot.status == SPOT_UNAVAILABLE:
        return []
    holding = (
        db.query(Reservation.booking_status)
        .filter(Reservation.parking_spot_id == spot.id, Reservation.booking_status.in_(HOLDING_STATUSES))
        .first()
    )
    if holding is None:
        expected_status = SPOT_AVAILABLE
    elif holding[0] == BOOKING_ACTIVE:
        expected_status = SPOT_OCCUPIED
    else:
        expected_status = SPOT_RESERVED
    expected_occupied = expected_status == SPOT_OCCUPIED

    drifts = []
    if spot.status != expected_status:
        drifts.append(Drift("spot", spot.id, "status", spot.status, expected_status))
        if fix:
            spot.status = expected_status
    if bool(spot.is_occupied) != expected_occupied:
        drifts.append(Drift("spot", spot.id, "is_occupied", bool(spot.is_occupied), expected_occupied))
        if fix:
            spot.is_occupied = expected_occupied
    return drifts


def reconcile_user_balance(db: Session, user: User, fix: bool = False) -> list[Drift]:
    """The user row must be locked before the SUM is read, or a concurrent charge could be overwritten."""
    expected = float(
        db.query(func.coalesce(func.sum(Subscription.hours_remaining), 0.0))
        .filter(Subscription.user_id == user.id, Subscription.status == SUBSCRIPTION_ACTIVE)
        .scalar()
        or 0.0
    )
    stored = float(user.hour_balance or 0.0)
    if abs(stored - expected) <= HOURS_EPSILON:
        return []
    if fix:
        user.hour_balance = expected
    return [Drift("user", user.id, "hour_balance", stored, expected)]


def reconcile_all(db: Session, fix: bool = True) -> ReconcileReport:
    """
    Walk every section, spot and user. With fix=True the corrections commit in one transaction
    that holds the section, spot and user rows locked (in that order); otherwise nothing is written.
    """
    report = ReconcileReport(fixed=fix)
    with transaction(db):
        sections = db.query(ParkingSection).order_by(ParkingSection.id).populate_existing().with_for_update().all()
        for section in sections:
            report.drifts.extend(reconcile_section(db, section, fix))
        spots = db.query(ParkingSpot).order_by(ParkingSpot.id).populate_existing().with_for_update().all()
        for spot in spots:
            report.drifts.extend(reconcile_spot(db, spot, fix))
        user_ids = [user_id for (user_id,) in db.query(User.id).order_by(User.id).all()]
        for user_id in user_ids:
            user = _lock_user(db, user_id)
            report.drifts.extend(reconcile_user_balance(db, user, fix))

    if report.drifts:
        logger.warning("Reconcile found %s drifted values (fixed=%s)", len(report.drifts), fix)
        for d in report.drifts:
            logger.info("Drift %s %s.%s: stored=%s expected=%s", d.entity, d.entity_id, d.field, d.stored, d.expected)
    else:
        logger.info("Reconcile: counters and balances consistent")
    return report
