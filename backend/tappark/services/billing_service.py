"""
Hour balance engine: FIFO deduction across subscriptions, penalties for shortfalls, and the
top-up path that settles outstanding penalties from newly purchased hours.

charge_user runs inside the caller's transaction and never commits. Lock order is
user row -> subscription rows (-> penalty rows on top-up); every writer follows it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from tappark.core.clock import utcnow
from tappark.core.constants import (
    ACTION_SUBSCRIPTION_PURCHASED,
    HOURS_EPSILON,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_EXHAUSTED,
)
from tappark.core.errors import BookingNotAllowed, InvariantViolation, UserNotFound
from tappark.db.session import transaction
from tappark.models.penalty import Penalty
from tappark.models.penalty_settlement import PenaltySettlement
from tappark.models.subscription import Subscription
from tappark.models.user import User
from tappark.services.user_log_service import log_user_activity

logger = logging.getLogger(__name__)


@dataclass
class Deduction:
    subscription_id: int
    hours: float


@dataclass
class ChargeResult:
    user_id: int
    charged_hours: float
    deductions: list[Deduction] = field(default_factory=list)
    penalty_hours: float = 0.0
    penalty_id: int | None = None
    new_balance: float = 0.0

    @property
    def deducted_hours(self) -> float:
        return sum(d.hours for d in self.deductions)


@dataclass
class Eligibility:
    allowed: bool
    reason: str | None
    outstanding_penalty: float
    balance_hours: float


@dataclass
class TopUpResult:
    subscription_id: int
    hours_purchased: float
    penalty_applied_hours: float
    hours_credited: float
    outstanding_penalty_hours: float
    new_balance: float


def _lock_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).populate_existing().with_for_update().one_or_none()
    if user is None:
        raise UserNotFound(user_id=user_id)
    return user


def recompute_hour_balance(db: Session, user_id: int) -> float:
    """Persist users.hour_balance = SUM(hours_remaining) over active subscriptions. Derived, never adjusted."""
    total = (
        db.query(func.coalesce(func.sum(Subscription.hours_remaining), 0.0))
        .filter(Subscription.user_id == user_id, Subscription.status == SUBSCRIPTION_ACTIVE)
        .scalar()
    )
    balance = float(total or 0.0)
    updated = db.query(User).filter(User.id == user_id).update(
        {User.hour_balance: balance}, synchronize_session="fetch"
    )
    if not updated:
        raise UserNotFound(user_id=user_id)
    return balance


def charge_user(db: Session, user_id: int, charge_hours: float, *, reservation_id: int | None = None) -> ChargeResult:
    """
    Deduct charge_hours from the user's active subscriptions, oldest purchase first.

    Each subscription gives min(remaining charge, hours_remaining); whatever no subscription
    covers becomes one Penalty row. The balance is recomputed from the subscriptions afterwards.
    Full precision is stored; rounding is for display only.
    """
    if charge_hours is None or charge_hours < 0:
        raise InvariantViolation("charge_hours must be non-negative", user_id=user_id, charge_hours=charge_hours)

    _lock_user(db, user_id)
    subscriptions = (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == SUBSCRIPTION_ACTIVE,
            Subscription.hours_remaining > 0,
        )
        .order_by(Subscription.purchase_date.asc(), Subscription.id.asc())
        .with_for_update()
        .all()
    )

    result = ChargeResult(user_id=user_id, charged_hours=float(charge_hours))
    remaining = float(charge_hours)
    for sub in subscriptions:
        if remaining <= HOURS_EPSILON:
            break
        available = max(0.0, float(sub.hours_remaining or 0.0))
        deduct = min(remaining, available)
        if deduct <= 0:
            continue
        sub.hours_remaining = max(0.0, available - deduct)
        sub.hours_used = float(sub.hours_used or 0.0) + deduct
        if sub.hours_remaining <= 0:
            sub.status = SUBSCRIPTION_EXHAUSTED
        remaining -= deduct
        result.deductions.append(Deduction(subscription_id=sub.id, hours=deduct))

    if remaining > HOURS_EPSILON:
        penalty = Penalty(user_id=user_id, penalty_time=remaining, reservation_id=reservation_id)
        db.add(penalty)
        db.flush()
        result.penalty_hours = remaining
        result.penalty_id = penalty.id
    else:
        db.flush()

    result.new_balance = recompute_hour_balance(db, user_id)
    logger.debug(
        "Charged user %s %.4fh: deducted=%.4fh penalty=%.4fh balance=%.4fh",
        user_id,
        result.charged_hours,
        result.deducted_hours,
        result.penalty_hours,
        result.new_balance,
    )
    return result


def _settled_by_penalty(db: Session, penalty_ids: list[int]) -> dict[int, float]:
    if not penalty_ids:
        return {}
    rows = (
        db.query(PenaltySettlement.penalty_id, func.coalesce(func.sum(PenaltySettlement.hours), 0.0))
        .filter(PenaltySettlement.penalty_id.in_(penalty_ids))
        .group_by(PenaltySettlement.penalty_id)
        .all()
    )
    return {pid: float(total or 0.0) for pid, total in rows}


def get_outstanding_penalty_hours(db: Session, user_id: int) -> float:
    total_penalty = (
        db.query(func.coalesce(func.sum(Penalty.penalty_time), 0.0)).filter(Penalty.user_id == user_id).scalar()
    )
    total_settled = (
        db.query(func.coalesce(func.sum(PenaltySettlement.hours), 0.0))
        .join(Penalty, Penalty.id == PenaltySettlement.penalty_id)
        .filter(Penalty.user_id == user_id)
        .scalar()
    )
    outstanding = float(total_penalty or 0.0) - float(total_settled or 0.0)
    return outstanding if outstanding > HOURS_EPSILON else 0.0


def get_booking_eligibility(db: Session, user_id: int) -> Eligibility:
    """Users with unpaid penalty hours or no remaining subscription hours may not reserve."""
    outstanding = get_outstanding_penalty_hours(db, user_id)
    if outstanding > 0:
        return Eligibility(allowed=False, reason="penalty", outstanding_penalty=outstanding, balance_hours=0.0)
    balance = (
        db.query(func.coalesce(func.sum(Subscription.hours_remaining), 0.0))
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == SUBSCRIPTION_ACTIVE,
            Subscription.hours_remaining > 0,
        )
        .scalar()
    )
    balance = float(balance or 0.0)
    if balance <= HOURS_EPSILON:
        return Eligibility(allowed=False, reason="insufficient_balance", outstanding_penalty=0.0, balance_hours=balance)
    return Eligibility(allowed=True, reason=None, outstanding_penalty=0.0, balance_hours=balance)


def require_booking_eligibility(db: Session, user_id: int) -> Eligibility:
    eligibility = get_booking_eligibility(db, user_id)
    if eligibility.allowed:
        return eligibility
    if eligibility.reason == "penalty":
        raise BookingNotAllowed(
            f"You have {eligibility.outstanding_penalty:.2f} penalty hours outstanding. "
            "Please purchase a plan to settle them before reserving again.",
            code="OUTSTANDING_PENALTY",
            outstanding_penalty=eligibility.outstanding_penalty,
        )
    raise BookingNotAllowed(
        "You have no remaining subscription hours. Please purchase a plan before reserving a spot.",
        code="INSUFFICIENT_BALANCE",
        balance_hours=eligibility.balance_hours,
    )


def add_subscription(
    db: Session,
    user_id: int,
    hours: float,
    purchase_date: datetime | None = None,
) -> TopUpResult:
    """
    Credit a purchased block of hours (called by the payment capture path).
    Outstanding penalties are paid first, oldest first, out of the new hours; the subscription
    records the settled part as hours_used so remaining + used == purchased.
    """
    if hours is None or hours <= 0:
        raise InvariantViolation("purchased hours must be positive", user_id=user_id, hours=hours)

    with transaction(db):
        _lock_user(db, user_id)
        sub = Subscription(
            user_id=user_id,
            purchase_date=purchase_date or utcnow(),
            hours_purchased=float(hours),
            hours_remaining=float(hours),
            hours_used=0.0,
            status=SUBSCRIPTION_ACTIVE,
        )
        db.add(sub)
        db.flush()

        penalties = (
            db.query(Penalty)
            .filter(Penalty.user_id == user_id)
            .order_by(Penalty.created_at.asc(), Penalty.id.asc())
            .with_for_update()
            .all()
        )
        settled = _settled_by_penalty(db, [p.id for p in penalties])
        credit = float(hours)
        applied = 0.0
        for penalty in penalties:
            if credit <= HOURS_EPSILON:
                break
            outstanding = float(penalty.penalty_time) - settled.get(penalty.id, 0.0)
            if outstanding <= HOURS_EPSILON:
                continue
            pay = min(credit, outstanding)
            db.add(PenaltySettlement(penalty_id=penalty.id, subscription_id=sub.id, hours=pay))
            credit -= pay
            applied += pay

        sub.hours_remaining = max(0.0, float(hours) - applied)
        sub.hours_used = applied
        if sub.hours_remaining <= 0:
            sub.status = SUBSCRIPTION_EXHAUSTED
        db.flush()

        new_balance = recompute_hour_balance(db, user_id)
        outstanding_after = get_outstanding_penalty_hours(db, user_id)
        log_user_activity(
            db,
            user_id,
            ACTION_SUBSCRIPTION_PURCHASED,
            f"Purchased {hours:g} hours; {applied:.4f} hours applied to outstanding penalties",
            target_id=sub.id,
        )
        subscription_id = sub.id

    logger.info(
        "Subscription %s for user %s: %.4fh purchased, %.4fh settled penalties, balance=%.4fh",
        subscription_id,
        user_id,
        hours,
        applied,
        new_balance,
    )
    return TopUpResult(
        subscription_id=subscription_id,
        hours_purchased=float(hours),
        penalty_applied_hours=applied,
        hours_credited=max(0.0, float(hours) - applied),
        outstanding_penalty_hours=outstanding_after,
        new_balance=new_balance,
    )


def get_balance_summary(db: Session, user_id: int) -> dict:
    user = db.query(User).filter(User.id == user_id).one_or_none()
    if user is None:
        raise UserNotFound(user_id=user_id)
    subs = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.purchase_date.asc(), Subscription.id.asc())
        .all()
    )
    return {
        "user_id": user_id,
        "hour_balance": float(user.hour_balance or 0.0),
        "outstanding_penalty_hours": get_outstanding_penalty_hours(db, user_id),
        "subscriptions": [
            {
                "id": s.id,
                "purchase_date": s.purchase_date.isoformat() if s.purchase_date else None,
                "hours_purchased": s.hours_purchased,
                "hours_remaining": s.hours_remaining,
                "hours_used": s.hours_used,
                "status": s.status,
            }
            for s in subs
        ],
    }
