"""
Grace-period sweep: reservations still 'reserved' (never checked in) GRACE_PERIOD_MINUTES after
their time_stamp become 'invalid', free their spot or section unit, and bill the wait.

Runs every GRACE_CHECK_INTERVAL_MS from the BackgroundScheduler plus once on startup. A tick that
finds the previous one still running returns immediately. Each reservation is its own short
transaction (row re-read FOR UPDATE, so a check-in that got there first wins); events go out
only after that transaction commits. One failing reservation never stops the rest of the batch.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from tappark.core.clock import as_utc, hours_between, utcnow
from tappark.core.constants import (
    ACTION_RESERVATION_EXPIRED,
    BOOKING_INVALID,
    BOOKING_RESERVED,
    SOURCE_GRACE_CHECKER,
    SPOT_AVAILABLE,
)
from tappark.core.errors import InvariantViolation, TransientStoreError
from tappark.db.session import SessionLocal, set_local_timeouts, transaction
from tappark.models.reservation import Reservation
from tappark.realtime.events import RealtimeEvent
from tappark.services import occupancy
from tappark.services.billing_service import charge_user
from tappark.services.user_log_service import log_user_activity

logger = logging.getLogger(__name__)

# In-memory heartbeat, read by /health
_hb_lock = threading.Lock()
_hb: dict = {
    "last_started_at": None,
    "last_finished_at": None,
    "last_found": None,
    "last_expired": None,
    "last_failed": None,
    "last_error": None,
    "is_running": False,
    "skipped_ticks": 0,
    "total_expired": 0,
}


def set_grace_job_heartbeat(**values) -> None:
    with _hb_lock:
        for key, value in values.items():
            if key in _hb:
                _hb[key] = value


def _bump_heartbeat(key: str, by: int = 1) -> None:
    with _hb_lock:
        _hb[key] = (_hb.get(key) or 0) + by


def get_grace_job_heartbeat() -> dict:
    with _hb_lock:
        out = dict(_hb)
    for key in ("last_started_at", "last_finished_at"):
        if out[key] is not None:
            out[key] = out[key].isoformat()
    return out


class RunGuard:
    """At most one sweep at a time per process. try_acquire never blocks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def running(self) -> bool:
        return self._lock.locked()


@dataclass
class SweepResult:
    skipped: bool = False
    found: int = 0
    expired: int = 0
    failed: int = 0
    raced: int = 0  # no longer reserved by the time we locked it
    expired_ids: list[int] = field(default_factory=list)


class GracePeriodSweeper:
    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        hub=None,
        guard: RunGuard | None = None,
        grace_period_minutes: int = 15,
        charge: Callable = charge_user,
        transaction_timeout_ms: int = 5000,
        batch_limit: int = 500,
    ):
        self._session_factory = session_factory
        self._hub = hub
        self._guard = guard or RunGuard()
        self.grace_period = timedelta(minutes=grace_period_minutes)
        self._charge = charge
        self.transaction_timeout_ms = transaction_timeout_ms
        self.batch_limit = batch_limit

    @property
    def guard(self) -> RunGuard:
        return self._guard

    def _find_expired(self, cutoff: datetime) -> list[int]:
        db = self._session_factory()
        try:
            rows = (
                db.query(Reservation.id)
                .filter(
                    Reservation.booking_status == BOOKING_RESERVED,
                    Reservation.start_time.is_(None),
                    Reservation.time_stamp <= cutoff,
                )
                .order_by(Reservation.time_stamp.asc(), Reservation.id.asc())
                .limit(self.batch_limit)
                .all()
            )
            return [r[0] for r in rows]
        finally:
            db.close()

    def _expire_one(self, reservation_id: int, now: datetime) -> list[RealtimeEvent] | None:
        """Expire one reservation in its own transaction. None when it no longer qualifies."""
        db = self._session_factory()
        try:
            with transaction(db):
                set_local_timeouts(db, self.transaction_timeout_ms)
                reservation = occupancy.lock_reservation(db, reservation_id=reservation_id)
                if reservation.booking_status != BOOKING_RESERVED or reservation.start_time is not None:
                    return None
                time_stamp = as_utc(reservation.time_stamp)
                if time_stamp is None:
                    raise InvariantViolation("reserved reservation without time_stamp", reservation_id=reservation_id)
                if time_stamp > now - self.grace_period:
                    return None

                wait_hours = max(0.0, hours_between(time_stamp, now))
                if reservation.parking_spot_id is not None:
                    occupancy.lock_spot(db, reservation.parking_spot_id)
                elif reservation.parking_section_id is not None:
                    occupancy.lock_section(db, reservation.parking_section_id)
                occupancy.release_reservation_target(db, reservation, occupancy.RESERVED_COUNTER)

                reservation.booking_status = BOOKING_INVALID
                reservation.waiting_end_time = now
                reservation.end_time = now
                self._charge(db, reservation.user_id, wait_hours, reservation_id=reservation.id)
                log_user_activity(
                    db,
                    reservation.user_id,
                    ACTION_RESERVATION_EXPIRED,
                    f"Reservation at {reservation.spot_number} expired after {wait_hours:.2f} hours without check-in",
                    target_id=reservation.id,
                )
                db.flush()
                area_id = occupancy.area_id_for(db, reservation)
                events = occupancy.events_for(reservation, area_id, SPOT_AVAILABLE, SOURCE_GRACE_CHECKER)
            return events
        finally:
            db.close()

    def run_sweep(self, now: datetime | None = None) -> SweepResult:
        if not self._guard.try_acquire():
            _bump_heartbeat("skipped_ticks")
            logger.debug("Grace period sweep still running; skipping this tick")
            return SweepResult(skipped=True)

        result = SweepResult()
        try:
            now = as_utc(now) if now is not None else utcnow()
            set_grace_job_heartbeat(last_started_at=now, is_running=True)
            ids = self._find_expired(now - self.grace_period)
            result.found = len(ids)
            for reservation_id in ids:
                try:
                    events = self._expire_one(reservation_id, now)
                except InvariantViolation as e:
                    result.failed += 1
                    logger.error("Invariant violated expiring reservation %s: %s %s", reservation_id, e.message, e.data)
                    continue
                except TransientStoreError as e:
                    result.failed += 1
                    logger.warning("Reservation %s locked or store unavailable, retrying next tick: %s", reservation_id, e)
                    continue
                except Exception as e:
                    result.failed += 1
                    set_grace_job_heartbeat(last_error=str(e))
                    logger.exception("Failed to expire reservation %s", reservation_id)
                    continue
                if events is None:
                    result.raced += 1
                    continue
                result.expired += 1
                result.expired_ids.append(reservation_id)
                occupancy.publish_all(self._hub, events)

            if result.found:
                logger.info(
                    "Grace period sweep: found=%s expired=%s failed=%s raced=%s",
                    result.found,
                    result.expired,
                    result.failed,
                    result.raced,
                )
            else:
                logger.debug("Grace period sweep: nothing to expire")
        finally:
            set_grace_job_heartbeat(
                last_finished_at=utcnow(),
                is_running=False,
                last_found=result.found,
                last_expired=result.expired,
                last_failed=result.failed,
            )
            _bump_heartbeat("total_expired", result.expired)
            self._guard.release()
        return result


_sweeper: GracePeriodSweeper | None = None
_sweeper_lock = threading.Lock()


def get_sweeper() -> GracePeriodSweeper:
    global _sweeper
    with _sweeper_lock:
        if _sweeper is None:
            from tappark.config import settings
            from tappark.realtime.hub import get_hub

            _sweeper = GracePeriodSweeper(
                session_factory=SessionLocal,
                hub=get_hub(),
                grace_period_minutes=settings.grace_period_minutes,
                transaction_timeout_ms=settings.sweep_transaction_timeout_ms,
                batch_limit=settings.sweep_batch_limit,
            )
        return _sweeper


def run_grace_period_job() -> None:
    """Scheduler entrypoint."""
    get_sweeper().run_sweep()
