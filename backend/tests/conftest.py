"""
Shared fixtures: a fresh SQLite file database per test, a recording hub, data builders, JWTs.
Environment is set before anything from tappark is imported (settings are read at import).
"""
import itertools
import os
import random
import threading
import time
from datetime import timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SWEEPER_ENABLED"] = "false"
TEST_JWT_SECRET = "tappark-test-secret-0123456789abcdef"
os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["JWT_ALGORITHM"] = "HS256"

import jwt  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import tappark.models  # noqa: E402,F401
from tappark.core.clock import utcnow  # noqa: E402
from tappark.core.constants import (  # noqa: E402
    ROLE_USER,
    SECTION_MODE_CAPACITY,
    SECTION_MODE_SLOTS,
    SUBSCRIPTION_ACTIVE,
)
from tappark.core.errors import TapparkError, TransientStoreError  # noqa: E402
from tappark.db.base import Base  # noqa: E402
from tappark.db.session import make_engine  # noqa: E402
from tappark.models import ParkingArea, ParkingSection, ParkingSpot, Subscription, User, Vehicle  # noqa: E402
from tappark.services.billing_service import recompute_hour_balance  # noqa: E402

_seq = itertools.count(1)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'tappark.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class RecordingHub:
    """Stands in for RealtimeHub where only the published events matter."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def publish(self, event):
        with self._lock:
            self.events.append(event)

    def types(self):
        return [e.type.value for e in self.events]


@pytest.fixture
def hub():
    return RecordingHub()


class Builders:
    def __init__(self, db):
        self.db = db

    def user(self, role=ROLE_USER, hours=None) -> User:
        n = next(_seq)
        user = User(email=f"user{n}@campus.edu", first_name="Test", last_name=f"User{n}", role=role)
        self.db.add(user)
        self.db.commit()
        if hours:
            self.subscription(user.id, hours)
        return user

    def subscription(self, user_id, hours, *, days_ago=0, remaining=None) -> Subscription:
        sub = Subscription(
            user_id=user_id,
            purchase_date=utcnow() - timedelta(days=days_ago),
            hours_purchased=float(hours),
            hours_remaining=float(hours if remaining is None else remaining),
            hours_used=float(hours) - float(hours if remaining is None else remaining),
            status=SUBSCRIPTION_ACTIVE,
        )
        self.db.add(sub)
        self.db.flush()
        recompute_hour_balance(self.db, user_id)
        self.db.commit()
        return sub

    def vehicle(self, user_id, vehicle_type="car", plate=None) -> Vehicle:
        vehicle = Vehicle(user_id=user_id, plate_number=plate or f"ABC{next(_seq):04d}", vehicle_type=vehicle_type)
        self.db.add(vehicle)
        self.db.commit()
        return vehicle

    def area(self, name="Main Lot") -> ParkingArea:
        area = ParkingArea(name=name, location="Campus")
        self.db.add(area)
        self.db.commit()
        return area

    def section(self, area_id, name="A", *, mode=SECTION_MODE_SLOTS, vehicle_type="car", capacity=0) -> ParkingSection:
        section = ParkingSection(
            area_id=area_id,
            section_name=name,
            vehicle_type=vehicle_type,
            section_mode=mode,
            total_capacity=capacity,
        )
        self.db.add(section)
        self.db.commit()
        return section

    def spot(self, section_id, number="A-1", spot_type="car") -> ParkingSpot:
        spot = ParkingSpot(section_id=section_id, spot_number=number, spot_type=spot_type)
        self.db.add(spot)
        self.db.commit()
        return spot

    def car_spot(self):
        area = self.area()
        section = self.section(area.id, "A")
        spot = self.spot(section.id, "A-1")
        return area, section, spot

    def motorcycle_section(self, capacity=3, name="M"):
        area = self.area("Moto Lot")
        section = self.section(area.id, name, mode=SECTION_MODE_CAPACITY, vehicle_type="motorcycle", capacity=capacity)
        return area, section

    def driver(self, hours=10.0, vehicle_type="car"):
        """User with hours and one vehicle."""
        user = self.user(hours=hours)
        vehicle = self.vehicle(user.id, vehicle_type)
        return user, vehicle


@pytest.fixture
def build(db):
    return Builders(db)


def retry_transient(fn, attempts=60):
    """Run fn, retrying on TransientStoreError (SQLite 'database is locked' under thread contention)."""
    for _ in range(attempts):
        try:
            return ("ok", fn())
        except TransientStoreError:
            time.sleep(random.uniform(0.005, 0.03))
        except TapparkError as e:
            return ("error", e)
    raise AssertionError("operation kept failing with TransientStoreError")


def run_concurrently(fns):
    """Start every fn at the same moment on its own thread; return their (kind, value) results."""
    barrier = threading.Barrier(len(fns))
    results = [None] * len(fns)

    def worker(i, fn):
        barrier.wait()
        results[i] = retry_transient(fn)

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(fns)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


@pytest.fixture
def concurrently():
    return run_concurrently


def make_token(user_id, role=ROLE_USER, secret=TEST_JWT_SECRET):
    return jwt.encode({"sub": str(user_id), "role": role}, secret, algorithm="HS256")


@pytest.fixture
def auth_header():
    def _header(user_id, role=ROLE_USER):
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _header
