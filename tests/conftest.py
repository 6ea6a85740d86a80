# tests/conftest.py
"""Shared fixtures: a throwaway SQLite database per test, a controllable clock, and a recording sink."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import datetime, timedelta
from parkhub.database import Database
from parkhub.models.enums import SpaceStatus, VehicleClass
from parkhub.models.parking_space import ParkingSpace
from parkhub.services.change_feed import SpaceChangeFeed
from parkhub.services.lifecycle_service import SpaceLifecycleService
from parkhub.services.notification_emitter import NotificationEmitter, NotificationSink
from parkhub.services.space_store import SpaceStore

T0 = datetime(2026, 3, 1, 9, 0, 0)

SEED_SPACES = [
    ("A001", "A", VehicleClass.CAR),
    ("A002", "A", VehicleClass.CAR),
    ("A003", "A", VehicleClass.TRUCK),
    ("B001", "B", VehicleClass.MOTORCYCLE),
    ("B002", "B", VehicleClass.CAR),
]


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink(NotificationSink):
    name = "recording"

    def __init__(self):
        self.received = []

    def emit(self, notification):
        self.received.append(notification)


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'parkhub_test.db'}").open()
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def seeded_database(database):
    session = database.session()
    for number, zone, vehicle_class in SEED_SPACES:
        session.add(ParkingSpace(number=number, zone=zone, vehicle_class=vehicle_class.value,
                                 status=SpaceStatus.FREE.value, created_at=T0, updated_at=T0))
    session.commit()
    session.close()
    return database


@pytest.fixture
def db_session(seeded_database):
    session = seeded_database.session()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def change_feed():
    return SpaceChangeFeed()


@pytest.fixture
def service(db_session, sink, change_feed, clock):
    return SpaceLifecycleService(
        SpaceStore(db_session), NotificationEmitter([sink]), change_feed, clock=clock,
        max_ttl_seconds=86400,
    )
