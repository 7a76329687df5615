"""
Shared fixtures: a throwaway SQLite document store, a controllable clock and
a seeded lifecycle engine
"""

import random

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.schemas.event import Event
from app.schemas.entrant import WaitlistEntry
from app.services.engine import AdmissionEngine
from app.services.repositories import WAITLISTED, entrant_path, event_path, user_path
from app.services.sql_store import SqlDocumentStore
from app.utils.clock import HOUR_MS

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

START = 1_700_000_000_000

class FakeClock:
    """Epoch-ms clock that only moves when told to"""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now

    def set(self, now: int) -> int:
        self.now = now
        return self.now

class Seeder:
    """Writes fixture documents straight into the store"""

    def __init__(self, store, clock):
        self.store = store
        self.clock = clock

    async def event(self, event_id: str = "evt1", **fields) -> Event:
        now = self.clock()
        values = {
            "title": "Spring Gala",
            "organizer_id": "org1",
            "capacity": 5,
            "sample_size": 2,
            "registration_start": now - HOUR_MS,
            "registration_end": now + HOUR_MS,
            "deadline": now + 24 * HOUR_MS,
            "event_start": now + 72 * HOUR_MS,
            "created_at": now - 2 * HOUR_MS,
        }
        values.update(fields)
        event = Event(id=event_id, **values)
        await self.store.set(event_path(event_id), event.to_doc())
        return event

    async def waitlist(self, event_id: str, uids, group: str = WAITLISTED) -> None:
        batch = self.store.batch()
        for uid in uids:
            entry = WaitlistEntry(uid=uid, joined_at=self.clock(), display_name=f"User {uid}")
            batch.set(entrant_path(event_id, group, uid), entry.to_doc())
        await batch.commit()

    async def profile(self, uid: str, **fields) -> None:
        await self.store.set(user_path(uid), {"fullName": f"User {uid}", **fields})

@pytest.fixture
def store():
    """SQL document store on a fresh database"""
    Base.metadata.create_all(bind=engine)
    try:
        yield SqlDocumentStore(TestingSessionLocal, poll_interval=0.05)
    finally:
        Base.metadata.drop_all(bind=engine)

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def lifecycle(store, clock):
    return AdmissionEngine(store, clock=clock, rng=random.Random(7))

@pytest.fixture
def seed(store, clock):
    return Seeder(store, clock)
