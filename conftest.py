"""Shared pytest fixtures: an in-memory database and fake delivery channels."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import crud
import database
from clock import FixedClock
from exceptions import DeliveryFailure

NOW = datetime(2025, 11, 6, 9, 0, tzinfo=timezone.utc)


class RecordingChannel:
    """Delivery channel that remembers every send."""

    name = "recording"

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.sent = []

    async def send(self, recipient_address, recipient_name, notification):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((recipient_address, recipient_name, notification))


class FailingChannel(RecordingChannel):
    """Fails for the given titles (or for everything) and records the rest."""

    name = "failing"

    def __init__(self, failing_titles=None, hang_titles=None):
        super().__init__()
        self.failing_titles = failing_titles
        self.hang_titles = hang_titles or set()
        self.attempts = []

    async def send(self, recipient_address, recipient_name, notification):
        self.attempts.append(notification.title)
        if notification.title in self.hang_titles:
            await asyncio.sleep(10)
        if self.failing_titles is None or notification.title in self.failing_titles:
            raise DeliveryFailure("mailbox unavailable")
        await super().send(recipient_address, recipient_name, notification)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.init_db(engine)
    yield engine
    engine.dispose()


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


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def user(db):
    return crud.create_user(db, "Asha Rao", "asha@example.com", "not-a-real-hash")


@pytest.fixture
def other_user(db):
    return crud.create_user(db, "Ben Ito", "ben@example.com", "not-a-real-hash")


def reload(db, reminder_id):
    """Fetch the current row, bypassing the session's identity map."""
    db.expire_all()
    return db.get(database.Reminder, reminder_id)
