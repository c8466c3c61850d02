import os
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_scheduler.database import Base  # noqa: E402
from clinic_scheduler.models import appointment, availability, consultation_note, user, waitlist  # noqa: E402,F401
from clinic_scheduler.models.user import ROLE_PATIENT, ROLE_PROVIDER, User  # noqa: E402
from clinic_scheduler.services.availability import RuleSpec, set_weekly_availability  # noqa: E402

MONDAY = 0

# 2025-03-10 is a Monday; "now" sits on the Friday before it.
SCENARIO_NOW = datetime(2025, 3, 7, 8, 0)
SCENARIO_MONDAY = date(2025, 3, 10)


def next_weekday(weekday: int, after: date | None = None) -> date:
    after = after or date.today()
    days_ahead = (weekday - after.weekday()) % 7 or 7
    return after + timedelta(days=days_ahead)


def make_user(db, email: str, role: str, full_name: str) -> User:
    created = User(email=email, role=role, full_name=full_name)
    db.add(created)
    db.commit()
    db.refresh(created)
    return created


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scheduler.db'}",
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider(db) -> User:
    return make_user(db, 'grey@clinic.test', ROLE_PROVIDER, 'Dr. Meredith Grey')


@pytest.fixture
def other_provider(db) -> User:
    return make_user(db, 'shepherd@clinic.test', ROLE_PROVIDER, 'Dr. Derek Shepherd')


@pytest.fixture
def patient(db) -> User:
    return make_user(db, 'alex@example.test', ROLE_PATIENT, 'Alex Karev')


@pytest.fixture
def other_patient(db) -> User:
    return make_user(db, 'izzie@example.test', ROLE_PATIENT, 'Izzie Stevens')


@pytest.fixture
def third_patient(db) -> User:
    return make_user(db, 'george@example.test', ROLE_PATIENT, 'George O\'Malley')


@pytest.fixture
def monday_schedule(db, provider) -> User:
    """Provider open Mondays 09:00-12:00 with 30 minute slots."""
    set_weekly_availability(db, provider.id, [RuleSpec(MONDAY, time(9, 0), time(12, 0))], 30)
    db.refresh(provider)
    return provider


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))
