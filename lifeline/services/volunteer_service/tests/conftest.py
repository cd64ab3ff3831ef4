"""Shared fixtures for volunteer service tests."""
from datetime import datetime, timedelta

import pytest

from lifeline.shared.models import Volunteer, VolunteerStatus
from lifeline.services.audit_service import AuditLogger
from lifeline.services.volunteer_service.engine import VolunteerManagementEngine
from lifeline.services.volunteer_service.store import InMemoryVolunteerStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 4, 10, 0, 0))


@pytest.fixture
def store():
    return InMemoryVolunteerStore()


@pytest.fixture
def audit_logger(clock):
    return AuditLogger(clock=clock)


@pytest.fixture
def engine(store, audit_logger, clock):
    return VolunteerManagementEngine(store=store, audit_logger=audit_logger, clock=clock)


@pytest.fixture
def active_volunteer(store, clock):
    """Factory inserting an assignable volunteer straight into the store."""

    def make(volunteer_id: str = "vol_active", **fields) -> Volunteer:
        values = {
            "status": VolunteerStatus.ACTIVE,
            "is_active": True,
            "last_active": clock(),
            "specializations": {"crisis-intervention"},
            "average_rating": 4.5,
            "response_rate": 0.9,
        }
        values.update(fields)
        return store.create_volunteer(Volunteer(volunteer_id=volunteer_id, **values))

    return make


@pytest.fixture
def application():
    return {
        "full_name": "Alex Rivera",
        "email": "alex@example.org",
        "motivation": (
            "I have supported friends through difficult times and want to help "
            "people in crisis find safety and hope when they need it most."
        ),
        "availability": {"monday": ["18:00-22:00"], "saturday": ["09:00-13:00"]},
        "references": ["ref_001", "ref_002"],
        "age": 29,
        "specializations": ["crisis-intervention", "anxiety-support"],
        "languages": ["en", "es"],
        "experience": "beginner",
    }
