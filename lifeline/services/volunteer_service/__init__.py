"""Volunteer Service: Volunteer lifecycle and crisis assignment.

This service:
1. Onboards applicants and gates them through training and certification
2. Enforces the volunteer status state machine
3. Scores burnout risk and applies wellness interventions
4. Selects, ranks and atomically assigns volunteers to crisis sessions
5. Tracks session performance and runs background monitoring loops

Endpoints:
- POST /volunteers/applications - Submit an application
- POST /volunteers/<id>/status - Transition status
- POST /volunteers/<id>/training/<module>/start|complete - Training
- POST /volunteers/<id>/wellness - Wellness check-in
- POST /volunteers/<id>/burnout - Burnout assessment
- GET /volunteers/available - Assignable volunteers
- POST /volunteers/<id>/assignments - Assign to a crisis session
- POST /volunteers/<id>/sessions/<session>/complete - Session outcome
- GET /volunteers/stats - Pool statistics
"""

from .config import VolunteerConfig
from .engine import ApplicationResult, VolunteerManagementEngine
from .errors import (
    BurnoutBlocked,
    CapacityExceeded,
    ContentionError,
    InfrastructureError,
    InvalidTransition,
    ModuleNotFound,
    NotFound,
    PrerequisiteNotMet,
    StateError,
    TrainingNotStarted,
    ValidationError,
    VolunteerServiceError,
    VolunteerUnavailable,
)
from .matching import MatchCandidate, MatchCriteria
from .state_machine import TransitionRecord
from .store import InMemoryVolunteerStore, PostgresVolunteerStore, VolunteerStore

__all__ = [
    "VolunteerConfig",
    "ApplicationResult",
    "VolunteerManagementEngine",
    "BurnoutBlocked",
    "CapacityExceeded",
    "ContentionError",
    "InfrastructureError",
    "InvalidTransition",
    "ModuleNotFound",
    "NotFound",
    "PrerequisiteNotMet",
    "StateError",
    "TrainingNotStarted",
    "ValidationError",
    "VolunteerServiceError",
    "VolunteerUnavailable",
    "MatchCandidate",
    "MatchCriteria",
    "TransitionRecord",
    "InMemoryVolunteerStore",
    "PostgresVolunteerStore",
    "VolunteerStore",
]
