"""Error taxonomy for the volunteer engine.

- ValidationError: malformed input, fixed by the caller, never retried.
- StateError: a logic or ordering mistake by the caller, never retried.
- ContentionError: selection went stale before assignment; re-run
  selection and try a different volunteer.
- InfrastructureError: the record store failed; propagated unchanged.
"""
from lifeline.shared.database import RepositoryError

InfrastructureError = RepositoryError


class VolunteerServiceError(Exception):
    """Base exception for volunteer engine errors."""
    pass


class ValidationError(VolunteerServiceError):
    """Input failed validation."""
    pass


class StateError(VolunteerServiceError):
    """Operation is not legal in the current state."""
    pass


class NotFound(StateError):
    """Volunteer does not exist."""

    def __init__(self, volunteer_id: str):
        super().__init__(f"Volunteer not found: {volunteer_id}")
        self.volunteer_id = volunteer_id


class InvalidTransition(StateError):
    """Target status is not reachable from the current status."""

    def __init__(self, current: str, target: str, detail: str = ""):
        message = f"Invalid status transition: {current} -> {target}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.current = current
        self.target = target


class ModuleNotFound(StateError):
    """Training module is not in the catalog."""

    def __init__(self, module_id: str):
        super().__init__(f"Training module not found: {module_id}")
        self.module_id = module_id


class PrerequisiteNotMet(StateError):
    """Prerequisite modules have not been completed."""

    def __init__(self, module_id: str, missing: list):
        super().__init__(
            f"Prerequisites not met for {module_id}: {', '.join(sorted(missing))}"
        )
        self.module_id = module_id
        self.missing = sorted(missing)


class TrainingNotStarted(StateError):
    """Module completion reported before the module was started."""

    def __init__(self, module_id: str):
        super().__init__(f"Training not started: {module_id}")
        self.module_id = module_id


class ContentionError(VolunteerServiceError):
    """Volunteer changed between selection and assignment."""

    def __init__(self, message: str, volunteer_id: str):
        super().__init__(message)
        self.volunteer_id = volunteer_id


class VolunteerUnavailable(ContentionError):
    def __init__(self, volunteer_id: str):
        super().__init__("Volunteer not available for assignment", volunteer_id)


class CapacityExceeded(ContentionError):
    def __init__(self, volunteer_id: str):
        super().__init__("Volunteer at maximum capacity", volunteer_id)


class BurnoutBlocked(ContentionError):
    def __init__(self, volunteer_id: str):
        super().__init__("Volunteer showing burnout signs - assignment blocked", volunteer_id)
