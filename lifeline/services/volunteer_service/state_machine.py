"""Volunteer status state machine.

Every status change goes through StatusStateMachine.transition, which
enforces the allowed-transition table, applies the entry side effect of
the target status and appends an audit entry.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from lifeline.services.audit_service import AuditLogger
from lifeline.shared.models import Volunteer, VolunteerStatus
from .errors import InvalidTransition, NotFound
from .store import VolunteerStore

logger = logging.getLogger(__name__)

S = VolunteerStatus

ALLOWED_TRANSITIONS: Mapping[VolunteerStatus, FrozenSet[VolunteerStatus]] = {
    S.PENDING: frozenset({S.TRAINING, S.REJECTED}),
    S.TRAINING: frozenset({S.BACKGROUND_CHECK, S.FAILED}),
    S.BACKGROUND_CHECK: frozenset({S.VERIFIED, S.REJECTED}),
    S.VERIFIED: frozenset({S.ACTIVE, S.INACTIVE}),
    S.ACTIVE: frozenset({S.INACTIVE, S.SUSPENDED, S.ON_BREAK}),
    S.INACTIVE: frozenset({S.ACTIVE, S.REVOKED}),
    S.SUSPENDED: frozenset({S.ACTIVE, S.REVOKED}),
    S.ON_BREAK: frozenset({S.ACTIVE, S.SUSPENDED, S.INACTIVE}),
    S.FAILED: frozenset(),
    S.REJECTED: frozenset(),
    S.REVOKED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[VolunteerStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Path walked when certification activates a volunteer
CERTIFICATION_ACTIVATION_PATHS: Mapping[VolunteerStatus, tuple] = {
    S.TRAINING: (S.BACKGROUND_CHECK, S.VERIFIED, S.ACTIVE),
    S.VERIFIED: (S.ACTIVE,),
}
CERTIFICATION_REASON = "certification_awarded"


# Entry side effects: each returns extra field changes for the target status

def _on_enter_active(volunteer: Volunteer, now: datetime) -> Dict[str, Any]:
    return {"last_active": now, "break_until": None}


def _on_enter_off_duty(volunteer: Volunteer, now: datetime) -> Dict[str, Any]:
    # Outstanding assignments are orphaned, not reassigned
    return {"current_load": 0}


def _no_side_effect(volunteer: Volunteer, now: datetime) -> Dict[str, Any]:
    return {}


ENTRY_HANDLERS: Mapping[VolunteerStatus, Callable[[Volunteer, datetime], Dict[str, Any]]] = {
    S.PENDING: _no_side_effect,
    S.TRAINING: _no_side_effect,
    S.BACKGROUND_CHECK: _no_side_effect,
    S.VERIFIED: _no_side_effect,
    S.ACTIVE: _on_enter_active,
    S.INACTIVE: _no_side_effect,
    S.SUSPENDED: _on_enter_off_duty,
    S.ON_BREAK: _on_enter_off_duty,
    S.FAILED: _no_side_effect,
    S.REJECTED: _no_side_effect,
    S.REVOKED: _on_enter_off_duty,
}

_unhandled = set(VolunteerStatus) - set(ENTRY_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No entry handler for statuses: {sorted(s.value for s in _unhandled)}")
_untabled = set(VolunteerStatus) - set(ALLOWED_TRANSITIONS)
if _untabled:
    raise RuntimeError(f"No transition entry for statuses: {sorted(s.value for s in _untabled)}")


@dataclass(frozen=True)
class TransitionRecord:
    """Outcome of a successful status transition."""
    volunteer_id: str
    previous_status: VolunteerStatus
    new_status: VolunteerStatus
    reason: Optional[str]
    actor: str
    timestamp: datetime
    audit_recorded: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volunteer_id": self.volunteer_id,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "reason": self.reason,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat(),
            "audit_recorded": self.audit_recorded,
        }


def can_transition(current: VolunteerStatus, target: VolunteerStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class StatusStateMachine:
    """Applies status transitions against the volunteer store."""

    def __init__(
        self,
        store: VolunteerStore,
        audit_logger: AuditLogger,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.audit_logger = audit_logger
        self._clock = clock

    def transition(
        self,
        volunteer_id: str,
        target: VolunteerStatus,
        reason: Optional[str] = None,
        actor: str = "system",
        actor_role: str = "system",
    ) -> TransitionRecord:
        """Move a volunteer to a new status.

        Args:
            volunteer_id: Anonymous volunteer id
            target: Desired status
            reason: Free-text reason recorded in the audit trail
            actor: Who requested the change
            actor_role: Role of the actor (system, coordinator)

        Returns:
            TransitionRecord; audit_recorded is False if the audit write failed

        Raises:
            NotFound: Unknown volunteer
            InvalidTransition: Target not reachable; status is unchanged

        Logs:
            - VOLUNTEER_STATUS_CHANGED: After the new status is persisted
            - AUDIT_WRITE_FAILED: Audit sink refused the entry
        """
        volunteer = self.store.get_volunteer(volunteer_id)
        if volunteer is None:
            raise NotFound(volunteer_id)

        current = volunteer.status
        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

        now = self._clock()
        if current == S.ON_BREAK and target == S.ACTIVE:
            self._check_break_over(volunteer, now)

        changes: Dict[str, Any] = {
            "status": target,
            "is_active": target == S.ACTIVE,
        }
        changes.update(ENTRY_HANDLERS[target](volunteer, now))

        updated = self.store.update_volunteer(volunteer_id, changes, expected_status=current)
        if updated is None:
            latest = self.store.get_volunteer(volunteer_id)
            if latest is None:
                raise NotFound(volunteer_id)
            raise InvalidTransition(
                latest.status.value, target.value, "status changed concurrently"
            )

        audit_recorded = self._audit(volunteer_id, current, target, reason, actor, actor_role)

        logger.info(
            "VOLUNTEER_STATUS_CHANGED",
            extra={
                "volunteer_id": volunteer_id,
                "previous_status": current.value,
                "new_status": target.value,
                "reason": reason,
                "actor": actor,
            }
        )

        return TransitionRecord(
            volunteer_id=volunteer_id,
            previous_status=current,
            new_status=target,
            reason=reason,
            actor=actor,
            timestamp=now,
            audit_recorded=audit_recorded,
        )

    def activate_after_certification(
        self,
        volunteer_id: str,
        actor: str = "system",
    ) -> List[TransitionRecord]:
        """Walk the legal path to ACTIVE after a certification is awarded.

        Volunteers outside TRAINING or VERIFIED are left alone.
        """
        volunteer = self.store.get_volunteer(volunteer_id)
        if volunteer is None:
            raise NotFound(volunteer_id)

        path = CERTIFICATION_ACTIVATION_PATHS.get(volunteer.status, ())
        return [
            self.transition(volunteer_id, step, CERTIFICATION_REASON, actor)
            for step in path
        ]

    def _check_break_over(self, volunteer: Volunteer, now: datetime) -> None:
        if volunteer.break_until is not None and now < volunteer.break_until:
            raise InvalidTransition(
                S.ON_BREAK.value, S.ACTIVE.value,
                f"mandatory break runs until {volunteer.break_until.isoformat()}",
            )
        if volunteer.follow_up_required:
            raise InvalidTransition(
                S.ON_BREAK.value, S.ACTIVE.value, "wellness follow-up not cleared",
            )

    def _audit(
        self,
        volunteer_id: str,
        previous: VolunteerStatus,
        target: VolunteerStatus,
        reason: Optional[str],
        actor: str,
        actor_role: str,
    ) -> bool:
        try:
            self.audit_logger.log_status_change(
                volunteer_id=volunteer_id,
                previous_status=previous.value,
                new_status=target.value,
                reason=reason,
                actor_id=actor,
                actor_role=actor_role,
            )
        except Exception as e:
            logger.warning(
                "AUDIT_WRITE_FAILED",
                extra={
                    "volunteer_id": volunteer_id,
                    "new_status": target.value,
                    "error": str(e),
                }
            )
            return False
        return True
