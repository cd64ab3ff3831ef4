"""Volunteer matching and crisis assignment.

Selection is a read-only snapshot filtered by hard constraints and ranked
deterministically. Assignment re-validates the constraints atomically in
the store, so a volunteer picked from a stale snapshot is refused rather
than overloaded.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from lifeline.services.audit_service import AuditAction, AuditLogger
from lifeline.shared.models import (
    Assignment,
    AssignmentPriority,
    VolunteerProfile,
    VolunteerStatus,
)
from .audit import record_audit
from .config import (
    CRISIS_SPECIALIZATIONS,
    EMERGENCY_RESPONDER_BONUS,
    MATCH_WEIGHTS,
    MIN_MATCH_SCORE,
    RECENT_ACTIVITY_BONUS,
    RECENT_ACTIVITY_SECONDS,
    VolunteerConfig,
)
from .errors import (
    BurnoutBlocked,
    CapacityExceeded,
    NotFound,
    ValidationError,
    VolunteerUnavailable,
)
from .store import AssignFailure, VolunteerStore

logger = logging.getLogger(__name__)

_FAILURE_ERRORS = {
    AssignFailure.NOT_FOUND: NotFound,
    AssignFailure.UNAVAILABLE: VolunteerUnavailable,
    AssignFailure.CAPACITY: CapacityExceeded,
    AssignFailure.BURNOUT: BurnoutBlocked,
}

GENERALIST_SPECIALIZATION = "crisis-intervention"


@dataclass(frozen=True)
class MatchCriteria:
    """What a crisis session needs from a volunteer.

    Hard filters: emergency_only, max_current_load, and a non-empty
    overlap with specializations / languages when those are given.
    keywords and urgency only affect the soft match score.
    """
    specializations: FrozenSet[str] = field(default_factory=frozenset)
    languages: FrozenSet[str] = field(default_factory=frozenset)
    emergency_only: bool = False
    max_current_load: Optional[int] = None
    keywords: FrozenSet[str] = field(default_factory=frozenset)
    urgency: str = "medium"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchCriteria":
        max_load = data.get("max_current_load")
        return cls(
            specializations=frozenset(data.get("specializations") or ()),
            languages=frozenset(data.get("languages") or ()),
            emergency_only=bool(data.get("emergency_only", False)),
            max_current_load=int(max_load) if max_load is not None else None,
            keywords=frozenset(k.lower() for k in data.get("keywords") or ()),
            urgency=str(data.get("urgency", "medium")).lower(),
        )


@dataclass(frozen=True)
class MatchCandidate:
    """A ranked volunteer with its soft match score."""
    volunteer: VolunteerProfile
    score: float
    breakdown: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volunteer": self.volunteer.to_dict(),
            "score": round(self.score, 4),
            "breakdown": {k: round(v, 4) for k, v in self.breakdown.items()},
        }


def specialization_score(
    held: FrozenSet[str],
    keywords: FrozenSet[str],
    requested: FrozenSet[str],
) -> float:
    matched = 0.0
    possible = 0.0
    for keyword in sorted(keywords):
        for specialty in CRISIS_SPECIALIZATIONS.get(keyword, ()):
            possible += 1
            if specialty in held:
                matched += 1
    for specialty in requested:
        possible += 1
        if specialty in held:
            matched += 1
    if GENERALIST_SPECIALIZATION in held:
        matched += 0.5
        possible += 0.5
    return matched / possible if possible > 0 else 0.5


def availability_score(profile: VolunteerProfile, now: datetime) -> float:
    score = 1 - profile.current_load / profile.max_concurrent
    if profile.last_active and (now - profile.last_active).total_seconds() < RECENT_ACTIVITY_SECONDS:
        score += RECENT_ACTIVITY_BONUS
    return min(score, 1.0)


def language_score(volunteer_languages: FrozenSet[str], requested: FrozenSet[str]) -> float:
    if not requested:
        return 1.0 if "en" in volunteer_languages else 0.5
    return len(requested & volunteer_languages) / len(requested)


def match_score(
    profile: VolunteerProfile,
    criteria: MatchCriteria,
    now: datetime,
) -> MatchCandidate:
    """Weighted soft score, capped at 1."""
    breakdown = {
        "specialization": specialization_score(
            profile.specializations, criteria.keywords, criteria.specializations
        ),
        "availability": availability_score(profile, now),
        "response_rate": min(profile.response_rate, 1.0),
        "rating": min(profile.average_rating / 5, 1.0),
        "language": language_score(profile.languages, criteria.languages),
    }
    score = sum(breakdown[name] * weight for name, weight in MATCH_WEIGHTS.items())
    if criteria.urgency == "critical" and profile.is_emergency_responder:
        score += EMERGENCY_RESPONDER_BONUS
    return MatchCandidate(volunteer=profile, score=min(score, 1.0), breakdown=breakdown)


class MatchingEngine:
    """Selects, ranks and assigns volunteers to crisis sessions."""

    def __init__(
        self,
        store: VolunteerStore,
        audit_logger: AuditLogger,
        config: Optional[VolunteerConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.store = store
        self.audit_logger = audit_logger
        self.config = config or VolunteerConfig()
        self._clock = clock
        self._timer = timer

    def get_available_volunteers(
        self,
        criteria: Optional[MatchCriteria] = None,
    ) -> List[VolunteerProfile]:
        """Volunteers passing every hard constraint, best first.

        Ordered by current_load ascending, then average_rating and
        response_rate descending; volunteer_id breaks remaining ties.
        """
        criteria = criteria or MatchCriteria()
        now = self._clock()
        cutoff = now - timedelta(minutes=self.config.recency_window_minutes)

        eligible = []
        for v in self.store.list_volunteers():
            cap = v.max_concurrent
            if criteria.max_current_load is not None:
                cap = min(cap, criteria.max_current_load)
            if v.status != VolunteerStatus.ACTIVE or not v.is_active:
                continue
            if v.current_load >= cap:
                continue
            if v.burnout_score >= self.config.burnout_threshold:
                continue
            if v.last_active is None or v.last_active < cutoff:
                continue
            if criteria.emergency_only and not v.emergency_available:
                continue
            if criteria.specializations and not (criteria.specializations & v.specializations):
                continue
            if criteria.languages and not (criteria.languages & v.languages):
                continue
            eligible.append(v)

        eligible.sort(key=lambda v: (
            v.current_load, -v.average_rating, -v.response_rate, v.volunteer_id,
        ))
        profiles = [v.to_profile() for v in eligible[:self.config.selection_limit]]

        logger.debug(
            "AVAILABLE_VOLUNTEERS_SELECTED",
            extra={"eligible": len(eligible), "returned": len(profiles)}
        )
        return profiles

    def rank_candidates(self, criteria: MatchCriteria) -> List[MatchCandidate]:
        """Score the available snapshot; candidates below the minimum are dropped."""
        now = self._clock()
        scored = [match_score(p, criteria, now) for p in self.get_available_volunteers(criteria)]
        # Stable sort keeps the hard-constraint order among equal scores
        scored.sort(key=lambda c: c.score, reverse=True)
        return [c for c in scored if c.score >= MIN_MATCH_SCORE]

    def find_best_match(self, criteria: MatchCriteria) -> Optional[MatchCandidate]:
        ranked = self.rank_candidates(criteria)
        if not ranked:
            logger.warning(
                "NO_VOLUNTEER_MATCH",
                extra={"urgency": criteria.urgency, "min_score": MIN_MATCH_SCORE}
            )
            return None
        return ranked[0]

    def assign_to_crisis_session(
        self,
        volunteer_id: str,
        session_id: str,
        priority: Union[AssignmentPriority, str] = AssignmentPriority.NORMAL,
    ) -> Assignment:
        """Atomically take one unit of a volunteer's capacity for a session.

        Args:
            volunteer_id: Volunteer chosen from a selection snapshot
            session_id: Crisis session identifier
            priority: normal, high or emergency

        Returns:
            Created Assignment

        Raises:
            ValidationError: Bad priority or empty session id
            NotFound: Unknown volunteer
            VolunteerUnavailable, CapacityExceeded, BurnoutBlocked:
                A hard constraint no longer holds

        Logs:
            - VOLUNTEER_ASSIGNED: Assignment created
            - ASSIGNMENT_REJECTED: Constraint re-validation failed
            - EMERGENCY_ASSIGNMENT_SLOW: Emergency path exceeded its budget
        """
        started = self._timer()

        if not session_id:
            raise ValidationError("session_id is required")
        if not isinstance(priority, AssignmentPriority):
            try:
                priority = AssignmentPriority(str(priority).lower())
            except ValueError as e:
                raise ValidationError(f"Unknown priority: {priority}") from e

        now = self._clock()
        attempt = self.store.try_assign(volunteer_id, self.config.burnout_threshold, now)
        if not attempt.succeeded:
            logger.warning(
                "ASSIGNMENT_REJECTED",
                extra={
                    "volunteer_id": volunteer_id,
                    "session_id": session_id,
                    "reason": attempt.failure.value,
                }
            )
            raise _FAILURE_ERRORS[attempt.failure](volunteer_id)

        volunteer = attempt.volunteer
        response_rate = max(volunteer.response_rate, self.config.min_response_rate)
        estimate = (
            self.config.base_response_seconds
            * (1 + attempt.previous_load / volunteer.max_concurrent)
            / response_rate
        )

        assignment = Assignment(
            assignment_id=f"asg_{uuid.uuid4().hex[:16]}",
            volunteer_id=volunteer_id,
            session_id=session_id,
            priority=priority,
            assigned_at=now,
            estimated_response_time_seconds=round(estimate),
            execution_time_ms=(self._timer() - started) * 1000,
        )
        self.store.add_assignment(assignment)

        record_audit(
            self.audit_logger,
            AuditAction.VOLUNTEER_ASSIGNED,
            volunteer_id,
            {
                "session_id": session_id,
                "assignment_id": assignment.assignment_id,
                "priority": priority.value,
            },
        )

        logger.info(
            "VOLUNTEER_ASSIGNED",
            extra={
                "volunteer_id": volunteer_id,
                "session_id": session_id,
                "priority": priority.value,
                "current_load": volunteer.current_load,
                "estimated_response_time_seconds": assignment.estimated_response_time_seconds,
            }
        )

        if (
            priority == AssignmentPriority.EMERGENCY
            and assignment.execution_time_ms > self.config.emergency_target_ms
        ):
            logger.warning(
                "EMERGENCY_ASSIGNMENT_SLOW",
                extra={
                    "volunteer_id": volunteer_id,
                    "session_id": session_id,
                    "execution_time_ms": round(assignment.execution_time_ms, 2),
                    "target_ms": self.config.emergency_target_ms,
                }
            )

        return assignment
