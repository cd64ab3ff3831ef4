"""Volunteer management engine.

Facade over the lifecycle components. Callers (the HTTP handler, crisis
session layer, coordinators' tools) go through this class; it owns no
state of its own beyond wiring.

Flow:
1. submit_application -> PENDING -> TRAINING
2. start_module / complete_module until certified -> ACTIVE
3. get_available_volunteers / find_best_match -> assign_to_crisis_session
4. complete_session -> stats, performance history, burnout re-assessment
"""
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from lifeline.services.audit_service import AuditAction, AuditEntity, AuditLogger
from lifeline.shared.models import (
    Assignment,
    AssignmentPriority,
    BurnoutAlert,
    SessionOutcome,
    SystemHealth,
    TrainingModule,
    Volunteer,
    VolunteerApplication,
    VolunteerProfile,
    VolunteerStatus,
)
from lifeline.shared.utils import hash_identity
from .audit import record_audit
from .burnout import BurnoutAssessor
from .config import (
    HEALTH_CRITICAL_BURNOUT_CASES,
    HEALTH_DEGRADED_BURNOUT_CASES,
    HEALTHY_ACTIVE_RATIO,
    MIN_AGE,
    MIN_MOTIVATION_LENGTH,
    MIN_REFERENCES,
    TRAINING_MODULES,
    VolunteerConfig,
)
from .errors import NotFound, ValidationError
from .matching import MatchCandidate, MatchCriteria, MatchingEngine
from .monitoring import VolunteerMonitor
from .performance import PerformanceMonitor
from .state_machine import StatusStateMachine, TransitionRecord
from .store import InMemoryVolunteerStore, VolunteerStore
from .training import TrainingGate

logger = logging.getLogger(__name__)

NEXT_STEPS = (
    "Complete identity verification",
    "Begin training program",
    "Schedule initial interview",
    "Await background check results",
)


@dataclass(frozen=True)
class ApplicationResult:
    volunteer_id: str
    status: VolunteerStatus
    required_modules: List[str]
    estimated_training_hours: float
    next_steps: List[str] = field(default_factory=lambda: list(NEXT_STEPS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volunteer_id": self.volunteer_id,
            "status": self.status.value,
            "required_modules": list(self.required_modules),
            "estimated_training_hours": self.estimated_training_hours,
            "next_steps": list(self.next_steps),
        }


def validate_application(application: VolunteerApplication) -> None:
    """Reject incomplete applications.

    Raises:
        ValidationError: First failed requirement
    """
    if not application.full_name or not application.email:
        raise ValidationError("Name and email are required")
    if not application.motivation or len(application.motivation) < MIN_MOTIVATION_LENGTH:
        raise ValidationError(
            f"Motivation statement must be at least {MIN_MOTIVATION_LENGTH} characters"
        )
    if not application.availability:
        raise ValidationError("Availability schedule is required")
    if not application.references or len(application.references) < MIN_REFERENCES:
        raise ValidationError(f"At least {MIN_REFERENCES} references required")
    if application.age is not None and application.age < MIN_AGE:
        raise ValidationError(f"Volunteers must be at least {MIN_AGE} years old")


def _coerce_application(application: Union[VolunteerApplication, Mapping[str, Any]]) -> VolunteerApplication:
    if isinstance(application, VolunteerApplication):
        return application
    try:
        return VolunteerApplication(
            full_name=application.get("full_name", ""),
            email=application.get("email", ""),
            motivation=application.get("motivation", ""),
            availability=application.get("availability") or {},
            references=list(application.get("references") or []),
            age=application.get("age"),
            specializations=list(application.get("specializations") or []),
            languages=list(application.get("languages") or ["en"]),
            timezone=application.get("timezone", "UTC"),
            experience=application.get("experience", "beginner"),
            emergency_responder=bool(application.get("emergency_responder", False)),
        )
    except (AttributeError, TypeError) as e:
        raise ValidationError(f"Malformed application: {e}") from e


def _coerce_outcome(outcome: Union[SessionOutcome, Mapping[str, Any]]) -> SessionOutcome:
    if isinstance(outcome, SessionOutcome):
        return outcome
    try:
        return SessionOutcome(
            duration_seconds=float(outcome["duration_seconds"]),
            user_satisfaction=outcome.get("user_satisfaction"),
            escalated=bool(outcome.get("escalated", False)),
            response_time_seconds=outcome.get("response_time_seconds"),
            high_stress=bool(outcome.get("high_stress", False)),
            follow_up_completed=bool(outcome.get("follow_up_completed", True)),
        )
    except KeyError as e:
        raise ValidationError(f"Missing session outcome field: {e.args[0]}") from e
    except (TypeError, ValueError) as e:
        raise ValidationError(str(e)) from e


def _coerce_criteria(criteria: Union[MatchCriteria, Mapping[str, Any], None]) -> Optional[MatchCriteria]:
    if criteria is None or isinstance(criteria, MatchCriteria):
        return criteria
    try:
        return MatchCriteria.from_dict(dict(criteria))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Malformed match criteria: {e}") from e


def _coerce_status(target: Union[VolunteerStatus, str]) -> VolunteerStatus:
    if isinstance(target, VolunteerStatus):
        return target
    try:
        return VolunteerStatus(str(target).lower())
    except ValueError as e:
        raise ValidationError(f"Unknown volunteer status: {target}") from e


class VolunteerManagementEngine:
    """Volunteer lifecycle and crisis-assignment engine.

    Constructed explicitly; there is no module-level instance.
    """

    def __init__(
        self,
        store: Optional[VolunteerStore] = None,
        audit_logger: Optional[AuditLogger] = None,
        training_catalog: Sequence[TrainingModule] = TRAINING_MODULES,
        clock: Callable[[], datetime] = datetime.utcnow,
        config: Optional[VolunteerConfig] = None,
        timer: Callable[[], float] = time.perf_counter,
    ):
        """Initialize engine.

        Args:
            store: Volunteer record store (in-memory if omitted)
            audit_logger: Audit sink (in-memory if omitted)
            training_catalog: Training modules volunteers work through
            clock: Source of "now" for every component
            config: Engine limits and intervals
            timer: Monotonic timer for latency measurements
        """
        self.config = config or VolunteerConfig()
        self.store = store or InMemoryVolunteerStore(
            wellness_retention=self.config.wellness_retention,
            alert_retention_days=self.config.alert_retention_days,
            session_retention=self.config.performance_retention,
        )
        self.audit_logger = audit_logger or AuditLogger(clock=clock)
        self._clock = clock

        self.state_machine = StatusStateMachine(self.store, self.audit_logger, clock)
        self.training = TrainingGate(
            self.store, self.state_machine, self.audit_logger,
            modules=training_catalog, clock=clock,
        )
        self.burnout = BurnoutAssessor(
            self.store, self.state_machine, self.audit_logger, self.config, clock,
        )
        self.matching = MatchingEngine(
            self.store, self.audit_logger, self.config, clock, timer,
        )
        self.performance = PerformanceMonitor(self.store, clock=clock)
        self.monitor = VolunteerMonitor(
            wellness_sweep=self.check_all_volunteers,
            performance_rollup=self.performance.update_all_metrics,
            health_check=self.system_health_check,
            wellness_interval=self.config.wellness_sweep_interval,
            performance_interval=self.config.performance_rollup_interval,
            health_interval=self.config.health_check_interval,
        )

        logger.info(
            "VOLUNTEER_ENGINE_INITIALIZED",
            extra={
                "store": type(self.store).__name__,
                "modules": len(self.training.modules),
            }
        )

    # Onboarding and lifecycle

    def submit_application(
        self,
        application: Union[VolunteerApplication, Mapping[str, Any]],
    ) -> ApplicationResult:
        """Validate an application, create the volunteer and enroll them in training.

        Raises:
            ValidationError: Incomplete application or unknown experience level

        Logs:
            - VOLUNTEER_APPLICATION_PROCESSED: After enrollment
        """
        application = _coerce_application(application)
        validate_application(application)

        volunteer_id = f"vol_{uuid.uuid4().hex[:16]}"
        plan = self.training.enroll(volunteer_id, application.experience)

        volunteer = Volunteer(
            volunteer_id=volunteer_id,
            status=VolunteerStatus.PENDING,
            specializations=set(application.specializations),
            languages=set(application.languages) or {"en"},
            max_concurrent=self.config.max_concurrent_default,
            base_max_concurrent=self.config.max_concurrent_default,
            response_rate=self.config.default_response_rate,
            emergency_responder=application.emergency_responder,
            emergency_available=application.emergency_responder,
            schedule=dict(application.availability),
            timezone=application.timezone,
            identity_hash=hash_identity(application.full_name, application.email),
            created_at=self._clock(),
        )
        self.store.create_volunteer(volunteer)

        record_audit(
            self.audit_logger,
            AuditAction.APPLICATION_SUBMITTED,
            volunteer_id,
            {
                "experience": application.experience,
                "reference_count": len(application.references),
                "required_modules": plan.required_modules,
            },
        )

        self.state_machine.transition(
            volunteer_id, VolunteerStatus.TRAINING, reason="training_enrolled"
        )

        logger.info(
            "VOLUNTEER_APPLICATION_PROCESSED",
            extra={
                "volunteer_id": volunteer_id,
                "required_modules": len(plan.required_modules),
                "estimated_training_hours": plan.estimated_hours,
            }
        )

        return ApplicationResult(
            volunteer_id=volunteer_id,
            status=VolunteerStatus.TRAINING,
            required_modules=plan.required_modules,
            estimated_training_hours=plan.estimated_hours,
        )

    def get_volunteer(self, volunteer_id: str) -> Volunteer:
        volunteer = self.store.get_volunteer(volunteer_id)
        if volunteer is None:
            raise NotFound(volunteer_id)
        return volunteer

    def transition_status(
        self,
        volunteer_id: str,
        target: Union[VolunteerStatus, str],
        reason: Optional[str] = None,
        actor: str = "system",
        actor_role: str = "system",
    ) -> TransitionRecord:
        return self.state_machine.transition(
            volunteer_id, _coerce_status(target), reason, actor, actor_role
        )

    def clear_follow_up(
        self,
        volunteer_id: str,
        reviewer_id: str,
        notes: Optional[str] = None,
    ) -> Volunteer:
        """Record that a human reviewed a volunteer after an intervention.

        Required before a volunteer on a mandatory break can return.
        """
        if not reviewer_id:
            raise ValidationError("reviewer_id is required")

        volunteer = self.store.update_volunteer(volunteer_id, {"follow_up_required": False})
        if volunteer is None:
            raise NotFound(volunteer_id)

        record_audit(
            self.audit_logger,
            AuditAction.FOLLOW_UP_CLEARED,
            volunteer_id,
            {"notes": notes},
            actor_id=reviewer_id,
            actor_role="coordinator",
        )
        logger.info(
            "WELLNESS_FOLLOW_UP_CLEARED",
            extra={"volunteer_id": volunteer_id, "reviewer_id": reviewer_id}
        )
        return volunteer

    # Training

    def start_module(self, volunteer_id: str, module_id: str) -> Dict[str, Any]:
        return self.training.start_module(volunteer_id, module_id)

    def complete_module(
        self,
        volunteer_id: str,
        module_id: str,
        score: float,
        time_spent_minutes: int = 0,
    ) -> Dict[str, Any]:
        return self.training.complete_module(volunteer_id, module_id, score, time_spent_minutes)

    def get_certification_level(self, volunteer_id: str) -> Optional[str]:
        return self.training.get_certification_level(volunteer_id)

    # Wellness

    def record_wellness_check_in(self, volunteer_id: str, metrics: Mapping[str, Any]) -> Dict[str, Any]:
        return self.burnout.record_wellness_check_in(volunteer_id, metrics)

    def assess_burnout_risk(self, volunteer_id: str, factors: Mapping[str, float]) -> BurnoutAlert:
        return self.burnout.assess_burnout_risk(volunteer_id, factors)

    # Matching and sessions

    def get_available_volunteers(
        self,
        criteria: Union[MatchCriteria, Mapping[str, Any], None] = None,
    ) -> List[VolunteerProfile]:
        return self.matching.get_available_volunteers(_coerce_criteria(criteria))

    def find_best_match(
        self,
        criteria: Union[MatchCriteria, Mapping[str, Any]],
    ) -> Optional[MatchCandidate]:
        return self.matching.find_best_match(_coerce_criteria(criteria) or MatchCriteria())

    def assign_to_crisis_session(
        self,
        volunteer_id: str,
        session_id: str,
        priority: Union[AssignmentPriority, str] = AssignmentPriority.NORMAL,
    ) -> Assignment:
        return self.matching.assign_to_crisis_session(volunteer_id, session_id, priority)

    def complete_session(
        self,
        volunteer_id: str,
        session_id: str,
        outcome: Union[SessionOutcome, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """Release the volunteer's slot and feed the outcome back.

        Raises:
            ValidationError: Malformed outcome
            NotFound: Unknown volunteer

        Logs:
            - SESSION_COMPLETED: After stats are updated
            - SESSION_COMPLETED_WITHOUT_ASSIGNMENT: No open assignment matched;
              the slot is still released
        """
        outcome = _coerce_outcome(outcome)
        now = self._clock()

        volunteer = self.store.release(
            volunteer_id,
            outcome.user_satisfaction,
            outcome.duration_seconds / 3600,
            now,
        )
        if volunteer is None:
            raise NotFound(volunteer_id)

        closed = self.store.close_assignment(volunteer_id, session_id, now)
        if closed is None:
            logger.warning(
                "SESSION_COMPLETED_WITHOUT_ASSIGNMENT",
                extra={
                    "volunteer_id": volunteer_id,
                    "session_id": session_id,
                    "current_load": volunteer.current_load,
                }
            )
        self.performance.record_session(volunteer_id, session_id, outcome)

        record_audit(
            self.audit_logger,
            AuditAction.SESSION_COMPLETED,
            session_id,
            {
                "volunteer_id": volunteer_id,
                "duration_seconds": outcome.duration_seconds,
                "escalated": outcome.escalated,
            },
            entity_type=AuditEntity.CRISIS_SESSION,
        )
        logger.info(
            "SESSION_COMPLETED",
            extra={
                "volunteer_id": volunteer_id,
                "session_id": session_id,
                "current_load": volunteer.current_load,
                "assignment_closed": closed is not None,
            }
        )

        alert = self.burnout.assess_post_session(volunteer_id)

        return {
            "volunteer_id": volunteer_id,
            "session_id": session_id,
            "current_load": volunteer.current_load,
            "max_concurrent": volunteer.max_concurrent,
            "sessions_count": volunteer.sessions_count,
            "average_rating": volunteer.average_rating,
            "assignment_closed": closed is not None,
            "burnout_risk_level": alert.risk_level.value,
        }

    # Statistics and monitoring

    def get_volunteer_stats(self) -> Dict[str, Any]:
        """Pool totals, averages, health band and capacity."""
        volunteers = self.store.list_volunteers()
        now = self._clock()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

        total = len(volunteers)
        active = [v for v in volunteers if v.status == VolunteerStatus.ACTIVE and v.is_active]
        rated = [v for v in volunteers if v.status == VolunteerStatus.ACTIVE]
        burnout_cases = sum(
            1 for v in volunteers if v.burnout_score >= self.config.burnout_threshold
        )

        if burnout_cases < HEALTH_DEGRADED_BURNOUT_CASES:
            health = SystemHealth.HEALTHY
        elif burnout_cases < HEALTH_CRITICAL_BURNOUT_CASES:
            health = SystemHealth.DEGRADED
        else:
            health = SystemHealth.CRITICAL

        return {
            "totals": {
                "total_volunteers": total,
                "active_volunteers": len(active),
                "training_volunteers": sum(
                    1 for v in volunteers if v.status == VolunteerStatus.TRAINING
                ),
                "on_break_volunteers": sum(
                    1 for v in volunteers if v.status == VolunteerStatus.ON_BREAK
                ),
                "sessions_today": len(self.store.list_assignments(since=midnight)),
                "burnout_cases": burnout_cases,
            },
            "averages": {
                "average_rating": (
                    sum(v.average_rating for v in rated) / len(rated) if rated else 0.0
                ),
                "average_response_rate": (
                    sum(v.response_rate for v in rated) / len(rated) if rated else 0.0
                ),
            },
            "system_health": health.value,
            "capacity": {
                "current": len(active),
                "target": math.ceil(total * HEALTHY_ACTIVE_RATIO),
                "utilization": len(active) / max(total, 1),
            },
        }

    def check_all_volunteers(self) -> Dict[str, Any]:
        """Wellness sweep: expire workload reductions and report who is at risk."""
        restored = self.burnout.expire_interventions(self._clock())
        at_risk = self.burnout.get_volunteers_at_risk()
        if at_risk:
            logger.warning(
                "VOLUNTEERS_AT_RISK",
                extra={
                    "count": len(at_risk),
                    "critical": sum(1 for r in at_risk if r["risk_level"] == "critical"),
                }
            )
        return {"restored": restored, "at_risk": at_risk}

    def system_health_check(self) -> Dict[str, Any]:
        stats = self.get_volunteer_stats()
        if stats["system_health"] == SystemHealth.CRITICAL.value:
            logger.critical(
                "VOLUNTEER_SYSTEM_HEALTH_CRITICAL",
                extra={"burnout_cases": stats["totals"]["burnout_cases"]}
            )
        logger.info(
            "VOLUNTEER_SYSTEM_HEALTH",
            extra={
                "system_health": stats["system_health"],
                "active_volunteers": stats["totals"]["active_volunteers"],
                "burnout_cases": stats["totals"]["burnout_cases"],
            }
        )
        return stats

    def start_monitoring(self) -> None:
        self.monitor.start()

    def stop_monitoring(self) -> None:
        self.monitor.stop()
