"""Training and certification gate.

Volunteers work through the module catalog; the certification level is
always recomputed from completed progress, never stored. Reaching at least
the basic level activates the volunteer through the state machine.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from lifeline.services.audit_service import AuditAction, AuditLogger
from lifeline.shared.models import (
    CertificationLevel,
    TrainingModule,
    TrainingProgress,
    TrainingStatus,
)
from .audit import record_audit
from .config import (
    CERTIFICATION_LEVELS,
    FOUNDATIONAL_MODULE,
    TRAINING_MODULES,
    WAIVABLE_FOR_EXPERIENCE,
)
from .errors import (
    ModuleNotFound,
    NotFound,
    PrerequisiteNotMet,
    StateError,
    TrainingNotStarted,
    ValidationError,
)
from .state_machine import TERMINAL_STATUSES, StatusStateMachine
from .store import VolunteerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollmentPlan:
    """Modules an applicant must complete and the expected effort."""
    volunteer_id: str
    required_modules: List[str]
    estimated_hours: float


def certification_level_for(
    completed_modules: Sequence[str],
    levels: Sequence[CertificationLevel] = CERTIFICATION_LEVELS,
) -> Optional[str]:
    """Highest level whose module requirements are all completed.

    Levels are ordered weakest to strongest. A level whose module set is
    no larger than the one already reached adds nothing module-wise and
    is not awarded by training alone.
    """
    completed = set(completed_modules)
    highest: Optional[CertificationLevel] = None
    for level in levels:
        if not level.required_modules <= completed:
            continue
        if highest is None or level.required_modules > highest.required_modules:
            highest = level
    return highest.level if highest else None


class TrainingGate:
    """Tracks module progress and awards certification."""

    def __init__(
        self,
        store: VolunteerStore,
        state_machine: StatusStateMachine,
        audit_logger: AuditLogger,
        modules: Sequence[TrainingModule] = TRAINING_MODULES,
        certification_levels: Sequence[CertificationLevel] = CERTIFICATION_LEVELS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.state_machine = state_machine
        self.audit_logger = audit_logger
        self.modules: Dict[str, TrainingModule] = {m.module_id: m for m in modules}
        self.certification_levels = tuple(certification_levels)
        self._clock = clock

        unknown = {
            prereq for m in modules for prereq in m.prerequisites
        } - set(self.modules)
        if unknown:
            raise ValueError(f"Unknown prerequisite modules: {sorted(unknown)}")

    def _module(self, module_id: str) -> TrainingModule:
        module = self.modules.get(module_id)
        if module is None:
            raise ModuleNotFound(module_id)
        return module

    def _require_volunteer(self, volunteer_id: str) -> None:
        if self.store.get_volunteer(volunteer_id) is None:
            raise NotFound(volunteer_id)

    def _require_trainable(self, volunteer_id: str) -> None:
        volunteer = self.store.get_volunteer(volunteer_id)
        if volunteer is None:
            raise NotFound(volunteer_id)
        if volunteer.status in TERMINAL_STATUSES:
            raise StateError(
                f"Volunteer {volunteer_id} is {volunteer.status.value}; training is closed"
            )

    def _completed_modules(self, volunteer_id: str) -> List[str]:
        return [
            p.module_id for p in self.store.list_progress(volunteer_id)
            if p.status == TrainingStatus.COMPLETED
        ]

    def enroll(self, volunteer_id: str, experience: str = "beginner") -> EnrollmentPlan:
        """Build the training plan for a new applicant.

        Beginners take every module. Experienced applicants may skip
        some, but never the foundational module.
        """
        if experience not in WAIVABLE_FOR_EXPERIENCE:
            raise ValidationError(
                f"Unknown experience level: {experience}. "
                f"Expected one of {sorted(WAIVABLE_FOR_EXPERIENCE)}"
            )

        waived = WAIVABLE_FOR_EXPERIENCE[experience] - {FOUNDATIONAL_MODULE}
        required = [m for m in self.modules.values() if m.module_id not in waived]
        hours = round(sum(m.duration_minutes for m in required) / 60, 1)

        logger.info(
            "TRAINING_ENROLLED",
            extra={
                "volunteer_id": volunteer_id,
                "experience": experience,
                "module_count": len(required),
            }
        )

        return EnrollmentPlan(
            volunteer_id=volunteer_id,
            required_modules=[m.module_id for m in required],
            estimated_hours=hours,
        )

    def start_module(self, volunteer_id: str, module_id: str) -> Dict[str, Any]:
        """Begin (or restart) a module.

        Returns:
            {"started": bool, "module_id", "attempts"}; a completed module
            stays completed and is not restarted

        Raises:
            NotFound, ModuleNotFound, PrerequisiteNotMet
            StateError: Volunteer is rejected, failed or revoked
        """
        self._require_trainable(volunteer_id)
        module = self._module(module_id)

        completed = set(self._completed_modules(volunteer_id))
        missing = module.prerequisites - completed
        if missing:
            raise PrerequisiteNotMet(module_id, list(missing))

        existing = self.store.get_progress(volunteer_id, module_id)
        if existing is not None and existing.status == TrainingStatus.COMPLETED:
            return {"started": False, "module_id": module_id, "attempts": existing.attempts}

        progress = TrainingProgress(
            volunteer_id=volunteer_id,
            module_id=module_id,
            status=TrainingStatus.IN_PROGRESS,
            attempts=existing.attempts if existing else 1,
            time_spent_minutes=existing.time_spent_minutes if existing else 0,
            started_at=self._clock(),
        )
        self.store.save_progress(progress)

        record_audit(
            self.audit_logger,
            AuditAction.TRAINING_STARTED,
            volunteer_id,
            {"module_id": module_id, "attempts": progress.attempts},
        )
        logger.info(
            "TRAINING_MODULE_STARTED",
            extra={
                "volunteer_id": volunteer_id,
                "module_id": module_id,
                "attempts": progress.attempts,
            }
        )

        return {"started": True, "module_id": module_id, "attempts": progress.attempts}

    def complete_module(
        self,
        volunteer_id: str,
        module_id: str,
        score: float,
        time_spent_minutes: int = 0,
    ) -> Dict[str, Any]:
        """Record a module result and re-evaluate certification.

        Args:
            volunteer_id: Anonymous volunteer id
            module_id: Catalog module id
            score: Assessment score, 0-100
            time_spent_minutes: Time spent on this attempt

        Returns:
            {"passed", "certified", "certification_level", "attempts"}

        Raises:
            ValidationError: Score outside 0-100
            ModuleNotFound: Unknown module
            TrainingNotStarted: No progress record for the module
            StateError: Module already completed, or the volunteer's status
                is terminal
        """
        module = self._module(module_id)
        if not 0 <= score <= 100:
            raise ValidationError(f"Score must be 0-100, got {score}")
        if time_spent_minutes < 0:
            raise ValidationError(f"time_spent_minutes must be >= 0, got {time_spent_minutes}")

        progress = self.store.get_progress(volunteer_id, module_id)
        if progress is None:
            raise TrainingNotStarted(module_id)
        self._require_trainable(volunteer_id)
        if progress.status == TrainingStatus.COMPLETED:
            raise StateError(f"Module already completed: {module_id}")

        previous_level = self.get_certification_level(volunteer_id)
        now = self._clock()
        passed = score >= module.required_score

        progress.score = score
        progress.time_spent_minutes += time_spent_minutes
        if passed:
            progress.status = TrainingStatus.COMPLETED
            progress.completed_at = now
        else:
            progress.status = TrainingStatus.FAILED
            progress.attempts += 1
        self.store.save_progress(progress)

        record_audit(
            self.audit_logger,
            AuditAction.TRAINING_COMPLETED if passed else AuditAction.TRAINING_FAILED,
            volunteer_id,
            {
                "module_id": module_id,
                "score": score,
                "required_score": module.required_score,
                "attempts": progress.attempts,
            },
        )
        logger.info(
            "TRAINING_MODULE_COMPLETED" if passed else "TRAINING_MODULE_FAILED",
            extra={
                "volunteer_id": volunteer_id,
                "module_id": module_id,
                "score": score,
                "attempts": progress.attempts,
            }
        )

        level = self.get_certification_level(volunteer_id)
        if passed and level is not None:
            if level != previous_level:
                record_audit(
                    self.audit_logger,
                    AuditAction.CERTIFICATION_AWARDED,
                    volunteer_id,
                    {"level": level, "previous_level": previous_level},
                )
                logger.info(
                    "CERTIFICATION_AWARDED",
                    extra={"volunteer_id": volunteer_id, "level": level}
                )
            self.state_machine.activate_after_certification(volunteer_id)

        return {
            "passed": passed,
            "certified": level is not None,
            "certification_level": level,
            "attempts": progress.attempts,
        }

    def get_certification_level(self, volunteer_id: str) -> Optional[str]:
        return certification_level_for(
            self._completed_modules(volunteer_id), self.certification_levels
        )

    def get_training_progress(self, volunteer_id: str) -> List[TrainingProgress]:
        self._require_volunteer(volunteer_id)
        return sorted(
            self.store.list_progress(volunteer_id),
            key=lambda p: list(self.modules).index(p.module_id)
            if p.module_id in self.modules else len(self.modules),
        )

    def get_available_modules(self, volunteer_id: Optional[str] = None) -> List[TrainingModule]:
        """Modules a volunteer can start now (whole catalog if no volunteer)."""
        if volunteer_id is None:
            return list(self.modules.values())

        completed = set(self._completed_modules(volunteer_id))
        return [
            m for m in self.modules.values()
            if m.module_id not in completed and m.prerequisites <= completed
        ]

    def generate_training_analytics(self) -> Dict[str, Any]:
        """Completion rate and average score per module, plus level counts."""
        all_progress = self.store.list_progress()
        by_volunteer: Dict[str, List[TrainingProgress]] = {}
        for p in all_progress:
            by_volunteer.setdefault(p.volunteer_id, []).append(p)

        completion_rates: Dict[str, float] = {}
        average_scores: Dict[str, float] = {}
        for module_id in self.modules:
            records = [p for p in all_progress if p.module_id == module_id]
            completions = sum(1 for p in records if p.status == TrainingStatus.COMPLETED)
            scores = [p.score for p in records if p.score is not None]
            completion_rates[module_id] = (completions / len(records) * 100) if records else 0.0
            average_scores[module_id] = (sum(scores) / len(scores)) if scores else 0.0

        distribution = {level.level: 0 for level in self.certification_levels}
        for records in by_volunteer.values():
            level = certification_level_for(
                [p.module_id for p in records if p.status == TrainingStatus.COMPLETED],
                self.certification_levels,
            )
            if level is not None:
                distribution[level] += 1

        return {
            "total_volunteers": len(by_volunteer),
            "completion_rates": completion_rates,
            "average_scores": average_scores,
            "certification_distribution": distribution,
        }
