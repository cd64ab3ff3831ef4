"""Volunteer lifecycle domain models.

Core enums and records shared by the training gate, burnout assessor,
matching engine and record stores. Volunteers are identified only by an
anonymous id; nothing here links back to legal identity.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set


class VolunteerStatus(Enum):
    """Lifecycle states of a volunteer.

    FAILED, REJECTED and REVOKED are terminal.
    """
    PENDING = "pending"
    TRAINING = "training"
    BACKGROUND_CHECK = "background_check"
    VERIFIED = "verified"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    ON_BREAK = "on_break"           # Mandatory burnout break, see burnout.py
    FAILED = "failed"
    REJECTED = "rejected"
    REVOKED = "revoked"


class TrainingStatus(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BurnoutRiskLevel(Enum):
    """Burnout risk bands, ordered weakest to strongest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InterventionType(Enum):
    BREAK_REMINDER = "break_reminder"
    WORKLOAD_REDUCTION = "workload_reduction"
    MANDATORY_BREAK = "mandatory_break"


class AssignmentPriority(Enum):
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class SystemHealth(Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


@dataclass
class Volunteer:
    """Mutable volunteer record.

    Stored in the volunteer record store; every component reads and
    writes through it. Invariants: 0 <= current_load <= max_concurrent
    and is_active implies status == ACTIVE.
    """
    volunteer_id: str
    status: VolunteerStatus = VolunteerStatus.PENDING
    specializations: Set[str] = field(default_factory=set)
    languages: Set[str] = field(default_factory=lambda: {"en"})
    is_active: bool = False
    current_load: int = 0
    max_concurrent: int = 3
    average_rating: float = 0.0
    response_rate: float = 0.8
    sessions_count: int = 0
    hours_volunteered: float = 0.0
    burnout_score: float = 0.0
    last_active: Optional[datetime] = None
    emergency_responder: bool = False
    emergency_available: bool = False
    schedule: Dict[str, Any] = field(default_factory=dict)
    timezone: str = "UTC"
    identity_hash: Optional[str] = None
    # Intervention bookkeeping
    base_max_concurrent: int = 3
    load_reduced_until: Optional[datetime] = None
    break_until: Optional[datetime] = None
    follow_up_required: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.max_concurrent

    def to_profile(self) -> "VolunteerProfile":
        """Project the record onto the view returned by selection."""
        return VolunteerProfile(
            volunteer_id=self.volunteer_id,
            specializations=frozenset(self.specializations),
            languages=frozenset(self.languages),
            current_load=self.current_load,
            max_concurrent=self.max_concurrent,
            average_rating=self.average_rating,
            response_rate=self.response_rate,
            is_emergency_responder=self.emergency_responder,
            last_active=self.last_active,
            burnout_score=self.burnout_score,
        )


@dataclass(frozen=True)
class VolunteerProfile:
    """Read-only snapshot of an assignable volunteer."""
    volunteer_id: str
    specializations: FrozenSet[str]
    languages: FrozenSet[str]
    current_load: int
    max_concurrent: int
    average_rating: float
    response_rate: float
    is_emergency_responder: bool
    last_active: Optional[datetime]
    burnout_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volunteer_id": self.volunteer_id,
            "specializations": sorted(self.specializations),
            "languages": sorted(self.languages),
            "current_load": self.current_load,
            "max_concurrent": self.max_concurrent,
            "average_rating": round(self.average_rating, 3),
            "response_rate": round(self.response_rate, 3),
            "is_emergency_responder": self.is_emergency_responder,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "burnout_score": round(self.burnout_score, 3),
        }


@dataclass(frozen=True)
class TrainingModule:
    """Static catalog entry for a training module."""
    module_id: str
    name: str
    description: str
    duration_minutes: int
    required_score: int          # Percentage, 0-100
    prerequisites: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class CertificationLevel:
    """Static catalog entry for a certification tier."""
    level: str
    required_modules: FrozenSet[str]
    validity_months: int
    renewal_required: bool = True


@dataclass
class TrainingProgress:
    """Per (volunteer, module) training record, retained for audit."""
    volunteer_id: str
    module_id: str
    status: TrainingStatus = TrainingStatus.NOT_STARTED
    score: Optional[int] = None
    attempts: int = 1
    time_spent_minutes: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volunteer_id": self.volunteer_id,
            "module_id": self.module_id,
            "status": self.status.value,
            "score": self.score,
            "attempts": self.attempts,
            "time_spent_minutes": self.time_spent_minutes,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class WellnessCheckIn:
    """Self-reported wellness check-in on a 1-10 scale."""
    volunteer_id: str
    stress_level: int
    energy_level: int
    satisfaction_level: int
    workload_rating: int = 5
    support_needed: bool = False
    notes: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        for name in ("stress_level", "energy_level", "satisfaction_level", "workload_rating"):
            value = getattr(self, name)
            if not 1 <= value <= 10:
                raise ValueError(f"{name} must be 1-10, got {value}")


@dataclass(frozen=True)
class BurnoutAlert:
    """Result of a burnout risk assessment.

    Retained by the store for a bounded window for trend analysis.
    """
    volunteer_id: str
    risk_level: BurnoutRiskLevel
    risk_score: int
    factors: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    action_required: bool = False
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volunteer_id": self.volunteer_id,
            "risk_level": self.risk_level.value,
            "risk_score": self.risk_score,
            "factors": list(self.factors),
            "recommendations": list(self.recommendations),
            "action_required": self.action_required,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class WellnessIntervention:
    """Automatic action taken in response to elevated burnout risk."""
    volunteer_id: str
    intervention_type: InterventionType
    duration_hours: int
    message: str
    follow_up_required: bool
    triggered_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Assignment:
    """Decision record linking a volunteer to a crisis session."""
    assignment_id: str
    volunteer_id: str
    session_id: str
    priority: AssignmentPriority
    assigned_at: datetime
    estimated_response_time_seconds: int
    execution_time_ms: float = 0.0
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "volunteer_id": self.volunteer_id,
            "session_id": self.session_id,
            "priority": self.priority.value,
            "assigned_at": self.assigned_at.isoformat(),
            "estimated_response_time_seconds": self.estimated_response_time_seconds,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class SessionOutcome:
    """Outcome reported by the session layer when a session ends."""
    duration_seconds: float
    user_satisfaction: Optional[float] = None    # 1-5 scale
    escalated: bool = False
    response_time_seconds: Optional[float] = None
    high_stress: bool = False
    follow_up_completed: bool = True

    def __post_init__(self):
        if self.duration_seconds < 0:
            raise ValueError(f"duration_seconds must be >= 0, got {self.duration_seconds}")
        if self.user_satisfaction is not None and not 1 <= self.user_satisfaction <= 5:
            raise ValueError(f"user_satisfaction must be 1-5, got {self.user_satisfaction}")


@dataclass(frozen=True)
class SessionMetrics:
    """One completed session, retained by the store.

    The single session history read by both burnout assessment and
    performance analysis.
    """
    volunteer_id: str
    session_id: str
    timestamp: datetime
    duration_minutes: float
    escalated: bool
    follow_up_completed: bool
    response_time_seconds: Optional[float] = None
    user_satisfaction: Optional[float] = None
    high_stress: bool = False

    @classmethod
    def from_outcome(
        cls,
        volunteer_id: str,
        session_id: str,
        outcome: SessionOutcome,
        timestamp: datetime,
    ) -> "SessionMetrics":
        return cls(
            volunteer_id=volunteer_id,
            session_id=session_id,
            timestamp=timestamp,
            duration_minutes=outcome.duration_seconds / 60,
            escalated=outcome.escalated,
            follow_up_completed=outcome.follow_up_completed,
            response_time_seconds=outcome.response_time_seconds,
            user_satisfaction=outcome.user_satisfaction,
            high_stress=outcome.high_stress,
        )


@dataclass(frozen=True)
class VolunteerApplication:
    """Application submitted by a prospective volunteer."""
    full_name: str
    email: str
    motivation: str
    availability: Dict[str, Any]
    references: List[str]
    age: Optional[int] = None
    specializations: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=lambda: ["en"])
    timezone: str = "UTC"
    experience: str = "beginner"
    emergency_responder: bool = False
