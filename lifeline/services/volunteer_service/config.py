"""Volunteer engine configuration, thresholds and training catalog.

Burnout thresholds and catalog contents come from the crisis line's
volunteer wellness and training programme.
"""
import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Tuple

from lifeline.shared.models import CertificationLevel, TrainingModule


@dataclass(frozen=True)
class VolunteerConfig:
    """Tunable limits of the engine.

    Every field can be overridden with a VOLUNTEER_<FIELD> env variable.
    """

    # Capacity
    max_concurrent_default: int = 3
    selection_limit: int = 50
    recency_window_minutes: int = 30

    # Burnout: a score at or above this blocks assignment
    burnout_threshold: float = 0.7

    # Response time estimate: base * (1 + load ratio) / response rate
    base_response_seconds: int = 60
    default_response_rate: float = 0.8
    # Floor for measured rates; 0.0 would make the estimate unbounded
    min_response_rate: float = 0.05

    # Emergency assignments should finish end-to-end within this budget
    emergency_target_ms: int = 1000

    # Interventions
    load_reduction_hours: int = 24
    mandatory_break_hours: int = 72
    break_reminder_hours: int = 4

    # Retention windows enforced by the store
    wellness_retention: int = 30
    alert_retention_days: int = 7
    performance_retention: int = 100

    # Monitoring loop intervals (seconds)
    wellness_sweep_interval: float = 300.0
    performance_rollup_interval: float = 3600.0
    health_check_interval: float = 60.0

    @classmethod
    def from_env(cls) -> "VolunteerConfig":
        """Create config from VOLUNTEER_* environment variables."""
        overrides = {}
        for name, default in cls().__dict__.items():
            raw = os.getenv(f"VOLUNTEER_{name.upper()}")
            if raw is not None:
                overrides[name] = type(default)(raw)
        return cls(**overrides)


@dataclass(frozen=True)
class RiskThreshold:
    """Medium/high/critical cut-offs for one burnout factor."""
    medium: float
    high: float
    critical: float


# Weights contributed by a factor at each band
RISK_WEIGHT_CRITICAL = 4
RISK_WEIGHT_HIGH = 3
RISK_WEIGHT_MEDIUM = 2

# Risk score breakpoints for the overall level
RISK_SCORE_CRITICAL = 12
RISK_SCORE_HIGH = 8
RISK_SCORE_MEDIUM = 4

BURNOUT_RISK_THRESHOLDS: Mapping[str, RiskThreshold] = {
    "session_count": RiskThreshold(15, 25, 35),              # per week
    "average_session_duration": RiskThreshold(45, 60, 90),   # minutes
    "consecutive_days": RiskThreshold(5, 7, 10),
    "high_stress_sessions": RiskThreshold(30, 50, 70),       # percentage
    "last_break_days": RiskThreshold(3, 5, 7),
    "self_reported_stress": RiskThreshold(6, 8, 9),          # 1-10 scale
    "response_time": RiskThreshold(300, 600, 1000),
    "escalation_rate": RiskThreshold(20, 35, 50),            # percentage
}

# Percentage factors are only derived from a week with at least this many sessions
MIN_SESSIONS_FOR_RATES = 5

# Wellness trend concerns over the last WELLNESS_TREND_WINDOW check-ins
WELLNESS_TREND_WINDOW = 7
WELLNESS_MIN_ENTRIES = 3
WELLNESS_STRESS_CONCERN = 7
WELLNESS_ENERGY_CONCERN = 4
WELLNESS_SATISFACTION_CONCERN = 5
WELLNESS_SUPPORT_REQUESTS_CONCERN = 3
WELLNESS_CONCERNS_FOR_INTERVENTION = 2

FOUNDATIONAL_MODULE = "crisis-basics"

TRAINING_MODULES: Tuple[TrainingModule, ...] = (
    TrainingModule(
        module_id="crisis-basics",
        name="Crisis Intervention Basics",
        description="Fundamental principles of crisis intervention and active listening",
        duration_minutes=120,
        required_score=80,
    ),
    TrainingModule(
        module_id="suicide-prevention",
        name="Suicide Prevention and Risk Assessment",
        description="Suicide risk assessment and prevention techniques",
        duration_minutes=180,
        required_score=90,
        prerequisites=frozenset({"crisis-basics"}),
    ),
    TrainingModule(
        module_id="trauma-informed-care",
        name="Trauma-Informed Care Principles",
        description="Understanding trauma responses and providing trauma-informed support",
        duration_minutes=150,
        required_score=85,
        prerequisites=frozenset({"crisis-basics"}),
    ),
    TrainingModule(
        module_id="de-escalation",
        name="De-escalation Techniques",
        description="Techniques for de-escalating tense situations",
        duration_minutes=90,
        required_score=85,
        prerequisites=frozenset({"crisis-basics"}),
    ),
)

# Ordered weakest to strongest
CERTIFICATION_LEVELS: Tuple[CertificationLevel, ...] = (
    CertificationLevel(
        level="basic",
        required_modules=frozenset({"crisis-basics"}),
        validity_months=12,
    ),
    CertificationLevel(
        level="intermediate",
        required_modules=frozenset({"crisis-basics", "de-escalation", "trauma-informed-care"}),
        validity_months=18,
    ),
    CertificationLevel(
        level="advanced",
        required_modules=frozenset({
            "crisis-basics", "de-escalation", "trauma-informed-care", "suicide-prevention",
        }),
        validity_months=24,
    ),
    CertificationLevel(
        level="expert",
        required_modules=frozenset({
            "crisis-basics", "de-escalation", "trauma-informed-care", "suicide-prevention",
        }),
        validity_months=36,
        renewal_required=False,
    ),
)

# Modules an experienced applicant may skip at enrollment
WAIVABLE_FOR_EXPERIENCE: Dict[str, FrozenSet[str]] = {
    "beginner": frozenset(),
    "intermediate": frozenset({"de-escalation"}),
    "professional": frozenset({"de-escalation", "trauma-informed-care"}),
}

# Application validation
MIN_MOTIVATION_LENGTH = 100
MIN_REFERENCES = 2
MIN_AGE = 18

# Soft matching weights
MATCH_WEIGHTS: Mapping[str, float] = {
    "specialization": 0.35,
    "availability": 0.25,
    "response_rate": 0.20,
    "rating": 0.15,
    "language": 0.05,
}
MIN_MATCH_SCORE = 0.6
EMERGENCY_RESPONDER_BONUS = 0.1
RECENT_ACTIVITY_BONUS = 0.1
RECENT_ACTIVITY_SECONDS = 300

# Crisis keywords to the specializations best suited to them
CRISIS_SPECIALIZATIONS: Mapping[str, Tuple[str, ...]] = {
    "suicide": ("suicide-prevention", "crisis-intervention"),
    "self-harm": ("self-harm-support", "crisis-intervention"),
    "panic": ("anxiety-support", "panic-disorder"),
    "depression": ("depression-support", "mood-disorders"),
    "trauma": ("trauma-support", "ptsd-support"),
    "addiction": ("addiction-support", "substance-abuse"),
}

# System health bands by number of volunteers at or above burnout threshold
HEALTH_DEGRADED_BURNOUT_CASES = 5
HEALTH_CRITICAL_BURNOUT_CASES = 15
HEALTHY_ACTIVE_RATIO = 0.7
