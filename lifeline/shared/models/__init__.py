"""Shared domain models for Lifeline services."""
from .volunteer import (
    VolunteerStatus,
    TrainingStatus,
    BurnoutRiskLevel,
    InterventionType,
    AssignmentPriority,
    SystemHealth,
    Volunteer,
    VolunteerProfile,
    TrainingModule,
    CertificationLevel,
    TrainingProgress,
    WellnessCheckIn,
    BurnoutAlert,
    WellnessIntervention,
    Assignment,
    SessionOutcome,
    SessionMetrics,
    VolunteerApplication,
)

__all__ = [
    "VolunteerStatus",
    "TrainingStatus",
    "BurnoutRiskLevel",
    "InterventionType",
    "AssignmentPriority",
    "SystemHealth",
    "Volunteer",
    "VolunteerProfile",
    "TrainingModule",
    "CertificationLevel",
    "TrainingProgress",
    "WellnessCheckIn",
    "BurnoutAlert",
    "WellnessIntervention",
    "Assignment",
    "SessionOutcome",
    "SessionMetrics",
    "VolunteerApplication",
]
