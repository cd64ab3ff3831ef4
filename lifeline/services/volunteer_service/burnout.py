"""Burnout risk assessment and automatic wellness interventions.

Risk factors are scored against fixed medium/high/critical thresholds.
The resulting level drives an escalating intervention:

- medium: break reminder, no state change
- high: max concurrent sessions halved for 24 hours
- critical: ACTIVE -> ON_BREAK for 72 hours, human follow-up required
  before the volunteer can return
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from lifeline.services.audit_service import AuditAction, AuditLogger
from lifeline.shared.models import (
    BurnoutAlert,
    BurnoutRiskLevel,
    InterventionType,
    VolunteerStatus,
    WellnessCheckIn,
    WellnessIntervention,
)
from .audit import record_audit
from .config import (
    BURNOUT_RISK_THRESHOLDS,
    MIN_SESSIONS_FOR_RATES,
    RISK_SCORE_CRITICAL,
    RISK_SCORE_HIGH,
    RISK_SCORE_MEDIUM,
    RISK_WEIGHT_CRITICAL,
    RISK_WEIGHT_HIGH,
    RISK_WEIGHT_MEDIUM,
    VolunteerConfig,
    WELLNESS_CONCERNS_FOR_INTERVENTION,
    WELLNESS_ENERGY_CONCERN,
    WELLNESS_MIN_ENTRIES,
    WELLNESS_SATISFACTION_CONCERN,
    WELLNESS_STRESS_CONCERN,
    WELLNESS_SUPPORT_REQUESTS_CONCERN,
    WELLNESS_TREND_WINDOW,
)
from .errors import NotFound, ValidationError
from .state_machine import StatusStateMachine
from .store import VolunteerStore

logger = logging.getLogger(__name__)

_RISK_ORDER = {
    BurnoutRiskLevel.LOW: 1,
    BurnoutRiskLevel.MEDIUM: 2,
    BurnoutRiskLevel.HIGH: 3,
    BurnoutRiskLevel.CRITICAL: 4,
}

_FACTOR_RECOMMENDATIONS: Mapping[str, Tuple[str, ...]] = {
    "session_count": (
        "Consider reducing the number of sessions per week",
        "Take regular breaks between sessions",
    ),
    "average_session_duration": (
        "Try to keep sessions under 45 minutes when possible",
        "Use session handoff techniques for longer cases",
    ),
    "consecutive_days": (
        "Take at least one full day off per week",
        "Consider a longer break period",
    ),
    "self_reported_stress": (
        "Practice stress management techniques",
        "Consider speaking with a peer support volunteer",
        "Review self-care strategies",
    ),
    "escalation_rate": (
        "Review crisis intervention techniques",
        "Consider additional training modules",
        "Don't hesitate to escalate when needed",
    ),
}

_ELEVATED_RECOMMENDATIONS = (
    "Reach out to volunteer support team",
    "Consider temporary reduction in volunteer activities",
)

_INTERVENTION_MESSAGES = {
    InterventionType.BREAK_REMINDER:
        "You've been doing great work! Consider taking a 4-hour break to recharge.",
    InterventionType.WORKLOAD_REDUCTION:
        "We've noticed you might be experiencing high stress. We're temporarily "
        "reducing your session load and recommend a 24-hour break.",
    InterventionType.MANDATORY_BREAK:
        "For your wellbeing, we're requiring a 72-hour break. Please reach out "
        "to our volunteer support team.",
}

# Consecutive-day streaks longer than this are not tracked
_MAX_STREAK_DAYS = 30


@dataclass(frozen=True)
class RiskScore:
    level: BurnoutRiskLevel
    score: int
    factors: List[str]
    contributing: List[str]


def score_risk_factors(factors: Mapping[str, float]) -> RiskScore:
    """Score factor values against the burnout thresholds.

    Unknown factors are ignored; values below the medium threshold
    contribute nothing and are not reported.
    """
    score = 0
    described: List[str] = []
    contributing: List[str] = []

    for name, value in factors.items():
        threshold = BURNOUT_RISK_THRESHOLDS.get(name)
        if threshold is None or value is None:
            continue
        if value >= threshold.critical:
            described.append(f"Critical {name}: {value}")
            score += RISK_WEIGHT_CRITICAL
        elif value >= threshold.high:
            described.append(f"High {name}: {value}")
            score += RISK_WEIGHT_HIGH
        elif value >= threshold.medium:
            described.append(f"Medium {name}: {value}")
            score += RISK_WEIGHT_MEDIUM
        else:
            continue
        contributing.append(name)

    if score >= RISK_SCORE_CRITICAL:
        level = BurnoutRiskLevel.CRITICAL
    elif score >= RISK_SCORE_HIGH:
        level = BurnoutRiskLevel.HIGH
    elif score >= RISK_SCORE_MEDIUM:
        level = BurnoutRiskLevel.MEDIUM
    else:
        level = BurnoutRiskLevel.LOW

    return RiskScore(level=level, score=score, factors=described, contributing=contributing)


def burnout_score_for(risk_score: int, threshold: float) -> float:
    """Normalize a risk score so that a critical result reaches the threshold."""
    return min(1.0, risk_score * threshold / RISK_SCORE_CRITICAL)


def recommendations_for(level: BurnoutRiskLevel, contributing: List[str]) -> List[str]:
    recommendations: List[str] = []
    for name in contributing:
        recommendations.extend(_FACTOR_RECOMMENDATIONS.get(name, ()))
    if level in (BurnoutRiskLevel.HIGH, BurnoutRiskLevel.CRITICAL):
        recommendations.extend(_ELEVATED_RECOMMENDATIONS)
    return recommendations


def _trend(first: float, second: float, higher_is_better: bool) -> str:
    if second > first + 0.5:
        return "improving" if higher_is_better else "worsening"
    if second < first - 0.5:
        return "worsening" if higher_is_better else "improving"
    return "stable"


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class BurnoutAssessor:
    """Scores burnout risk and applies interventions."""

    def __init__(
        self,
        store: VolunteerStore,
        state_machine: StatusStateMachine,
        audit_logger: AuditLogger,
        config: Optional[VolunteerConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.state_machine = state_machine
        self.audit_logger = audit_logger
        self.config = config or VolunteerConfig()
        self._clock = clock

    def assess_burnout_risk(
        self,
        volunteer_id: str,
        factors: Mapping[str, float],
    ) -> BurnoutAlert:
        """Assess risk from factor values and trigger the matching intervention.

        Args:
            volunteer_id: Anonymous volunteer id
            factors: Factor name to observed value, e.g. {"session_count": 40}

        Returns:
            Stored BurnoutAlert

        Raises:
            NotFound: Unknown volunteer

        Logs:
            - BURNOUT_RISK_ASSESSED: Every assessment
        """
        if self.store.get_volunteer(volunteer_id) is None:
            raise NotFound(volunteer_id)

        result = score_risk_factors(factors)
        now = self._clock()
        alert = BurnoutAlert(
            volunteer_id=volunteer_id,
            risk_level=result.level,
            risk_score=result.score,
            factors=result.factors,
            recommendations=recommendations_for(result.level, result.contributing),
            action_required=result.level != BurnoutRiskLevel.LOW,
            timestamp=now,
        )

        self.store.add_alert(alert)
        self.store.update_volunteer(
            volunteer_id,
            {"burnout_score": burnout_score_for(result.score, self.config.burnout_threshold)},
        )

        logger.info(
            "BURNOUT_RISK_ASSESSED",
            extra={
                "volunteer_id": volunteer_id,
                "risk_level": result.level.value,
                "risk_score": result.score,
                "factor_count": len(result.factors),
            }
        )

        if alert.action_required:
            record_audit(
                self.audit_logger,
                AuditAction.BURNOUT_ALERT,
                volunteer_id,
                {
                    "risk_level": result.level.value,
                    "risk_score": result.score,
                    "factors": result.factors,
                },
            )
            self.trigger_intervention(volunteer_id, result.level)

        return alert

    def trigger_intervention(
        self,
        volunteer_id: str,
        level: BurnoutRiskLevel,
    ) -> Optional[WellnessIntervention]:
        """Apply the intervention for a risk level; LOW does nothing."""
        now = self._clock()

        if level == BurnoutRiskLevel.MEDIUM:
            intervention_type, hours, follow_up = (
                InterventionType.BREAK_REMINDER, self.config.break_reminder_hours, False
            )
        elif level == BurnoutRiskLevel.HIGH:
            intervention_type, hours, follow_up = (
                InterventionType.WORKLOAD_REDUCTION, self.config.load_reduction_hours, True
            )
            self._reduce_load(volunteer_id, now + timedelta(hours=hours))
        elif level == BurnoutRiskLevel.CRITICAL:
            intervention_type, hours, follow_up = (
                InterventionType.MANDATORY_BREAK, self.config.mandatory_break_hours, True
            )
            self._mandatory_break(volunteer_id, now + timedelta(hours=hours))
        else:
            return None

        intervention = WellnessIntervention(
            volunteer_id=volunteer_id,
            intervention_type=intervention_type,
            duration_hours=hours,
            message=_INTERVENTION_MESSAGES[intervention_type],
            follow_up_required=follow_up,
            triggered_at=now,
        )
        self.store.add_intervention(intervention)

        record_audit(
            self.audit_logger,
            AuditAction.INTERVENTION_TRIGGERED,
            volunteer_id,
            {
                "intervention_type": intervention_type.value,
                "duration_hours": hours,
                "follow_up_required": follow_up,
            },
        )

        log = logger.critical if level == BurnoutRiskLevel.CRITICAL else logger.info
        log(
            "BURNOUT_INTERVENTION_TRIGGERED",
            extra={
                "volunteer_id": volunteer_id,
                "intervention_type": intervention_type.value,
                "duration_hours": hours,
            }
        )

        return intervention

    def _reduce_load(self, volunteer_id: str, until: datetime) -> None:
        # Never below in-flight load; release() ratchets down from there
        if self.store.reduce_capacity(volunteer_id, until) is None:
            raise NotFound(volunteer_id)

    def _mandatory_break(self, volunteer_id: str, until: datetime) -> None:
        volunteer = self.store.update_volunteer(
            volunteer_id,
            {"break_until": until, "follow_up_required": True},
        )
        if volunteer is None:
            raise NotFound(volunteer_id)
        if volunteer.status == VolunteerStatus.ACTIVE:
            self.state_machine.transition(
                volunteer_id,
                VolunteerStatus.ON_BREAK,
                reason="burnout_mandatory_break",
            )

    def record_wellness_check_in(
        self,
        volunteer_id: str,
        metrics: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Store a self-reported check-in and look for concerning trends.

        Args:
            volunteer_id: Anonymous volunteer id
            metrics: stress_level, energy_level, satisfaction_level,
                workload_rating (1-10), support_needed, notes

        Returns:
            {"recorded": True, "concerns": [...], "intervention": type or None}

        Raises:
            NotFound: Unknown volunteer
            ValidationError: Missing or out-of-range values
        """
        if self.store.get_volunteer(volunteer_id) is None:
            raise NotFound(volunteer_id)

        try:
            check_in = WellnessCheckIn(
                volunteer_id=volunteer_id,
                stress_level=int(metrics["stress_level"]),
                energy_level=int(metrics["energy_level"]),
                satisfaction_level=int(metrics["satisfaction_level"]),
                workload_rating=int(metrics.get("workload_rating", 5)),
                support_needed=bool(metrics.get("support_needed", False)),
                notes=metrics.get("notes"),
                timestamp=self._clock(),
            )
        except KeyError as e:
            raise ValidationError(f"Missing wellness metric: {e.args[0]}") from e
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e

        self.store.add_check_in(check_in)
        record_audit(
            self.audit_logger,
            AuditAction.WELLNESS_CHECK_IN,
            volunteer_id,
            {"stress_level": check_in.stress_level, "support_needed": check_in.support_needed},
        )

        concerns = self._wellness_concerns(self.store.list_check_ins(volunteer_id))
        intervention = None
        if len(concerns) >= WELLNESS_CONCERNS_FOR_INTERVENTION:
            logger.warning(
                "WELLNESS_CONCERNS_DETECTED",
                extra={"volunteer_id": volunteer_id, "concerns": concerns}
            )
            intervention = self.trigger_intervention(volunteer_id, BurnoutRiskLevel.MEDIUM)

        return {
            "recorded": True,
            "concerns": concerns,
            "intervention": intervention.intervention_type.value if intervention else None,
        }

    @staticmethod
    def _wellness_concerns(history: List[WellnessCheckIn]) -> List[str]:
        if len(history) < WELLNESS_MIN_ENTRIES:
            return []

        recent = history[-WELLNESS_TREND_WINDOW:]
        concerns = []
        if _mean([c.stress_level for c in recent]) >= WELLNESS_STRESS_CONCERN:
            concerns.append("High stress levels")
        if _mean([c.energy_level for c in recent]) <= WELLNESS_ENERGY_CONCERN:
            concerns.append("Low energy levels")
        if _mean([c.satisfaction_level for c in recent]) <= WELLNESS_SATISFACTION_CONCERN:
            concerns.append("Low satisfaction")
        if sum(1 for c in recent if c.support_needed) >= WELLNESS_SUPPORT_REQUESTS_CONCERN:
            concerns.append("Frequent support requests")
        return concerns

    def assess_post_session(self, volunteer_id: str) -> BurnoutAlert:
        """Re-assess risk from the volunteer's stored session history.

        Reads the sessions retained by the store, so the just-completed
        session must be recorded first. Escalated sessions weigh double
        in the escalation rate and count as high-stress.
        """
        now = self._clock()
        history = self.store.list_session_metrics(volunteer_id)
        week = [m for m in history if m.timestamp >= now - timedelta(days=7)]
        days = {m.timestamp.date() for m in history}

        factors: Dict[str, float] = {"session_count": len(week)}

        factors["average_session_duration"] = _mean([m.duration_minutes for m in week])

        streak = 0
        day = now.date()
        while day in days and streak < _MAX_STREAK_DAYS:
            streak += 1
            day -= timedelta(days=1)
        factors["consecutive_days"] = streak

        if len(week) >= MIN_SESSIONS_FOR_RATES:
            stressful = sum(1 for m in week if m.high_stress or m.escalated)
            factors["high_stress_sessions"] = stressful / len(week) * 100

            escalated = sum(1 for m in week if m.escalated)
            factors["escalation_rate"] = (2 * escalated) / (len(week) + escalated) * 100

        response_times = [m.response_time_seconds for m in week if m.response_time_seconds is not None]
        if response_times:
            factors["response_time"] = _mean(response_times)

        check_ins = self.store.list_check_ins(volunteer_id)
        if check_ins and check_ins[-1].timestamp >= now - timedelta(days=7):
            factors["self_reported_stress"] = check_ins[-1].stress_level

        return self.assess_burnout_risk(volunteer_id, factors)

    def expire_interventions(self, now: Optional[datetime] = None) -> List[str]:
        """Restore capacity for workload reductions that have run their course.

        Returns:
            Ids of volunteers whose capacity was restored
        """
        now = now or self._clock()
        restored = []
        for candidate in self.store.list_volunteers():
            if candidate.load_reduced_until is None or candidate.load_reduced_until > now:
                continue
            # Re-checked atomically; a reduction extended since the snapshot stays
            volunteer = self.store.restore_capacity(candidate.volunteer_id, now)
            if volunteer is None:
                continue
            record_audit(
                self.audit_logger,
                AuditAction.INTERVENTION_EXPIRED,
                volunteer.volunteer_id,
                {
                    "intervention_type": InterventionType.WORKLOAD_REDUCTION.value,
                    "max_concurrent": volunteer.base_max_concurrent,
                },
            )
            logger.info(
                "WORKLOAD_REDUCTION_EXPIRED",
                extra={
                    "volunteer_id": volunteer.volunteer_id,
                    "max_concurrent": volunteer.base_max_concurrent,
                }
            )
            restored.append(volunteer.volunteer_id)
        return restored

    def current_risk_level(self, volunteer_id: str) -> BurnoutRiskLevel:
        alerts = self.store.list_alerts(volunteer_id=volunteer_id)
        return alerts[-1].risk_level if alerts else BurnoutRiskLevel.LOW

    def get_wellness_summary(self, volunteer_id: str) -> Dict[str, Any]:
        if self.store.get_volunteer(volunteer_id) is None:
            raise NotFound(volunteer_id)

        since = self._clock() - timedelta(days=self.config.alert_retention_days)
        check_ins = self.store.list_check_ins(volunteer_id)
        return {
            "volunteer_id": volunteer_id,
            "current_risk_level": self.current_risk_level(volunteer_id).value,
            "recent_check_ins": check_ins[-WELLNESS_TREND_WINDOW:],
            "active_alerts": self.store.list_alerts(volunteer_id=volunteer_id, since=since),
            "interventions": self.store.list_interventions(volunteer_id)[-5:],
        }

    def generate_wellness_report(self, volunteer_id: str) -> Dict[str, Any]:
        """Overall wellness band, trends and advice from recent check-ins."""
        if self.store.get_volunteer(volunteer_id) is None:
            raise NotFound(volunteer_id)

        now = self._clock()
        recent = self.store.list_check_ins(volunteer_id)[-WELLNESS_TREND_WINDOW:]
        if not recent:
            return {
                "overall_wellness": "good",
                "trends": {"stress": "stable", "energy": "stable", "satisfaction": "stable"},
                "recommendations": ["Complete your first wellness check-in"],
                "next_check_in": now + timedelta(days=7),
            }

        stress = _mean([c.stress_level for c in recent])
        energy = _mean([c.energy_level for c in recent])
        satisfaction = _mean([c.satisfaction_level for c in recent])

        if stress <= 4 and energy >= 7 and satisfaction >= 7:
            overall = "excellent"
        elif stress <= 6 and energy >= 5 and satisfaction >= 6:
            overall = "good"
        elif stress <= 8 and energy >= 3 and satisfaction >= 4:
            overall = "concerning"
        else:
            overall = "critical"

        trends = {"stress": "stable", "energy": "stable", "satisfaction": "stable"}
        if len(recent) >= WELLNESS_MIN_ENTRIES:
            half = len(recent) // 2
            first, second = recent[:half], recent[half:]
            trends = {
                "stress": _trend(
                    _mean([c.stress_level for c in first]),
                    _mean([c.stress_level for c in second]),
                    higher_is_better=False,
                ),
                "energy": _trend(
                    _mean([c.energy_level for c in first]),
                    _mean([c.energy_level for c in second]),
                    higher_is_better=True,
                ),
                "satisfaction": _trend(
                    _mean([c.satisfaction_level for c in first]),
                    _mean([c.satisfaction_level for c in second]),
                    higher_is_better=True,
                ),
            }

        recommendations = []
        if stress > 6:
            recommendations.append("Practice stress reduction techniques (deep breathing, meditation)")
            recommendations.append("Consider shorter volunteer sessions")
        if energy < 5:
            recommendations.append("Ensure adequate sleep and rest between sessions")
            recommendations.append("Take regular breaks during volunteer work")
        if satisfaction < 6:
            recommendations.append("Reflect on what aspects of volunteering bring you joy")
            recommendations.append("Consider trying different types of volunteer activities")
        if trends["stress"] == "worsening":
            recommendations.append("Monitor stress levels closely and consider reducing workload")
        if trends["energy"] == "worsening":
            recommendations.append("Focus on energy management and self-care practices")
        if trends["satisfaction"] == "worsening":
            recommendations.append("Discuss concerns with volunteer coordinator")

        return {
            "overall_wellness": overall,
            "trends": trends,
            "recommendations": recommendations,
            "next_check_in": now + timedelta(days=3),
        }

    def get_volunteers_at_risk(self) -> List[Dict[str, Any]]:
        """Volunteers whose latest alert in the last 24h is high or critical."""
        since = self._clock() - timedelta(hours=24)
        latest: Dict[str, BurnoutAlert] = {}
        for alert in self.store.list_alerts(since=since):
            latest[alert.volunteer_id] = alert

        at_risk = [
            {
                "volunteer_id": alert.volunteer_id,
                "risk_level": alert.risk_level.value,
                "last_alert": alert.timestamp,
            }
            for alert in latest.values()
            if alert.risk_level in (BurnoutRiskLevel.HIGH, BurnoutRiskLevel.CRITICAL)
        ]
        return sorted(
            at_risk,
            key=lambda r: _RISK_ORDER[BurnoutRiskLevel(r["risk_level"])],
            reverse=True,
        )

    def generate_burnout_analytics(self) -> Dict[str, Any]:
        """Risk distribution, intervention counts and average wellness."""
        distribution = {level.value: 0 for level in BurnoutRiskLevel}
        check_ins: List[WellnessCheckIn] = []
        for volunteer in self.store.list_volunteers():
            distribution[self.current_risk_level(volunteer.volunteer_id).value] += 1
            check_ins.extend(self.store.list_check_ins(volunteer.volunteer_id))

        intervention_stats = {t.value: 0 for t in InterventionType}
        for intervention in self.store.list_interventions():
            intervention_stats[intervention.intervention_type.value] += 1

        return {
            "total_volunteers": sum(distribution.values()),
            "risk_distribution": distribution,
            "intervention_stats": intervention_stats,
            "average_wellness_scores": {
                "stress": _mean([c.stress_level for c in check_ins]),
                "energy": _mean([c.energy_level for c in check_ins]),
                "satisfaction": _mean([c.satisfaction_level for c in check_ins]),
                "workload": _mean([c.workload_rating for c in check_ins]),
            },
        }
