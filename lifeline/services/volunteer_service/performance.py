"""Volunteer performance monitoring.

Records completed sessions in the volunteer store, which retains a bounded
history per volunteer, and derives quality metrics against fixed
benchmarks. The hourly rollup feeds the observed responsiveness back
into each volunteer's response_rate, which matching and response-time
estimates depend on.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from lifeline.shared.models import SessionMetrics, SessionOutcome
from .errors import ValidationError
from .store import VolunteerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Benchmark:
    excellent: float
    good: float
    acceptable: float


BENCHMARKS: Dict[str, Benchmark] = {
    "response_time": Benchmark(30, 60, 120),          # seconds
    "session_duration": Benchmark(30, 45, 60),        # minutes
    "escalation_rate": Benchmark(10, 20, 35),         # percentage
    "satisfaction": Benchmark(4.5, 4.0, 3.5),         # 1-5 scale
    "follow_up_rate": Benchmark(95, 85, 75),          # percentage
}

COMPOSITE_WEIGHTS = {
    "response_time": 0.2,
    "session_quality": 0.25,
    "satisfaction": 0.25,
    "follow_up": 0.15,
    "efficiency": 0.15,
}

PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90}

_RECOMMENDATIONS = {
    "Response time needs improvement": (
        "Practice quick assessment techniques",
        "Review crisis intervention protocols",
    ),
    "Session duration optimization needed": (
        "Focus on efficient problem-solving techniques",
        "Practice session closure and handoff procedures",
    ),
    "High escalation rate - consider additional training": (
        "Review escalation criteria and procedures",
        "Practice de-escalation techniques",
    ),
    "User satisfaction below expectations": (
        "Focus on active listening and empathy",
        "Seek feedback from experienced volunteers",
    ),
    "Follow-up completion needs improvement": (
        "Set reminders for follow-up activities",
        "Review follow-up protocols and requirements",
    ),
}


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _percent(count: int, total: int) -> float:
    return count / total * 100 if total else 0.0


def summarize(metrics: List[SessionMetrics]) -> Dict[str, Any]:
    total = len(metrics)
    return {
        "total_sessions": total,
        "average_response_time": _mean(
            [m.response_time_seconds for m in metrics if m.response_time_seconds is not None]
        ),
        "average_session_duration": _mean([m.duration_minutes for m in metrics]),
        "escalation_rate": _percent(sum(1 for m in metrics if m.escalated), total),
        "satisfaction_score": _mean(
            [m.user_satisfaction for m in metrics if m.user_satisfaction is not None]
        ),
        "follow_up_rate": _percent(sum(1 for m in metrics if m.follow_up_completed), total),
    }


def composite_score(summary: Dict[str, Any]) -> float:
    """Weighted 0-100 quality score; lower time and escalation score higher."""
    response = max(0.0, 100 - summary["average_response_time"] / BENCHMARKS["response_time"].acceptable * 100)
    quality = max(0.0, 100 - summary["escalation_rate"] / BENCHMARKS["escalation_rate"].acceptable * 100)
    satisfaction = summary["satisfaction_score"] / 5 * 100
    follow_up = summary["follow_up_rate"]
    efficiency = max(0.0, 100 - summary["average_session_duration"] / BENCHMARKS["session_duration"].acceptable * 100)

    return (
        response * COMPOSITE_WEIGHTS["response_time"]
        + quality * COMPOSITE_WEIGHTS["session_quality"]
        + satisfaction * COMPOSITE_WEIGHTS["satisfaction"]
        + follow_up * COMPOSITE_WEIGHTS["follow_up"]
        + efficiency * COMPOSITE_WEIGHTS["efficiency"]
    )


def _assess_areas(summary: Dict[str, Any]):
    strengths: List[str] = []
    improvement: List[str] = []

    response = summary["average_response_time"]
    if response <= BENCHMARKS["response_time"].excellent:
        strengths.append("Excellent response time")
    elif response <= BENCHMARKS["response_time"].good:
        strengths.append("Good response time")
    elif response > BENCHMARKS["response_time"].acceptable:
        improvement.append("Response time needs improvement")

    duration = summary["average_session_duration"]
    if duration <= BENCHMARKS["session_duration"].excellent:
        strengths.append("Efficient session management")
    elif duration > BENCHMARKS["session_duration"].acceptable:
        improvement.append("Session duration optimization needed")

    escalation = summary["escalation_rate"]
    if escalation <= BENCHMARKS["escalation_rate"].excellent:
        strengths.append("Excellent crisis resolution skills")
    elif escalation > BENCHMARKS["escalation_rate"].acceptable:
        improvement.append("High escalation rate - consider additional training")

    satisfaction = summary["satisfaction_score"]
    if satisfaction >= BENCHMARKS["satisfaction"].excellent:
        strengths.append("Outstanding user satisfaction")
    elif satisfaction < BENCHMARKS["satisfaction"].acceptable:
        improvement.append("User satisfaction below expectations")

    follow_up = summary["follow_up_rate"]
    if follow_up >= BENCHMARKS["follow_up_rate"].excellent:
        strengths.append("Excellent follow-up consistency")
    elif follow_up < BENCHMARKS["follow_up_rate"].acceptable:
        improvement.append("Follow-up completion needs improvement")

    return strengths, improvement


def _trends(metrics: List[SessionMetrics]) -> Dict[str, str]:
    trends = {"response_time": "stable", "session_quality": "stable", "user_satisfaction": "stable"}
    if len(metrics) < 6:
        return trends

    mid = len(metrics) // 2
    first, second = summarize(metrics[:mid]), summarize(metrics[mid:])

    if second["average_response_time"] < first["average_response_time"] * 0.9:
        trends["response_time"] = "improving"
    elif second["average_response_time"] > first["average_response_time"] * 1.1:
        trends["response_time"] = "declining"

    if second["escalation_rate"] < first["escalation_rate"] * 0.8:
        trends["session_quality"] = "improving"
    elif second["escalation_rate"] > first["escalation_rate"] * 1.2:
        trends["session_quality"] = "declining"

    if first["satisfaction_score"] and second["satisfaction_score"]:
        if second["satisfaction_score"] > first["satisfaction_score"] + 0.2:
            trends["user_satisfaction"] = "improving"
        elif second["satisfaction_score"] < first["satisfaction_score"] - 0.2:
            trends["user_satisfaction"] = "declining"

    return trends


class PerformanceMonitor:
    """Session recording and derived analytics over the stored history."""

    def __init__(
        self,
        store: VolunteerStore,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self._clock = clock

    def record_session(
        self,
        volunteer_id: str,
        session_id: str,
        outcome: SessionOutcome,
    ) -> SessionMetrics:
        """Persist a completed session to the store's session history."""
        metrics = SessionMetrics.from_outcome(volunteer_id, session_id, outcome, self._clock())
        self.store.add_session_metrics(metrics)

        logger.debug(
            "SESSION_PERFORMANCE_RECORDED",
            extra={"volunteer_id": volunteer_id, "session_id": session_id}
        )
        return metrics

    def history(self, volunteer_id: str) -> List[SessionMetrics]:
        return self.store.list_session_metrics(volunteer_id)

    def _tracked_volunteers(self) -> List[str]:
        return sorted({m.volunteer_id for m in self.store.list_session_metrics()})

    def _period_metrics(self, volunteer_id: str, period: str) -> List[SessionMetrics]:
        if period not in PERIOD_DAYS:
            raise ValidationError(f"Unknown period: {period}. Expected one of {sorted(PERIOD_DAYS)}")
        cutoff = self._clock() - timedelta(days=PERIOD_DAYS[period])
        return self.store.list_session_metrics(volunteer_id, since=cutoff)

    def generate_performance_analysis(self, volunteer_id: str, period: str = "month") -> Dict[str, Any]:
        """Metrics, trends, strengths and advice for one volunteer over a period."""
        metrics = self._period_metrics(volunteer_id, period)
        if not metrics:
            return {
                "volunteer_id": volunteer_id,
                "period": period,
                "metrics": summarize([]),
                "composite_score": 0.0,
                "trends": _trends([]),
                "strengths": [],
                "improvement_areas": ["Complete first crisis session to establish baseline metrics"],
                "recommendations": ["Shadow experienced volunteers"],
            }

        summary = summarize(metrics)
        trends = _trends(metrics)
        strengths, improvement = _assess_areas(summary)

        recommendations: List[str] = []
        for area in improvement:
            recommendations.extend(_RECOMMENDATIONS.get(area, ()))
        if trends["response_time"] == "declining":
            recommendations.append("Focus on improving initial response efficiency")
        if trends["session_quality"] == "declining":
            recommendations.append("Consider refresher training or peer mentoring")
        if trends["user_satisfaction"] == "declining":
            recommendations.append("Review recent sessions for improvement opportunities")

        return {
            "volunteer_id": volunteer_id,
            "period": period,
            "metrics": summary,
            "composite_score": composite_score(summary),
            "trends": trends,
            "strengths": strengths,
            "improvement_areas": improvement,
            "recommendations": recommendations,
        }

    def get_top_performers(self, limit: int = 10) -> List[Dict[str, Any]]:
        scored = []
        for volunteer_id in self._tracked_volunteers():
            analysis = self.generate_performance_analysis(volunteer_id, "month")
            scored.append({
                "volunteer_id": volunteer_id,
                "score": analysis["composite_score"],
                "key_strengths": analysis["strengths"][:3],
            })
        scored.sort(key=lambda s: (-s["score"], s["volunteer_id"]))
        for rank, entry in enumerate(scored, start=1):
            entry["rank"] = rank
        return scored[:limit]

    def update_all_metrics(self) -> int:
        """Refresh response_rate from observed response times.

        response_rate becomes the share of retained sessions answered
        within the acceptable response-time benchmark. Volunteers with no
        timed sessions keep their current rate.

        Returns:
            Number of volunteers updated
        """
        acceptable = BENCHMARKS["response_time"].acceptable
        updated = 0
        for volunteer_id in self._tracked_volunteers():
            timed = [
                m.response_time_seconds for m in self.history(volunteer_id)
                if m.response_time_seconds is not None
            ]
            if not timed:
                continue
            rate = sum(1 for t in timed if t <= acceptable) / len(timed)
            if self.store.update_volunteer(volunteer_id, {"response_rate": rate}) is not None:
                updated += 1

        logger.info("PERFORMANCE_METRICS_UPDATED", extra={"volunteers_updated": updated})
        return updated

    def generate_system_analytics(self) -> Dict[str, Any]:
        all_metrics: List[SessionMetrics] = []
        distribution = {"excellent": 0, "good": 0, "acceptable": 0, "needs_improvement": 0}

        for volunteer_id in self._tracked_volunteers():
            all_metrics.extend(self.history(volunteer_id))
            score = self.generate_performance_analysis(volunteer_id, "month")["composite_score"]
            if score >= 85:
                distribution["excellent"] += 1
            elif score >= 70:
                distribution["good"] += 1
            elif score >= 55:
                distribution["acceptable"] += 1
            else:
                distribution["needs_improvement"] += 1

        return {
            "total_volunteers": sum(distribution.values()),
            "total_sessions": len(all_metrics),
            "average_metrics": summarize(all_metrics),
            "performance_distribution": distribution,
        }
