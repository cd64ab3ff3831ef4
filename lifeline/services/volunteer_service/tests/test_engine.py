"""Tests for the volunteer management engine facade.

Covers the end-to-end lifecycle scenarios plus the pool-level invariants
that hold across components.
"""
import random
import threading
import pytest

from lifeline.shared.models import BurnoutRiskLevel, VolunteerStatus
from lifeline.shared.utils import configure_pii_salt
from lifeline.services.audit_service import AuditAction
from lifeline.services.volunteer_service.errors import (
    CapacityExceeded,
    ContentionError,
    InvalidTransition,
    NotFound,
    ValidationError,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


CRITICAL_FACTORS = {"session_count": 40, "self_reported_stress": 9, "consecutive_days": 12}


class TestApplications:
    def test_short_motivation_rejected(self, engine, application, store):
        application["motivation"] = "x" * 50

        with pytest.raises(ValidationError):
            engine.submit_application(application)

        assert store.list_volunteers() == []

    @pytest.mark.parametrize("field,value", [
        ("references", ["ref_001"]),
        ("availability", {}),
        ("age", 16),
        ("email", ""),
    ])
    def test_incomplete_application(self, engine, application, field, value):
        application[field] = value

        with pytest.raises(ValidationError):
            engine.submit_application(application)

    def test_application_enrolls_in_training(self, engine, application, audit_logger):
        result = engine.submit_application(application)

        volunteer = engine.get_volunteer(result.volunteer_id)
        assert result.status == VolunteerStatus.TRAINING
        assert volunteer.status == VolunteerStatus.TRAINING
        assert volunteer.languages == {"en", "es"}
        assert result.required_modules[0] == "crisis-basics"
        assert audit_logger.query(action=AuditAction.APPLICATION_SUBMITTED)

    def test_identity_is_hashed(self, engine, application):
        result = engine.submit_application(application)

        volunteer = engine.get_volunteer(result.volunteer_id)
        assert volunteer.identity_hash
        assert "alex" not in volunteer.identity_hash.lower()
        assert not hasattr(volunteer, "email")


class TestLifecycleScenarios:
    def test_certification_activates(self, engine, application):
        volunteer_id = engine.submit_application(application).volunteer_id

        engine.start_module(volunteer_id, "crisis-basics")
        result = engine.complete_module(volunteer_id, "crisis-basics", 85)

        assert result["passed"] is True
        assert engine.get_volunteer(volunteer_id).status == VolunteerStatus.ACTIVE
        assert engine.get_certification_level(volunteer_id) in ("basic", "intermediate", "advanced", "expert")

    def test_capacity_frees_after_session(self, engine, active_volunteer):
        active_volunteer("vol_1", current_load=3, max_concurrent=3)

        with pytest.raises(CapacityExceeded):
            engine.assign_to_crisis_session("vol_1", "sess_4")

        engine.complete_session("vol_1", "sess_1", {"duration_seconds": 1200, "user_satisfaction": 4})
        engine.assign_to_crisis_session("vol_1", "sess_4")

        assert engine.get_volunteer("vol_1").current_load == 3

    def test_critical_burnout_forces_break(self, engine, active_volunteer, clock):
        active_volunteer("vol_1", current_load=1)

        alert = engine.assess_burnout_risk("vol_1", CRITICAL_FACTORS)

        volunteer = engine.get_volunteer("vol_1")
        assert alert.risk_score >= 12
        assert alert.risk_level == BurnoutRiskLevel.CRITICAL
        assert volunteer.status == VolunteerStatus.ON_BREAK
        assert volunteer.current_load == 0
        assert engine.get_available_volunteers() == []

        clock.advance(hours=71)
        with pytest.raises(InvalidTransition):
            engine.transition_status("vol_1", "active")

        clock.advance(hours=2)
        with pytest.raises(InvalidTransition):
            engine.transition_status("vol_1", "active")

        engine.clear_follow_up("vol_1", reviewer_id="coord_1", notes="Spoke with volunteer")
        engine.transition_status("vol_1", "active", actor="coord_1")

        assert engine.get_volunteer("vol_1").status == VolunteerStatus.ACTIVE

    def test_failed_module_keeps_training(self, engine, application):
        volunteer_id = engine.submit_application(application).volunteer_id

        engine.start_module(volunteer_id, "crisis-basics")
        result = engine.complete_module(volunteer_id, "crisis-basics", 55)
        retry = engine.start_module(volunteer_id, "crisis-basics")

        assert result["passed"] is False
        assert engine.get_volunteer(volunteer_id).status == VolunteerStatus.TRAINING
        assert retry["attempts"] == 2


class TestFollowUp:
    def test_requires_reviewer(self, engine, active_volunteer):
        active_volunteer("vol_1", follow_up_required=True)

        with pytest.raises(ValidationError):
            engine.clear_follow_up("vol_1", reviewer_id="")

    def test_unknown_volunteer(self, engine):
        with pytest.raises(NotFound):
            engine.clear_follow_up("vol_missing", reviewer_id="coord_1")

    def test_audited(self, engine, active_volunteer, audit_logger):
        active_volunteer("vol_1", follow_up_required=True)

        engine.clear_follow_up("vol_1", reviewer_id="coord_1")

        entry = audit_logger.query(action=AuditAction.FOLLOW_UP_CLEARED)[0]
        assert entry.actor_id == "coord_1"


class TestCompleteSession:
    def test_feeds_stats_and_performance(self, engine, active_volunteer):
        active_volunteer("vol_1", average_rating=4.0, sessions_count=1)
        engine.assign_to_crisis_session("vol_1", "sess_1")

        result = engine.complete_session(
            "vol_1", "sess_1", {"duration_seconds": 1800, "user_satisfaction": 5, "response_time_seconds": 25}
        )

        assert result["current_load"] == 0
        assert result["sessions_count"] == 2
        assert result["average_rating"] == pytest.approx(4.5)
        assert result["assignment_closed"] is True
        assert result["burnout_risk_level"] == "low"
        assert len(engine.performance.history("vol_1")) == 1

    def test_without_assignment_record(self, engine, active_volunteer):
        active_volunteer("vol_1", current_load=1)

        result = engine.complete_session("vol_1", "sess_untracked", {"duration_seconds": 600})

        assert result["assignment_closed"] is False
        assert result["current_load"] == 0

    def test_without_assignment_record_warns(self, engine, active_volunteer, caplog):
        active_volunteer("vol_1", current_load=1)

        with caplog.at_level("WARNING"):
            engine.complete_session("vol_1", "sess_untracked", {"duration_seconds": 600})

        assert "SESSION_COMPLETED_WITHOUT_ASSIGNMENT" in caplog.messages

    def test_tracked_session_does_not_warn(self, engine, active_volunteer, caplog):
        active_volunteer("vol_1")
        engine.assign_to_crisis_session("vol_1", "sess_1")

        with caplog.at_level("WARNING"):
            engine.complete_session("vol_1", "sess_1", {"duration_seconds": 600})

        assert "SESSION_COMPLETED_WITHOUT_ASSIGNMENT" not in caplog.messages

    def test_burnout_and_performance_share_history(self, engine, active_volunteer, store):
        active_volunteer("vol_1")

        for n in range(16):
            engine.assign_to_crisis_session("vol_1", f"sess_{n}")
            engine.complete_session("vol_1", f"sess_{n}", {"duration_seconds": 1200})

        assert len(store.list_session_metrics("vol_1")) == 16
        assert len(engine.performance.history("vol_1")) == 16
        assert "Medium session_count: 16" in store.list_alerts(volunteer_id="vol_1")[-1].factors

    def test_unknown_volunteer(self, engine):
        with pytest.raises(NotFound):
            engine.complete_session("vol_missing", "sess_1", {"duration_seconds": 600})

    @pytest.mark.parametrize("outcome", [{}, {"duration_seconds": "long"}])
    def test_malformed_outcome(self, engine, active_volunteer, outcome):
        active_volunteer("vol_1", current_load=1)

        with pytest.raises(ValidationError):
            engine.complete_session("vol_1", "sess_1", outcome)

        assert engine.get_volunteer("vol_1").current_load == 1


class TestStats:
    def test_totals_and_capacity(self, engine, active_volunteer, application):
        active_volunteer("vol_1")
        active_volunteer("vol_2", status=VolunteerStatus.ON_BREAK, is_active=False)
        engine.submit_application(application)
        engine.assign_to_crisis_session("vol_1", "sess_1")

        stats = engine.get_volunteer_stats()

        assert stats["totals"]["total_volunteers"] == 3
        assert stats["totals"]["active_volunteers"] == 1
        assert stats["totals"]["training_volunteers"] == 1
        assert stats["totals"]["on_break_volunteers"] == 1
        assert stats["totals"]["sessions_today"] == 1
        assert stats["capacity"]["target"] == 3
        assert stats["system_health"] == "healthy"

    @pytest.mark.parametrize("cases,health", [(4, "healthy"), (5, "degraded"), (15, "critical")])
    def test_health_bands(self, engine, active_volunteer, cases, health):
        for i in range(cases):
            active_volunteer(f"vol_{i}", burnout_score=0.8)

        assert engine.get_volunteer_stats()["system_health"] == health

    def test_critical_health_logged(self, engine, active_volunteer, caplog):
        for i in range(15):
            active_volunteer(f"vol_{i}", burnout_score=0.9)

        with caplog.at_level("CRITICAL"):
            engine.system_health_check()

        assert "VOLUNTEER_SYSTEM_HEALTH_CRITICAL" in caplog.messages


class TestWellnessSweep:
    def test_reports_at_risk(self, engine, active_volunteer):
        active_volunteer("vol_1")
        engine.assess_burnout_risk("vol_1", {"session_count": 40, "consecutive_days": 11})

        result = engine.check_all_volunteers()

        assert [r["volunteer_id"] for r in result["at_risk"]] == ["vol_1"]
        assert result["restored"] == []

    def test_restores_expired_reductions(self, engine, active_volunteer, clock):
        active_volunteer("vol_1", max_concurrent=4, base_max_concurrent=4)
        engine.assess_burnout_risk("vol_1", {"session_count": 40, "consecutive_days": 11})
        clock.advance(hours=25)

        result = engine.check_all_volunteers()

        assert result["restored"] == ["vol_1"]
        assert engine.get_volunteer("vol_1").max_concurrent == 4

    def test_monitor_wired_to_engine(self, engine):
        assert [s["loop"] for s in engine.monitor.get_status()] == [
            "wellness_sweep", "performance_rollup", "system_health",
        ]
        assert engine.monitor.loops[0].run_once()["success"] is True

    def test_start_and_stop_monitoring(self, engine):
        engine.start_monitoring()
        try:
            assert engine.monitor.running is True
        finally:
            engine.stop_monitoring()

        assert engine.monitor.running is False


class TestPoolInvariants:
    def test_load_within_capacity_for_random_sequences(self, engine, active_volunteer):
        active_volunteer("vol_1", max_concurrent=3, base_max_concurrent=3)
        rng = random.Random(7)
        open_sessions = []

        for step in range(200):
            if open_sessions and rng.random() < 0.45:
                session_id = open_sessions.pop(rng.randrange(len(open_sessions)))
                engine.complete_session(
                    "vol_1", session_id,
                    {"duration_seconds": rng.randint(300, 5400), "escalated": rng.random() < 0.2},
                )
            else:
                try:
                    engine.assign_to_crisis_session("vol_1", f"sess_{step}")
                    open_sessions.append(f"sess_{step}")
                except ContentionError:
                    pass

            volunteer = engine.get_volunteer("vol_1")
            assert 0 <= volunteer.current_load <= volunteer.max_concurrent

    def test_concurrent_assignments_respect_capacity(self, engine, active_volunteer):
        active_volunteer("vol_1", max_concurrent=3)
        barrier = threading.Barrier(12)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker(n):
            barrier.wait()
            try:
                engine.assign_to_crisis_session("vol_1", f"sess_{n}", "emergency")
                result = "assigned"
            except CapacityExceeded:
                result = "full"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("assigned") == 3
        assert outcomes.count("full") == 9
        assert engine.get_volunteer("vol_1").current_load == 3
        assert len(engine.store.list_assignments(volunteer_id="vol_1")) == 3

    def test_burnout_threshold_always_excludes(self, engine, active_volunteer):
        scores = [i / 20 for i in range(21)]
        for i, score in enumerate(scores):
            active_volunteer(f"vol_{i:02d}", burnout_score=score)

        available = engine.get_available_volunteers()

        assert available
        assert all(p.burnout_score < 0.7 for p in available)
        assert len(available) == sum(1 for s in scores if s < 0.7)
