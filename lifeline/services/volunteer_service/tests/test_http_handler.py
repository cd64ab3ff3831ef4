"""Tests for the volunteer service HTTP handler."""
import json
import pytest
from unittest.mock import MagicMock, patch

from lifeline.shared.database import RepositoryError
from lifeline.shared.models import VolunteerStatus
from lifeline.shared.utils import configure_pii_salt
from lifeline.services.audit_service import PostgresAuditRepository
from lifeline.services.volunteer_service.http_handler import (
    build_engine_from_env,
    create_app,
)
from lifeline.services.volunteer_service.store import (
    InMemoryVolunteerStore,
    PostgresVolunteerStore,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


def post(client, path, body=None):
    return client.post(path, data=json.dumps(body or {}), content_type="application/json")


class TestHealthEndpoints:
    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "healthy"
        assert data["service"] == "volunteer-service"

    def test_ready(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert json.loads(response.data) == {"status": "ready", "monitoring": False}

    def test_not_ready_when_store_down(self):
        engine = MagicMock()
        engine.store.health_check.return_value = {"status": "disconnected", "healthy": False}
        client = create_app(engine).test_client()

        response = client.get("/ready")

        assert response.status_code == 503
        assert json.loads(response.data)["status"] == "not_ready"


class TestApplications:
    def test_submit_application(self, client, application):
        response = post(client, "/volunteers/applications", application)

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["volunteer_id"].startswith("vol_")
        assert data["status"] == "training"
        assert data["estimated_training_hours"] == 9.0

    def test_short_motivation_rejected(self, client, application):
        application["motivation"] = "I want to help."

        response = post(client, "/volunteers/applications", application)

        assert response.status_code == 400
        assert json.loads(response.data)["error_type"] == "ValidationError"

    def test_missing_body(self, client):
        response = client.post("/volunteers/applications")

        assert response.status_code == 400
        assert "Request body required" in json.loads(response.data)["error"]


class TestLifecycleEndpoints:
    def test_training_to_active(self, client, application, engine):
        volunteer_id = json.loads(post(client, "/volunteers/applications", application).data)["volunteer_id"]

        started = client.post(f"/volunteers/{volunteer_id}/training/crisis-basics/start")
        completed = post(
            client,
            f"/volunteers/{volunteer_id}/training/crisis-basics/complete",
            {"score": 88, "time_spent_minutes": 110},
        )

        assert started.status_code == 200
        assert completed.status_code == 200
        assert json.loads(completed.data)["certified"] is True
        assert engine.get_volunteer(volunteer_id).status == VolunteerStatus.ACTIVE

    def test_unknown_module_is_404(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = client.post("/volunteers/vol_1/training/juggling/start")

        assert response.status_code == 404

    def test_malformed_score(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = post(client, "/volunteers/vol_1/training/crisis-basics/complete", {"score": "ninety"})

        assert response.status_code == 400

    def test_invalid_transition_is_409(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = post(client, "/volunteers/vol_1/status", {"status": "training"})

        assert response.status_code == 409
        assert json.loads(response.data)["error_type"] == "InvalidTransition"

    def test_transition(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = post(client, "/volunteers/vol_1/status", {"status": "suspended", "actor": "coord_1"})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["previous_status"] == "active"
        assert data["new_status"] == "suspended"

    def test_unknown_status_is_400(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = post(client, "/volunteers/vol_1/status", {"status": "asleep"})

        assert response.status_code == 400

    def test_clear_follow_up(self, client, active_volunteer):
        active_volunteer("vol_1", follow_up_required=True)

        response = post(client, "/volunteers/vol_1/follow-up", {"reviewer_id": "coord_1"})

        assert response.status_code == 200
        assert json.loads(response.data)["follow_up_required"] is False

    def test_clear_follow_up_requires_reviewer(self, client, active_volunteer):
        active_volunteer("vol_1", follow_up_required=True)

        assert post(client, "/volunteers/vol_1/follow-up", {"notes": "ok"}).status_code == 400


class TestWellnessEndpoints:
    def test_check_in(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = post(
            client,
            "/volunteers/vol_1/wellness",
            {"stress_level": 4, "energy_level": 7, "satisfaction_level": 8},
        )

        assert response.status_code == 201
        assert json.loads(response.data)["recorded"] is True

    def test_burnout_assessment(self, client, active_volunteer):
        active_volunteer("vol_1")

        response = post(
            client,
            "/volunteers/vol_1/burnout",
            {"factors": {"session_count": 40, "consecutive_days": 11}},
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["risk_level"] == "high"
        assert data["action_required"] is True

    def test_burnout_requires_factors(self, client, active_volunteer):
        active_volunteer("vol_1")

        assert post(client, "/volunteers/vol_1/burnout", {"session_count": 40}).status_code == 400

    def test_unknown_volunteer_is_404(self, client):
        response = post(client, "/volunteers/vol_missing/burnout", {"factors": {}})

        assert response.status_code == 404


class TestMatchingEndpoints:
    def test_available_with_filters(self, client, active_volunteer):
        active_volunteer("vol_es", languages={"en", "es"})
        active_volunteer("vol_en", languages={"en"})

        response = client.get("/volunteers/available?languages=es")

        data = json.loads(response.data)
        assert response.status_code == 200
        assert data["count"] == 1
        assert data["volunteers"][0]["volunteer_id"] == "vol_es"

    def test_match(self, client, active_volunteer):
        active_volunteer("vol_1", specializations={"suicide-prevention"})

        response = post(client, "/volunteers/match", {"keywords": ["suicide"], "urgency": "critical"})

        assert json.loads(response.data)["match"]["volunteer"]["volunteer_id"] == "vol_1"

    def test_no_match(self, client):
        response = post(client, "/volunteers/match", {"keywords": ["suicide"]})

        assert json.loads(response.data) == {"match": None}

    def test_assign_and_complete(self, client, active_volunteer):
        active_volunteer("vol_1")

        assigned = post(client, "/volunteers/vol_1/assignments", {"session_id": "sess_1", "priority": "high"})
        completed = post(
            client,
            "/volunteers/vol_1/sessions/sess_1/complete",
            {"duration_seconds": 1800, "user_satisfaction": 5},
        )

        assert assigned.status_code == 201
        assert json.loads(assigned.data)["priority"] == "high"
        data = json.loads(completed.data)
        assert completed.status_code == 200
        assert data["current_load"] == 0
        assert data["assignment_closed"] is True

    def test_full_volunteer_is_409(self, client, active_volunteer):
        active_volunteer("vol_1", current_load=3)

        response = post(client, "/volunteers/vol_1/assignments", {"session_id": "sess_1"})

        assert response.status_code == 409
        assert json.loads(response.data)["error_type"] == "CapacityExceeded"

    def test_complete_session_requires_duration(self, client, active_volunteer):
        active_volunteer("vol_1", current_load=1)

        response = post(client, "/volunteers/vol_1/sessions/sess_1/complete", {"escalated": True})

        assert response.status_code == 400


class TestStats:
    def test_stats(self, client, active_volunteer):
        active_volunteer("vol_1")

        data = json.loads(client.get("/volunteers/stats").data)

        assert data["totals"]["active_volunteers"] == 1
        assert data["system_health"] == "healthy"

    def test_store_failure_is_503(self):
        engine = MagicMock()
        engine.get_volunteer_stats.side_effect = RepositoryError("connection refused")
        client = create_app(engine).test_client()

        response = client.get("/volunteers/stats")

        assert response.status_code == 503
        assert json.loads(response.data)["error"] == "Volunteer store unavailable"


class TestBuildEngineFromEnv:
    def test_in_memory_without_database_settings(self):
        with patch.dict("os.environ", {"VOLUNTEER_MAX_CONCURRENT_DEFAULT": "5"}, clear=True):
            engine = build_engine_from_env()

        assert isinstance(engine.store, InMemoryVolunteerStore)
        assert engine.config.max_concurrent_default == 5

    def test_postgres_when_host_configured(self):
        pool = MagicMock()
        cursor = pool.getconn.return_value.cursor.return_value.__enter__.return_value
        cursor.fetchall.return_value = []

        with patch.dict("os.environ", {"LIFELINE_DB_HOST": "db.internal"}, clear=True):
            with patch("psycopg2.pool.ThreadedConnectionPool", return_value=pool) as pool_cls:
                engine = build_engine_from_env()

        assert pool_cls.call_args.kwargs["host"] == "db.internal"
        assert isinstance(engine.store, PostgresVolunteerStore)
        assert isinstance(engine.audit_logger.repository, PostgresAuditRepository)
