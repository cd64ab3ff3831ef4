"""Volunteer Service HTTP handler - Volunteer lifecycle endpoints.

Thin Flask adapter over VolunteerManagementEngine. Domain errors map to
status codes in one place:
- ValidationError -> 400
- NotFound / ModuleNotFound -> 404
- other StateError, ContentionError -> 409
- RepositoryError -> 503
"""
import logging
import os
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from lifeline.services.audit_service import AuditLogger, PostgresAuditRepository
from lifeline.shared.database import ConnectionManager, DatabaseConfig, RepositoryError
from lifeline.shared.utils import configure_pii_salt
from .config import VolunteerConfig
from .engine import VolunteerManagementEngine
from .errors import (
    ContentionError,
    ModuleNotFound,
    NotFound,
    StateError,
    ValidationError,
    VolunteerServiceError,
)
from .store import PostgresVolunteerStore

logger = logging.getLogger(__name__)


def _status_for(error: VolunteerServiceError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, (NotFound, ModuleNotFound)):
        return 404
    if isinstance(error, (StateError, ContentionError)):
        return 409
    return 500


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body required")
    return data


def _csv_arg(name: str) -> List[str]:
    raw = request.args.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _bool_arg(name: str) -> bool:
    return request.args.get(name, "false").lower() in ("1", "true", "yes")


def build_engine_from_env() -> VolunteerManagementEngine:
    """Engine wired from the environment.

    LIFELINE_DB_SECRET_ARN selects Secrets Manager credentials,
    LIFELINE_DB_HOST selects plain env credentials; with neither set the
    engine runs on the in-memory store.
    """
    config = VolunteerConfig.from_env()
    secret_arn = os.getenv("LIFELINE_DB_SECRET_ARN")
    if secret_arn:
        db_config = DatabaseConfig.from_secrets_manager(
            secret_arn, region=os.getenv("AWS_REGION", "us-east-1")
        )
    elif os.getenv("LIFELINE_DB_HOST"):
        db_config = DatabaseConfig.from_env()
    else:
        logger.warning("VOLUNTEER_STORE_IN_MEMORY")
        return VolunteerManagementEngine(config=config)

    manager = ConnectionManager(db_config)
    manager.initialize()
    store = PostgresVolunteerStore(
        manager,
        wellness_retention=config.wellness_retention,
        alert_retention_days=config.alert_retention_days,
        session_retention=config.performance_retention,
    )
    audit_logger = AuditLogger(repository=PostgresAuditRepository(manager))
    return VolunteerManagementEngine(store=store, audit_logger=audit_logger, config=config)


def create_app(engine: Optional[VolunteerManagementEngine] = None) -> Flask:
    """Build the Flask app around an engine.

    Args:
        engine: Engine to serve (a fresh in-memory engine if omitted)

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    engine = engine or VolunteerManagementEngine()
    app.config["VOLUNTEER_ENGINE"] = engine

    @app.errorhandler(VolunteerServiceError)
    def handle_service_error(error: VolunteerServiceError):
        status = _status_for(error)
        logger.warning(
            "VOLUNTEER_REQUEST_REJECTED",
            extra={
                "path": request.path,
                "status": status,
                "error_type": type(error).__name__,
                "error": str(error),
            }
        )
        return jsonify({"error": str(error), "error_type": type(error).__name__}), status

    @app.errorhandler(RepositoryError)
    def handle_repository_error(error: RepositoryError):
        logger.error(
            "VOLUNTEER_STORE_UNAVAILABLE",
            extra={"path": request.path, "error": str(error)}
        )
        return jsonify({"error": "Volunteer store unavailable"}), 503

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "volunteer-service",
        }), 200

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check: the record store must answer."""
        store_health = engine.store.health_check()
        if not store_health.get("healthy"):
            return jsonify({"status": "not_ready", "store": store_health}), 503
        return jsonify({
            "status": "ready",
            "monitoring": engine.monitor.running,
        }), 200

    @app.route("/volunteers/applications", methods=["POST"])
    def submit_application():
        """Submit a volunteer application.

        Request Body:
            {
                "full_name": "...",
                "email": "...",
                "motivation": "at least 100 characters",
                "availability": {"monday": ["18:00-22:00"]},
                "references": ["ref_1", "ref_2"],
                "experience": "beginner"
            }

        Response:
            {
                "volunteer_id": "vol_...",
                "status": "training",
                "required_modules": [...],
                "estimated_training_hours": 9.0,
                "next_steps": [...]
            }
        """
        result = engine.submit_application(_json_body())
        return jsonify(result.to_dict()), 201

    @app.route("/volunteers/<volunteer_id>/status", methods=["POST"])
    def transition_status(volunteer_id: str):
        """Move a volunteer to a new status.

        Request Body:
            {
                "status": "suspended",
                "reason": "conduct review",
                "actor": "coordinator_123"
            }
        """
        data = _json_body()
        target = data.get("status")
        if not target:
            raise ValidationError("Missing status")

        record = engine.transition_status(
            volunteer_id,
            target,
            reason=data.get("reason"),
            actor=data.get("actor", "system"),
            actor_role=data.get("actor_role", "coordinator"),
        )
        return jsonify(record.to_dict()), 200

    @app.route("/volunteers/<volunteer_id>/follow-up", methods=["POST"])
    def clear_follow_up(volunteer_id: str):
        """Clear the follow-up flag after a coordinator review."""
        data = _json_body()
        volunteer = engine.clear_follow_up(
            volunteer_id,
            reviewer_id=data.get("reviewer_id", ""),
            notes=data.get("notes"),
        )
        return jsonify({
            "volunteer_id": volunteer.volunteer_id,
            "follow_up_required": volunteer.follow_up_required,
        }), 200

    @app.route("/volunteers/<volunteer_id>/training/<module_id>/start", methods=["POST"])
    def start_module(volunteer_id: str, module_id: str):
        return jsonify(engine.start_module(volunteer_id, module_id)), 200

    @app.route("/volunteers/<volunteer_id>/training/<module_id>/complete", methods=["POST"])
    def complete_module(volunteer_id: str, module_id: str):
        """Report a module result.

        Request Body:
            {"score": 85, "time_spent_minutes": 110}
        """
        data = _json_body()
        if "score" not in data:
            raise ValidationError("Missing score")
        try:
            score = float(data["score"])
            minutes = int(data.get("time_spent_minutes", 0))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Malformed training result: {e}") from e

        return jsonify(engine.complete_module(volunteer_id, module_id, score, minutes)), 200

    @app.route("/volunteers/<volunteer_id>/wellness", methods=["POST"])
    def record_wellness_check_in(volunteer_id: str):
        """Record a wellness check-in.

        Request Body:
            {
                "stress_level": 6,
                "energy_level": 5,
                "satisfaction_level": 7,
                "support_needed": false
            }
        """
        return jsonify(engine.record_wellness_check_in(volunteer_id, _json_body())), 201

    @app.route("/volunteers/<volunteer_id>/burnout", methods=["POST"])
    def assess_burnout_risk(volunteer_id: str):
        """Assess burnout risk from named factors.

        Request Body:
            {"factors": {"session_count": 28, "self_reported_stress": 8}}
        """
        data = _json_body()
        factors = data.get("factors")
        if not isinstance(factors, dict):
            raise ValidationError("Missing factors")

        alert = engine.assess_burnout_risk(volunteer_id, factors)
        return jsonify(alert.to_dict()), 200

    @app.route("/volunteers/available", methods=["GET"])
    def get_available_volunteers():
        """List assignable volunteers.

        Query Params:
            specializations: Comma separated (optional)
            languages: Comma separated (optional)
            emergency_only: true/false (optional)
            max_current_load: Integer (optional)
        """
        criteria: Dict[str, Any] = {
            "specializations": _csv_arg("specializations"),
            "languages": _csv_arg("languages"),
            "emergency_only": _bool_arg("emergency_only"),
            "max_current_load": request.args.get("max_current_load"),
        }
        volunteers = engine.get_available_volunteers(criteria)
        return jsonify({
            "count": len(volunteers),
            "volunteers": [v.to_dict() for v in volunteers],
        }), 200

    @app.route("/volunteers/match", methods=["POST"])
    def find_best_match():
        """Rank available volunteers and return the best one, if any."""
        candidate = engine.find_best_match(_json_body())
        if candidate is None:
            return jsonify({"match": None}), 200
        return jsonify({"match": candidate.to_dict()}), 200

    @app.route("/volunteers/<volunteer_id>/assignments", methods=["POST"])
    def assign_to_crisis_session(volunteer_id: str):
        """Assign a volunteer to a crisis session.

        Request Body:
            {"session_id": "sess_123", "priority": "emergency"}
        """
        data = _json_body()
        assignment = engine.assign_to_crisis_session(
            volunteer_id,
            data.get("session_id", ""),
            data.get("priority", "normal"),
        )
        return jsonify(assignment.to_dict()), 201

    @app.route("/volunteers/<volunteer_id>/sessions/<session_id>/complete", methods=["POST"])
    def complete_session(volunteer_id: str, session_id: str):
        """Report a finished session.

        Request Body:
            {"duration_seconds": 1800, "user_satisfaction": 4.5, "escalated": false}
        """
        return jsonify(engine.complete_session(volunteer_id, session_id, _json_body())), 200

    @app.route("/volunteers/stats", methods=["GET"])
    def get_volunteer_stats():
        return jsonify(engine.get_volunteer_stats()), 200

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    configure_pii_salt(
        os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
    )
    volunteer_engine = build_engine_from_env()
    volunteer_engine.start_monitoring()
    port = int(os.getenv("PORT", "8004"))
    create_app(volunteer_engine).run(host="0.0.0.0", port=port, debug=False)
