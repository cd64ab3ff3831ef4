"""PostgreSQL repositories backing the volunteer record store.

Tables:
- volunteers: one row per volunteer, never deleted
- training_progress: one row per (volunteer, module)
- assignments: one row per crisis assignment
- volunteer_events: append-only wellness check-ins, burnout alerts,
  interventions and completed-session metrics, keyed by kind with a JSON
  payload
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from lifeline.shared.database import BaseRepository, ConnectionManager
from lifeline.shared.models import (
    Assignment,
    AssignmentPriority,
    BurnoutAlert,
    BurnoutRiskLevel,
    InterventionType,
    SessionMetrics,
    TrainingProgress,
    TrainingStatus,
    Volunteer,
    VolunteerStatus,
    WellnessCheckIn,
    WellnessIntervention,
)

logger = logging.getLogger(__name__)


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class VolunteerRepository(BaseRepository[Volunteer]):
    """Repository for volunteer records."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "volunteers")

    def _row_to_entity(self, row: tuple) -> Volunteer:
        """Convert database row to Volunteer.

        Expected columns:
            0: id
            1: status
            2: specializations (text[])
            3: languages (text[])
            4: is_active
            5: current_load
            6: max_concurrent
            7: average_rating
            8: response_rate
            9: sessions_count
            10: hours_volunteered
            11: burnout_score
            12: last_active
            13: emergency_responder
            14: emergency_available
            15: schedule (jsonb)
            16: timezone
            17: identity_hash
            18: base_max_concurrent
            19: load_reduced_until
            20: break_until
            21: follow_up_required
            22: created_at
        """
        return Volunteer(
            volunteer_id=row[0],
            status=VolunteerStatus(row[1]),
            specializations=set(row[2] or []),
            languages=set(row[3] or []),
            is_active=row[4],
            current_load=row[5],
            max_concurrent=row[6],
            average_rating=float(row[7] or 0.0),
            response_rate=float(row[8] or 0.0),
            sessions_count=row[9],
            hours_volunteered=float(row[10] or 0.0),
            burnout_score=float(row[11] or 0.0),
            last_active=row[12],
            emergency_responder=row[13],
            emergency_available=row[14],
            schedule=_load_json(row[15]) or {},
            timezone=row[16],
            identity_hash=row[17],
            base_max_concurrent=row[18],
            load_reduced_until=row[19],
            break_until=row[20],
            follow_up_required=row[21],
            created_at=row[22],
        )

    def _entity_to_params(self, entity: Volunteer) -> Dict[str, Any]:
        return {
            "id": entity.volunteer_id,
            "status": entity.status.value,
            "specializations": sorted(entity.specializations),
            "languages": sorted(entity.languages),
            "is_active": entity.is_active,
            "current_load": entity.current_load,
            "max_concurrent": entity.max_concurrent,
            "average_rating": entity.average_rating,
            "response_rate": entity.response_rate,
            "sessions_count": entity.sessions_count,
            "hours_volunteered": entity.hours_volunteered,
            "burnout_score": entity.burnout_score,
            "last_active": entity.last_active,
            "emergency_responder": entity.emergency_responder,
            "emergency_available": entity.emergency_available,
            "schedule": json.dumps(entity.schedule, default=str),
            "timezone": entity.timezone,
            "identity_hash": entity.identity_hash,
            "base_max_concurrent": entity.base_max_concurrent,
            "load_reduced_until": entity.load_reduced_until,
            "break_until": entity.break_until,
            "follow_up_required": entity.follow_up_required,
            "created_at": entity.created_at,
        }

    def column_value(self, column: str, value: Any) -> Any:
        """Adapt a Volunteer field value to its column representation."""
        if isinstance(value, VolunteerStatus):
            return value.value
        if isinstance(value, (set, frozenset)):
            return sorted(value)
        if column == "schedule":
            return json.dumps(value, default=str)
        return value

    def find_all(self, limit: int = 100000) -> List[Volunteer]:
        return self.find_where((), (), order_by="created_at ASC", limit=limit)


class TrainingProgressRepository(BaseRepository[TrainingProgress]):
    """Repository for per-module training progress."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "training_progress")

    @staticmethod
    def progress_id(volunteer_id: str, module_id: str) -> str:
        return f"{volunteer_id}:{module_id}"

    def _row_to_entity(self, row: tuple) -> TrainingProgress:
        """Convert database row to TrainingProgress.

        Expected columns:
            0: id
            1: volunteer_id
            2: module_id
            3: status
            4: score
            5: attempts
            6: time_spent_minutes
            7: started_at
            8: completed_at
            9: created_at
        """
        return TrainingProgress(
            volunteer_id=row[1],
            module_id=row[2],
            status=TrainingStatus(row[3]),
            score=row[4],
            attempts=row[5],
            time_spent_minutes=row[6],
            started_at=row[7],
            completed_at=row[8],
        )

    def _entity_to_params(self, entity: TrainingProgress) -> Dict[str, Any]:
        return {
            "id": self.progress_id(entity.volunteer_id, entity.module_id),
            "volunteer_id": entity.volunteer_id,
            "module_id": entity.module_id,
            "status": entity.status.value,
            "score": entity.score,
            "attempts": entity.attempts,
            "time_spent_minutes": entity.time_spent_minutes,
            "started_at": entity.started_at,
            "completed_at": entity.completed_at,
            "created_at": entity.started_at or datetime.utcnow(),
        }

    def find_for_volunteer(self, volunteer_id: Optional[str]) -> List[TrainingProgress]:
        if volunteer_id is None:
            return self.find_where((), (), limit=100000)
        return self.find_where(("volunteer_id = %s",), (volunteer_id,), limit=1000)


class AssignmentRepository(BaseRepository[Assignment]):
    """Repository for crisis session assignments."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "assignments")

    def _row_to_entity(self, row: tuple) -> Assignment:
        """Convert database row to Assignment.

        Expected columns:
            0: id
            1: volunteer_id
            2: session_id
            3: priority
            4: assigned_at
            5: estimated_response_time_seconds
            6: execution_time_ms
            7: completed_at
            8: created_at
        """
        return Assignment(
            assignment_id=row[0],
            volunteer_id=row[1],
            session_id=row[2],
            priority=AssignmentPriority(row[3]),
            assigned_at=row[4],
            estimated_response_time_seconds=row[5],
            execution_time_ms=float(row[6] or 0.0),
            completed_at=row[7],
        )

    def _entity_to_params(self, entity: Assignment) -> Dict[str, Any]:
        return {
            "id": entity.assignment_id,
            "volunteer_id": entity.volunteer_id,
            "session_id": entity.session_id,
            "priority": entity.priority.value,
            "assigned_at": entity.assigned_at,
            "estimated_response_time_seconds": entity.estimated_response_time_seconds,
            "execution_time_ms": entity.execution_time_ms,
            "completed_at": entity.completed_at,
            "created_at": entity.assigned_at,
        }

    def close_open(
        self,
        volunteer_id: str,
        session_id: str,
        completed_at: datetime,
    ) -> Optional[Assignment]:
        """Stamp completed_at on the open assignment for a session."""
        row = self._execute(
            f"""
            UPDATE {self.table_name} SET completed_at = %s
            WHERE volunteer_id = %s AND session_id = %s AND completed_at IS NULL
            RETURNING *
            """,
            (completed_at, volunteer_id, session_id),
            fetch="one",
        )
        return self._row_to_entity(row) if row else None


class VolunteerEventRepository(BaseRepository[Any]):
    """Append-only store for per-volunteer wellness and session events.

    Expected columns: id, volunteer_id, kind, payload (jsonb), created_at.
    """

    CHECK_IN = "check_in"
    ALERT = "burnout_alert"
    INTERVENTION = "intervention"
    SESSION = "session"

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "volunteer_events")

    def _row_to_entity(self, row: tuple) -> Any:
        volunteer_id, kind, payload, created_at = row[1], row[2], _load_json(row[3]), row[4]

        if kind == self.CHECK_IN:
            return WellnessCheckIn(
                volunteer_id=volunteer_id,
                stress_level=payload["stress_level"],
                energy_level=payload["energy_level"],
                satisfaction_level=payload["satisfaction_level"],
                workload_rating=payload.get("workload_rating", 5),
                support_needed=payload.get("support_needed", False),
                notes=payload.get("notes"),
                timestamp=created_at,
            )
        if kind == self.ALERT:
            return BurnoutAlert(
                volunteer_id=volunteer_id,
                risk_level=BurnoutRiskLevel(payload["risk_level"]),
                risk_score=payload["risk_score"],
                factors=payload.get("factors", []),
                recommendations=payload.get("recommendations", []),
                action_required=payload.get("action_required", False),
                timestamp=created_at,
            )
        if kind == self.INTERVENTION:
            return WellnessIntervention(
                volunteer_id=volunteer_id,
                intervention_type=InterventionType(payload["intervention_type"]),
                duration_hours=payload["duration_hours"],
                message=payload["message"],
                follow_up_required=payload["follow_up_required"],
                triggered_at=created_at,
            )
        if kind == self.SESSION:
            return SessionMetrics(
                volunteer_id=volunteer_id,
                session_id=payload["session_id"],
                timestamp=created_at,
                duration_minutes=payload["duration_minutes"],
                escalated=payload.get("escalated", False),
                follow_up_completed=payload.get("follow_up_completed", True),
                response_time_seconds=payload.get("response_time_seconds"),
                user_satisfaction=payload.get("user_satisfaction"),
                high_stress=payload.get("high_stress", False),
            )
        raise ValueError(f"Unknown volunteer event kind: {kind}")

    def _entity_to_params(self, entity: Any) -> Dict[str, Any]:
        if isinstance(entity, WellnessCheckIn):
            kind, created_at = self.CHECK_IN, entity.timestamp
            payload = {
                "stress_level": entity.stress_level,
                "energy_level": entity.energy_level,
                "satisfaction_level": entity.satisfaction_level,
                "workload_rating": entity.workload_rating,
                "support_needed": entity.support_needed,
                "notes": entity.notes,
            }
        elif isinstance(entity, BurnoutAlert):
            kind, created_at = self.ALERT, entity.timestamp
            payload = entity.to_dict()
        elif isinstance(entity, WellnessIntervention):
            kind, created_at = self.INTERVENTION, entity.triggered_at
            payload = {
                "intervention_type": entity.intervention_type.value,
                "duration_hours": entity.duration_hours,
                "message": entity.message,
                "follow_up_required": entity.follow_up_required,
            }
        elif isinstance(entity, SessionMetrics):
            kind, created_at = self.SESSION, entity.timestamp
            payload = {
                "session_id": entity.session_id,
                "duration_minutes": entity.duration_minutes,
                "escalated": entity.escalated,
                "follow_up_completed": entity.follow_up_completed,
                "response_time_seconds": entity.response_time_seconds,
                "user_satisfaction": entity.user_satisfaction,
                "high_stress": entity.high_stress,
            }
        else:
            raise ValueError(f"Unsupported event type: {type(entity).__name__}")

        return {
            "id": f"evt_{uuid.uuid4().hex[:16]}",
            "volunteer_id": entity.volunteer_id,
            "kind": kind,
            "payload": json.dumps(payload, default=str),
            "created_at": created_at,
        }

    def find_events(
        self,
        kind: str,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[Any]:
        """Events of one kind, oldest first."""
        conditions = ["kind = %s"]
        params: List[Any] = [kind]
        if volunteer_id:
            conditions.append("volunteer_id = %s")
            params.append(volunteer_id)
        if since:
            conditions.append("created_at >= %s")
            params.append(since)
        # Newest N, returned oldest first
        events = self.find_where(conditions, params, order_by="created_at DESC", limit=limit)
        return list(reversed(events))

    def prune_latest(self, kind: str, volunteer_id: str, keep: int) -> int:
        """Delete all but the newest `keep` events of one kind for a volunteer."""
        return self._execute(
            f"""
            DELETE FROM {self.table_name}
            WHERE kind = %s AND volunteer_id = %s AND id NOT IN (
                SELECT id FROM {self.table_name}
                WHERE kind = %s AND volunteer_id = %s
                ORDER BY created_at DESC LIMIT %s
            )
            """,
            (kind, volunteer_id, kind, volunteer_id, keep),
            fetch="rowcount",
        )

    def prune_alerts(self, before: datetime) -> int:
        """Delete burnout alerts older than the retention window."""
        return self._execute(
            f"DELETE FROM {self.table_name} WHERE kind = %s AND created_at < %s",
            (self.ALERT, before),
            fetch="rowcount",
        )
