"""Volunteer record store.

Every component reads and writes volunteer state through a VolunteerStore.
Per-volunteer mutations are atomic: the in-memory store holds one lock per
volunteer id, the PostgreSQL store issues single conditional UPDATE
statements. There is no cross-volunteer locking.

Retention is enforced here: the newest `wellness_retention` check-ins and
`session_retention` completed sessions per volunteer, and
`alert_retention_days` of burnout alerts, are kept.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from lifeline.shared.database import ConnectionManager, DuplicateError
from lifeline.shared.models import (
    Assignment,
    BurnoutAlert,
    SessionMetrics,
    TrainingProgress,
    Volunteer,
    VolunteerStatus,
    WellnessCheckIn,
    WellnessIntervention,
)
from .volunteer_repository import (
    AssignmentRepository,
    TrainingProgressRepository,
    VolunteerEventRepository,
    VolunteerRepository,
)

logger = logging.getLogger(__name__)


class AssignFailure(Enum):
    """Why an atomic assignment attempt was refused."""
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    CAPACITY = "capacity"
    BURNOUT = "burnout"


@dataclass(frozen=True)
class AssignAttempt:
    """Result of VolunteerStore.try_assign.

    On success `volunteer` is the updated record and `previous_load` the
    load before the increment; on failure `failure` says which hard
    constraint was violated.
    """
    volunteer: Optional[Volunteer] = None
    previous_load: int = 0
    failure: Optional[AssignFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


def classify_assign_failure(
    volunteer: Optional[Volunteer],
    burnout_threshold: float,
) -> Optional[AssignFailure]:
    """Check the three hard constraints in order: status, headroom, burnout."""
    if volunteer is None:
        return AssignFailure.NOT_FOUND
    if volunteer.status != VolunteerStatus.ACTIVE or not volunteer.is_active:
        return AssignFailure.UNAVAILABLE
    if volunteer.current_load >= volunteer.max_concurrent:
        return AssignFailure.CAPACITY
    if volunteer.burnout_score >= burnout_threshold:
        return AssignFailure.BURNOUT
    return None


def reduced_capacity(base_max_concurrent: int) -> int:
    """Cap applied by a workload reduction: half the base, at least 1."""
    return max(1, base_max_concurrent // 2)


class VolunteerStore(ABC):
    """Storage interface for volunteers and their satellite records."""

    def __init__(
        self,
        wellness_retention: int = 30,
        alert_retention_days: int = 7,
        session_retention: int = 100,
    ):
        self.wellness_retention = wellness_retention
        self.alert_retention_days = alert_retention_days
        self.session_retention = session_retention

    def health_check(self) -> Dict[str, Any]:
        return {"status": "connected", "healthy": True}

    # Volunteers

    @abstractmethod
    def create_volunteer(self, volunteer: Volunteer) -> Volunteer:
        """Insert a new volunteer. Raises DuplicateError if the id exists."""

    @abstractmethod
    def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]:
        """Snapshot of one volunteer, or None."""

    @abstractmethod
    def list_volunteers(self) -> List[Volunteer]:
        """Snapshot of every volunteer, oldest first."""

    @abstractmethod
    def update_volunteer(
        self,
        volunteer_id: str,
        changes: Mapping[str, Any],
        expected_status: Optional[VolunteerStatus] = None,
    ) -> Optional[Volunteer]:
        """Atomically set fields.

        Returns:
            Updated volunteer, or None if missing or its status is no
            longer `expected_status`
        """

    @abstractmethod
    def try_assign(
        self,
        volunteer_id: str,
        burnout_threshold: float,
        now: datetime,
    ) -> AssignAttempt:
        """Re-validate hard constraints and take one unit of load."""

    @abstractmethod
    def release(
        self,
        volunteer_id: str,
        user_satisfaction: Optional[float],
        duration_hours: float,
        now: datetime,
    ) -> Optional[Volunteer]:
        """Give back one unit of load and fold a session into the stats.

        Load is floored at 0. A reduced capacity is ratcheted down toward
        its target as load drains.
        """

    @abstractmethod
    def reduce_capacity(self, volunteer_id: str, until: datetime) -> Optional[Volunteer]:
        """Start or extend a workload reduction.

        max_concurrent drops to reduced_capacity(base), but never below
        the load already in flight and never above its current value.
        Marks follow-up required.

        Returns:
            Updated volunteer, or None if missing
        """

    @abstractmethod
    def restore_capacity(self, volunteer_id: str, now: datetime) -> Optional[Volunteer]:
        """End a workload reduction whose window has passed.

        Returns:
            Updated volunteer, or None if missing, not reduced, or reduced
            until after `now`
        """

    # Training

    @abstractmethod
    def get_progress(self, volunteer_id: str, module_id: str) -> Optional[TrainingProgress]:
        pass

    @abstractmethod
    def list_progress(self, volunteer_id: Optional[str] = None) -> List[TrainingProgress]:
        pass

    @abstractmethod
    def save_progress(self, progress: TrainingProgress) -> TrainingProgress:
        pass

    # Wellness

    @abstractmethod
    def add_check_in(self, check_in: WellnessCheckIn) -> None:
        pass

    @abstractmethod
    def list_check_ins(self, volunteer_id: str) -> List[WellnessCheckIn]:
        """Retained check-ins, oldest first."""

    @abstractmethod
    def add_alert(self, alert: BurnoutAlert) -> None:
        pass

    @abstractmethod
    def list_alerts(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[BurnoutAlert]:
        """Retained alerts, oldest first."""

    @abstractmethod
    def add_intervention(self, intervention: WellnessIntervention) -> None:
        pass

    @abstractmethod
    def list_interventions(self, volunteer_id: Optional[str] = None) -> List[WellnessIntervention]:
        pass

    # Session history

    @abstractmethod
    def add_session_metrics(self, metrics: SessionMetrics) -> None:
        """Retain a completed session; older ones beyond session_retention are dropped."""

    @abstractmethod
    def list_session_metrics(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[SessionMetrics]:
        """Retained sessions, oldest first."""

    # Assignments

    @abstractmethod
    def add_assignment(self, assignment: Assignment) -> Assignment:
        pass

    @abstractmethod
    def close_assignment(
        self,
        volunteer_id: str,
        session_id: str,
        completed_at: datetime,
    ) -> Optional[Assignment]:
        """Close the open assignment for a session, if there is one."""

    @abstractmethod
    def list_assignments(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Assignment]:
        pass


class InMemoryVolunteerStore(VolunteerStore):
    """Thread-safe in-memory store for development and tests.

    Returned records are copies; mutate only through the store.
    """

    def __init__(
        self,
        wellness_retention: int = 30,
        alert_retention_days: int = 7,
        session_retention: int = 100,
    ):
        super().__init__(wellness_retention, alert_retention_days, session_retention)
        self._volunteers: Dict[str, Volunteer] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._progress: Dict[tuple, TrainingProgress] = {}
        self._check_ins: Dict[str, List[WellnessCheckIn]] = {}
        self._alerts: List[BurnoutAlert] = []
        self._interventions: List[WellnessIntervention] = []
        self._sessions: Dict[str, List[SessionMetrics]] = {}
        self._assignments: List[Assignment] = []

        logger.info("VOLUNTEER_STORE_INITIALIZED", extra={"backend": "memory"})

    def _lock_for(self, volunteer_id: str) -> Optional[threading.Lock]:
        with self._registry_lock:
            return self._locks.get(volunteer_id)

    def create_volunteer(self, volunteer: Volunteer) -> Volunteer:
        with self._registry_lock:
            if volunteer.volunteer_id in self._volunteers:
                raise DuplicateError(f"Volunteer already exists: {volunteer.volunteer_id}")
            self._volunteers[volunteer.volunteer_id] = copy.deepcopy(volunteer)
            self._locks[volunteer.volunteer_id] = threading.Lock()
        return copy.deepcopy(volunteer)

    def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]:
        lock = self._lock_for(volunteer_id)
        if lock is None:
            return None
        with lock:
            return copy.deepcopy(self._volunteers[volunteer_id])

    def list_volunteers(self) -> List[Volunteer]:
        with self._registry_lock:
            ids = list(self._volunteers)
        return [v for v in (self.get_volunteer(i) for i in ids) if v is not None]

    def update_volunteer(
        self,
        volunteer_id: str,
        changes: Mapping[str, Any],
        expected_status: Optional[VolunteerStatus] = None,
    ) -> Optional[Volunteer]:
        lock = self._lock_for(volunteer_id)
        if lock is None:
            return None
        with lock:
            volunteer = self._volunteers[volunteer_id]
            if expected_status is not None and volunteer.status != expected_status:
                return None
            for name, value in changes.items():
                if not hasattr(volunteer, name):
                    raise AttributeError(f"Volunteer has no field {name}")
                setattr(volunteer, name, copy.deepcopy(value))
            return copy.deepcopy(volunteer)

    def try_assign(
        self,
        volunteer_id: str,
        burnout_threshold: float,
        now: datetime,
    ) -> AssignAttempt:
        lock = self._lock_for(volunteer_id)
        if lock is None:
            return AssignAttempt(failure=AssignFailure.NOT_FOUND)
        with lock:
            volunteer = self._volunteers[volunteer_id]
            failure = classify_assign_failure(volunteer, burnout_threshold)
            if failure is not None:
                return AssignAttempt(volunteer=copy.deepcopy(volunteer), failure=failure)
            previous_load = volunteer.current_load
            volunteer.current_load += 1
            volunteer.last_active = now
            return AssignAttempt(volunteer=copy.deepcopy(volunteer), previous_load=previous_load)

    def release(
        self,
        volunteer_id: str,
        user_satisfaction: Optional[float],
        duration_hours: float,
        now: datetime,
    ) -> Optional[Volunteer]:
        lock = self._lock_for(volunteer_id)
        if lock is None:
            return None
        with lock:
            volunteer = self._volunteers[volunteer_id]
            if user_satisfaction is not None:
                volunteer.average_rating = (
                    volunteer.average_rating * volunteer.sessions_count + user_satisfaction
                ) / (volunteer.sessions_count + 1)
            volunteer.sessions_count += 1
            volunteer.hours_volunteered += duration_hours
            volunteer.current_load = max(0, volunteer.current_load - 1)
            volunteer.last_active = now
            if volunteer.load_reduced_until is not None:
                target = reduced_capacity(volunteer.base_max_concurrent)
                volunteer.max_concurrent = min(
                    volunteer.max_concurrent,
                    max(target, volunteer.current_load),
                )
            return copy.deepcopy(volunteer)

    def reduce_capacity(self, volunteer_id: str, until: datetime) -> Optional[Volunteer]:
        lock = self._lock_for(volunteer_id)
        if lock is None:
            return None
        with lock:
            volunteer = self._volunteers[volunteer_id]
            volunteer.max_concurrent = min(
                volunteer.max_concurrent,
                max(reduced_capacity(volunteer.base_max_concurrent), volunteer.current_load),
            )
            volunteer.load_reduced_until = until
            volunteer.follow_up_required = True
            return copy.deepcopy(volunteer)

    def restore_capacity(self, volunteer_id: str, now: datetime) -> Optional[Volunteer]:
        lock = self._lock_for(volunteer_id)
        if lock is None:
            return None
        with lock:
            volunteer = self._volunteers[volunteer_id]
            if volunteer.load_reduced_until is None or volunteer.load_reduced_until > now:
                return None
            volunteer.max_concurrent = volunteer.base_max_concurrent
            volunteer.load_reduced_until = None
            return copy.deepcopy(volunteer)

    def get_progress(self, volunteer_id: str, module_id: str) -> Optional[TrainingProgress]:
        with self._registry_lock:
            progress = self._progress.get((volunteer_id, module_id))
            return copy.deepcopy(progress) if progress else None

    def list_progress(self, volunteer_id: Optional[str] = None) -> List[TrainingProgress]:
        with self._registry_lock:
            return [
                copy.deepcopy(p) for (vid, _), p in self._progress.items()
                if volunteer_id is None or vid == volunteer_id
            ]

    def save_progress(self, progress: TrainingProgress) -> TrainingProgress:
        with self._registry_lock:
            self._progress[(progress.volunteer_id, progress.module_id)] = copy.deepcopy(progress)
        return progress

    def add_check_in(self, check_in: WellnessCheckIn) -> None:
        with self._registry_lock:
            history = self._check_ins.setdefault(check_in.volunteer_id, [])
            history.append(check_in)
            del history[:-self.wellness_retention]

    def list_check_ins(self, volunteer_id: str) -> List[WellnessCheckIn]:
        with self._registry_lock:
            return list(self._check_ins.get(volunteer_id, []))

    def add_alert(self, alert: BurnoutAlert) -> None:
        cutoff = alert.timestamp - timedelta(days=self.alert_retention_days)
        with self._registry_lock:
            self._alerts = [a for a in self._alerts if a.timestamp >= cutoff]
            self._alerts.append(alert)

    def list_alerts(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[BurnoutAlert]:
        with self._registry_lock:
            alerts = list(self._alerts)
        if volunteer_id:
            alerts = [a for a in alerts if a.volunteer_id == volunteer_id]
        if since:
            alerts = [a for a in alerts if a.timestamp >= since]
        return alerts

    def add_intervention(self, intervention: WellnessIntervention) -> None:
        with self._registry_lock:
            self._interventions.append(intervention)

    def list_interventions(self, volunteer_id: Optional[str] = None) -> List[WellnessIntervention]:
        with self._registry_lock:
            return [
                i for i in self._interventions
                if volunteer_id is None or i.volunteer_id == volunteer_id
            ]

    def add_session_metrics(self, metrics: SessionMetrics) -> None:
        with self._registry_lock:
            history = self._sessions.setdefault(metrics.volunteer_id, [])
            history.append(metrics)
            del history[:-self.session_retention]

    def list_session_metrics(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[SessionMetrics]:
        with self._registry_lock:
            if volunteer_id is not None:
                sessions = list(self._sessions.get(volunteer_id, []))
            else:
                sessions = [m for history in self._sessions.values() for m in history]
        if since:
            sessions = [m for m in sessions if m.timestamp >= since]
        return sorted(sessions, key=lambda m: m.timestamp)

    def add_assignment(self, assignment: Assignment) -> Assignment:
        with self._registry_lock:
            self._assignments.append(copy.deepcopy(assignment))
        return assignment

    def close_assignment(
        self,
        volunteer_id: str,
        session_id: str,
        completed_at: datetime,
    ) -> Optional[Assignment]:
        with self._registry_lock:
            for assignment in self._assignments:
                if (
                    assignment.volunteer_id == volunteer_id
                    and assignment.session_id == session_id
                    and assignment.completed_at is None
                ):
                    assignment.completed_at = completed_at
                    return copy.deepcopy(assignment)
        return None

    def list_assignments(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Assignment]:
        with self._registry_lock:
            assignments = [copy.deepcopy(a) for a in self._assignments]
        if volunteer_id:
            assignments = [a for a in assignments if a.volunteer_id == volunteer_id]
        if since:
            assignments = [a for a in assignments if a.assigned_at >= since]
        return assignments


class PostgresVolunteerStore(VolunteerStore):
    """PostgreSQL-backed store.

    Counter changes are single conditional UPDATE ... RETURNING
    statements; the row lock serializes writers on the same volunteer.
    Driver failures surface as RepositoryError.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        wellness_retention: int = 30,
        alert_retention_days: int = 7,
        session_retention: int = 100,
    ):
        super().__init__(wellness_retention, alert_retention_days, session_retention)
        self.connection_manager = connection_manager
        self.volunteers = VolunteerRepository(connection_manager)
        self.progress = TrainingProgressRepository(connection_manager)
        self.assignments = AssignmentRepository(connection_manager)
        self.events = VolunteerEventRepository(connection_manager)

        logger.info("VOLUNTEER_STORE_INITIALIZED", extra={"backend": "postgresql"})

    def health_check(self) -> Dict[str, Any]:
        return self.connection_manager.health_check()

    def create_volunteer(self, volunteer: Volunteer) -> Volunteer:
        if self.volunteers.find_by_id(volunteer.volunteer_id) is not None:
            raise DuplicateError(f"Volunteer already exists: {volunteer.volunteer_id}")
        return self.volunteers.save(volunteer)

    def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]:
        return self.volunteers.find_by_id(volunteer_id)

    def list_volunteers(self) -> List[Volunteer]:
        return self.volunteers.find_all()

    def update_volunteer(
        self,
        volunteer_id: str,
        changes: Mapping[str, Any],
        expected_status: Optional[VolunteerStatus] = None,
    ) -> Optional[Volunteer]:
        assignments = [f"{name} = %s" for name in changes]
        params = [self.volunteers.column_value(name, value) for name, value in changes.items()]
        guards, guard_params = [], []
        if expected_status is not None:
            guards.append("status = %s")
            guard_params.append(expected_status.value)
        return self.volunteers.update_where(
            volunteer_id, assignments, params, guards, guard_params
        )

    def try_assign(
        self,
        volunteer_id: str,
        burnout_threshold: float,
        now: datetime,
    ) -> AssignAttempt:
        updated = self.volunteers.update_where(
            volunteer_id,
            ["current_load = current_load + 1", "last_active = %s"],
            [now],
            guards=[
                "status = %s",
                "is_active",
                "current_load < max_concurrent",
                "burnout_score < %s",
            ],
            guard_params=[VolunteerStatus.ACTIVE.value, burnout_threshold],
        )
        if updated is not None:
            return AssignAttempt(volunteer=updated, previous_load=updated.current_load - 1)

        # Diagnostic read only; the refusal itself was atomic
        current = self.volunteers.find_by_id(volunteer_id)
        failure = classify_assign_failure(current, burnout_threshold)
        return AssignAttempt(
            volunteer=current,
            failure=failure or AssignFailure.UNAVAILABLE,
        )

    def release(
        self,
        volunteer_id: str,
        user_satisfaction: Optional[float],
        duration_hours: float,
        now: datetime,
    ) -> Optional[Volunteer]:
        # SET expressions see the pre-update row
        return self.volunteers.update_where(
            volunteer_id,
            [
                "average_rating = CASE WHEN %s::float IS NULL THEN average_rating "
                "ELSE (average_rating * sessions_count + %s) / (sessions_count + 1) END",
                "sessions_count = sessions_count + 1",
                "hours_volunteered = hours_volunteered + %s",
                "current_load = GREATEST(current_load - 1, 0)",
                "last_active = %s",
                "max_concurrent = CASE WHEN load_reduced_until IS NULL THEN max_concurrent "
                "ELSE LEAST(max_concurrent, GREATEST(GREATEST(1, base_max_concurrent / 2), "
                "current_load - 1)) END",
            ],
            [user_satisfaction, user_satisfaction, duration_hours, now],
        )

    def reduce_capacity(self, volunteer_id: str, until: datetime) -> Optional[Volunteer]:
        return self.volunteers.update_where(
            volunteer_id,
            [
                "max_concurrent = LEAST(max_concurrent, "
                "GREATEST(GREATEST(1, base_max_concurrent / 2), current_load))",
                "load_reduced_until = %s",
                "follow_up_required = TRUE",
            ],
            [until],
        )

    def restore_capacity(self, volunteer_id: str, now: datetime) -> Optional[Volunteer]:
        return self.volunteers.update_where(
            volunteer_id,
            ["max_concurrent = base_max_concurrent", "load_reduced_until = NULL"],
            [],
            guards=["load_reduced_until IS NOT NULL", "load_reduced_until <= %s"],
            guard_params=[now],
        )

    def get_progress(self, volunteer_id: str, module_id: str) -> Optional[TrainingProgress]:
        return self.progress.find_by_id(self.progress.progress_id(volunteer_id, module_id))

    def list_progress(self, volunteer_id: Optional[str] = None) -> List[TrainingProgress]:
        return self.progress.find_for_volunteer(volunteer_id)

    def save_progress(self, progress: TrainingProgress) -> TrainingProgress:
        return self.progress.save(progress)

    def add_check_in(self, check_in: WellnessCheckIn) -> None:
        self.events.save(check_in)
        self.events.prune_latest(
            VolunteerEventRepository.CHECK_IN, check_in.volunteer_id, self.wellness_retention
        )

    def list_check_ins(self, volunteer_id: str) -> List[WellnessCheckIn]:
        return self.events.find_events(
            VolunteerEventRepository.CHECK_IN,
            volunteer_id=volunteer_id,
            limit=self.wellness_retention,
        )

    def add_alert(self, alert: BurnoutAlert) -> None:
        self.events.save(alert)
        self.events.prune_alerts(alert.timestamp - timedelta(days=self.alert_retention_days))

    def list_alerts(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[BurnoutAlert]:
        return self.events.find_events(
            VolunteerEventRepository.ALERT, volunteer_id=volunteer_id, since=since
        )

    def add_intervention(self, intervention: WellnessIntervention) -> None:
        self.events.save(intervention)

    def list_interventions(self, volunteer_id: Optional[str] = None) -> List[WellnessIntervention]:
        return self.events.find_events(
            VolunteerEventRepository.INTERVENTION, volunteer_id=volunteer_id
        )

    def add_session_metrics(self, metrics: SessionMetrics) -> None:
        self.events.save(metrics)
        self.events.prune_latest(
            VolunteerEventRepository.SESSION, metrics.volunteer_id, self.session_retention
        )

    def list_session_metrics(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[SessionMetrics]:
        return self.events.find_events(
            VolunteerEventRepository.SESSION,
            volunteer_id=volunteer_id,
            since=since,
            limit=self.session_retention if volunteer_id else 100000,
        )

    def add_assignment(self, assignment: Assignment) -> Assignment:
        return self.assignments.save(assignment)

    def close_assignment(
        self,
        volunteer_id: str,
        session_id: str,
        completed_at: datetime,
    ) -> Optional[Assignment]:
        return self.assignments.close_open(volunteer_id, session_id, completed_at)

    def list_assignments(
        self,
        volunteer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Assignment]:
        conditions, params = [], []
        if volunteer_id:
            conditions.append("volunteer_id = %s")
            params.append(volunteer_id)
        if since:
            conditions.append("assigned_at >= %s")
            params.append(since)
        return self.assignments.find_where(
            conditions, params, order_by="assigned_at ASC", limit=100000
        )
