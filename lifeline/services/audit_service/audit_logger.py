"""Audit logger - immutable, hash-chained trail of volunteer lifecycle events.

Every status transition, training result, burnout alert, intervention
and assignment is appended here. Entries are chained by SHA-256 so that
tampering with any stored entry breaks verification.
"""
import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .audit_repository import AuditRepository

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """Actions that require audit logging."""
    # Onboarding
    APPLICATION_SUBMITTED = "application_submitted"
    STATUS_CHANGED = "status_changed"

    # Training
    TRAINING_STARTED = "training_started"
    TRAINING_COMPLETED = "training_completed"
    TRAINING_FAILED = "training_failed"
    CERTIFICATION_AWARDED = "certification_awarded"

    # Wellness
    WELLNESS_CHECK_IN = "wellness_check_in"
    BURNOUT_ALERT = "burnout_alert"
    INTERVENTION_TRIGGERED = "intervention_triggered"
    INTERVENTION_EXPIRED = "intervention_expired"
    FOLLOW_UP_CLEARED = "follow_up_cleared"

    # Assignment
    VOLUNTEER_ASSIGNED = "volunteer_assigned"
    SESSION_COMPLETED = "session_completed"


class AuditEntity(Enum):
    """Entity types for audit logging."""
    VOLUNTEER = "volunteer"
    CRISIS_SESSION = "crisis_session"
    TRAINING_MODULE = "training_module"
    SYSTEM = "system"


_HASHED_FIELDS = (
    "entry_id", "sequence", "timestamp", "action", "entity_type", "entity_id",
    "actor_id", "actor_role", "details", "previous_hash",
)


@dataclass(frozen=True)
class AuditEntry:
    """One link of the audit chain.

    entry_hash covers every other field, previous_hash included, so
    editing any stored entry breaks verification from that point on.
    """
    entry_id: str
    sequence: int
    timestamp: datetime
    action: AuditAction
    entity_type: AuditEntity
    entity_id: str
    actor_id: str
    actor_role: str
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    entry_hash: str = ""

    def _hashed_fields(self) -> Dict[str, Any]:
        fields = {name: getattr(self, name) for name in _HASHED_FIELDS}
        fields["timestamp"] = self.timestamp.isoformat()
        fields["action"] = self.action.value
        fields["entity_type"] = self.entity_type.value
        return fields

    def compute_hash(self) -> str:
        """Hex SHA-256 over the canonical JSON of every field but entry_hash."""
        canonical = json.dumps(self._hashed_fields(), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {**self._hashed_fields(), "entry_hash": self.entry_hash}


class AuditLogger:
    """Appends hash-chained audit entries to an AuditRepository.

    Thread safe: monitoring loops and request handlers share one logger.
    Storage failures propagate as RepositoryError so callers can decide
    whether the audited action must still stand.
    """

    def __init__(
        self,
        repository: Optional["AuditRepository"] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """Initialize audit logger.

        Args:
            repository: Append-only sink (in-memory repository if omitted)
            clock: Source of entry timestamps
        """
        if repository is None:
            from .audit_repository import AuditRepository
            repository = AuditRepository()

        self.repository = repository
        self._clock = clock
        self._lock = threading.Lock()
        self._last_hash: str = "genesis"
        self._sequence: int = 0

        # Resume the chain after a restart
        tail = repository.latest()
        if tail is not None:
            self._sequence = tail.sequence
            self._last_hash = tail.entry_hash

        logger.info("AUDIT_LOGGER_INITIALIZED", extra={"sequence": self._sequence})

    def log(
        self,
        action: AuditAction,
        entity_type: AuditEntity,
        entity_id: str,
        actor_id: str = "system",
        actor_role: str = "system",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append the next link of the chain.

        The sequence number and previous hash only advance once the
        repository has accepted the entry, so a failed append leaves no gap.

        Args:
            action: What happened
            entity_type: Kind of record it happened to
            entity_id: Anonymous volunteer id, session id or module id
            actor_id: Who did it ("system" for engine decisions)
            actor_role: system, coordinator or volunteer
            details: JSON-serializable context

        Raises:
            RepositoryError: The repository refused the entry

        Logs:
            - AUDIT_ENTRY_CREATED
        """
        with self._lock:
            draft = AuditEntry(
                entry_id=f"audit_{uuid.uuid4().hex[:16]}",
                sequence=self._sequence + 1,
                timestamp=self._clock(),
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                actor_role=actor_role,
                details=dict(details or {}),
                previous_hash=self._last_hash,
            )
            sealed = replace(draft, entry_hash=draft.compute_hash())
            self.repository.append(sealed)
            self._sequence, self._last_hash = sealed.sequence, sealed.entry_hash

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "sequence": sealed.sequence,
                "action": action.value,
                "entity_id": entity_id,
                "actor_role": actor_role,
                "entry_hash": sealed.entry_hash[:16],
            }
        )
        return sealed

    def log_status_change(
        self,
        volunteer_id: str,
        previous_status: str,
        new_status: str,
        reason: Optional[str],
        actor_id: str = "system",
        actor_role: str = "system",
    ) -> AuditEntry:
        """Record a lifecycle transition."""
        return self.log(
            AuditAction.STATUS_CHANGED,
            AuditEntity.VOLUNTEER,
            volunteer_id,
            actor_id,
            actor_role,
            {"previous_status": previous_status, "new_status": new_status, "reason": reason},
        )

    def verify_chain(self) -> bool:
        return self.repository.verify_chain()

    def query(self, limit: int = 100, **filters: Any) -> List[AuditEntry]:
        """Stored entries, newest first.

        Args:
            limit: Row cap
            **filters: entity_type, entity_id, action, start_date, end_date
        """
        return self.repository.query(limit=limit, **filters)
