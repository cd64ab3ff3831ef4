"""Append-only storage for the volunteer audit chain.

Two backends share one contract (append, query, latest, count,
verify_chain):
- AuditRepository keeps entries in process memory (development, tests)
- PostgresAuditRepository writes to the audit_entries table; the service
  role holds INSERT and SELECT only, so stored rows cannot be rewritten
"""
import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from lifeline.shared.database import BaseRepository, ConnectionManager
from .audit_logger import AuditAction, AuditEntity, AuditEntry

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"

_COLUMNS = (
    "id", "sequence", "timestamp", "action", "entity_type", "entity_id",
    "actor_id", "actor_role", "details", "previous_hash", "entry_hash",
)


def verify_chain(entries: Iterable[AuditEntry]) -> bool:
    """Check hash links and entry hashes in sequence order.

    Args:
        entries: Entries to verify, in any order

    Returns:
        True if every entry links to its predecessor and its stored hash
        matches its content

    Logs:
        - AUDIT_CHAIN_BROKEN (critical): previous_hash does not link
        - AUDIT_ENTRY_TAMPERED (critical): content no longer matches hash
        - AUDIT_CHAIN_VERIFIED: chain is intact
    """
    ordered = sorted(entries, key=lambda e: e.sequence)
    expected_prev = GENESIS_HASH

    for entry in ordered:
        if entry.previous_hash != expected_prev:
            logger.critical(
                "AUDIT_CHAIN_BROKEN",
                extra={
                    "entry_id": entry.entry_id,
                    "sequence": entry.sequence,
                    "expected": expected_prev[:16],
                    "actual": entry.previous_hash[:16],
                }
            )
            return False

        computed = entry.compute_hash()
        if computed != entry.entry_hash:
            logger.critical(
                "AUDIT_ENTRY_TAMPERED",
                extra={
                    "entry_id": entry.entry_id,
                    "sequence": entry.sequence,
                    "computed": computed[:16],
                    "stored": entry.entry_hash[:16],
                }
            )
            return False

        expected_prev = entry.entry_hash

    if ordered:
        logger.info("AUDIT_CHAIN_VERIFIED", extra={"entry_count": len(ordered)})
    return True


def _filters(
    entity_type: Optional[AuditEntity],
    entity_id: Optional[str],
    action: Optional[AuditAction],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> Tuple[List[str], List[Any]]:
    conditions: List[str] = []
    params: List[Any] = []
    for clause, value in (
        ("entity_type = %s", entity_type.value if entity_type else None),
        ("entity_id = %s", entity_id),
        ("action = %s", action.value if action else None),
        ("timestamp >= %s", start_date),
        ("timestamp <= %s", end_date),
    ):
        if value is not None:
            conditions.append(clause)
            params.append(value)
    return conditions, params


class AuditRepository:
    """In-process audit chain."""

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()
        logger.info("AUDIT_REPOSITORY_INITIALIZED", extra={"backend": "memory"})

    def append(self, entry: AuditEntry) -> bool:
        with self._lock:
            self._entries.append(entry)
        logger.debug(
            "AUDIT_ENTRY_STORED",
            extra={"entry_id": entry.entry_id, "sequence": entry.sequence}
        )
        return True

    def query(
        self,
        entity_type: Optional[AuditEntity] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Matching entries, newest first."""
        with self._lock:
            snapshot = list(self._entries)

        def matches(entry: AuditEntry) -> bool:
            return (
                (entity_type is None or entry.entity_type == entity_type)
                and (entity_id is None or entry.entity_id == entity_id)
                and (action is None or entry.action == action)
                and (start_date is None or entry.timestamp >= start_date)
                and (end_date is None or entry.timestamp <= end_date)
            )

        found = sorted(filter(matches, snapshot), key=lambda e: e.sequence, reverse=True)
        return found[:limit]

    def latest(self) -> Optional[AuditEntry]:
        with self._lock:
            if not self._entries:
                return None
            return max(self._entries, key=lambda e: e.sequence)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def verify_chain(self, entries: Optional[List[AuditEntry]] = None) -> bool:
        if entries is None:
            with self._lock:
                entries = list(self._entries)
        return verify_chain(entries)


class PostgresAuditRepository(BaseRepository[AuditEntry]):
    """audit_entries table.

    Inserts never use ON CONFLICT: a duplicate id is a chain fault and
    surfaces as RepositoryError.
    """

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "audit_entries")

    def _row_to_entity(self, row: tuple) -> AuditEntry:
        record = dict(zip(_COLUMNS, row))
        details = record["details"]
        if isinstance(details, str):
            details = json.loads(details)
        return AuditEntry(
            entry_id=record["id"],
            sequence=record["sequence"],
            timestamp=record["timestamp"],
            action=AuditAction(record["action"]),
            entity_type=AuditEntity(record["entity_type"]),
            entity_id=record["entity_id"],
            actor_id=record["actor_id"],
            actor_role=record["actor_role"],
            details=details or {},
            previous_hash=record["previous_hash"],
            entry_hash=record["entry_hash"],
        )

    def _entity_to_params(self, entity: AuditEntry) -> Dict[str, Any]:
        return {
            "id": entity.entry_id,
            "sequence": entity.sequence,
            "timestamp": entity.timestamp,
            "action": entity.action.value,
            "entity_type": entity.entity_type.value,
            "entity_id": entity.entity_id,
            "actor_id": entity.actor_id,
            "actor_role": entity.actor_role,
            "details": json.dumps(entity.details, default=str),
            "previous_hash": entity.previous_hash,
            "entry_hash": entity.entry_hash,
        }

    def append(self, entry: AuditEntry) -> bool:
        """Insert one entry.

        Raises:
            RepositoryError: Insert failed; the chain position is not consumed
        """
        params = self._entity_to_params(entry)
        self._execute(
            f"INSERT INTO {self.table_name} ({', '.join(params)}) "
            f"VALUES ({', '.join(['%s'] * len(params))})",
            list(params.values()),
        )
        logger.debug(
            "AUDIT_ENTRY_STORED",
            extra={"entry_id": entry.entry_id, "sequence": entry.sequence}
        )
        return True

    def save(self, entity: AuditEntry) -> AuditEntry:
        self.append(entity)
        return entity

    def query(
        self,
        entity_type: Optional[AuditEntity] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        conditions, params = _filters(entity_type, entity_id, action, start_date, end_date)
        return self.find_where(conditions, params, order_by="sequence DESC", limit=limit)

    def latest(self) -> Optional[AuditEntry]:
        newest = self.find_where([], [], order_by="sequence DESC", limit=1)
        return newest[0] if newest else None

    def verify_chain(self, entries: Optional[List[AuditEntry]] = None) -> bool:
        if entries is None:
            entries = self.find_where([], [], order_by="sequence ASC", limit=1_000_000)
        return verify_chain(entries)
