"""Audit Service: Immutable audit trail for volunteer lifecycle events.

Append-only, hash-chained storage of every status transition, training
result, burnout alert, intervention and crisis assignment.
"""

from .audit_logger import AuditLogger, AuditAction, AuditEntity, AuditEntry
from .audit_repository import AuditRepository, PostgresAuditRepository, verify_chain

__all__ = [
    "AuditLogger",
    "AuditAction",
    "AuditEntity",
    "AuditEntry",
    "AuditRepository",
    "PostgresAuditRepository",
    "verify_chain",
]
