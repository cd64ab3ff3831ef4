"""Best-effort audit writes for volunteer engine events."""
import logging
from typing import Any, Dict, Optional

from lifeline.services.audit_service import AuditAction, AuditEntity, AuditLogger

logger = logging.getLogger(__name__)


def record_audit(
    audit_logger: AuditLogger,
    action: AuditAction,
    entity_id: str,
    details: Optional[Dict[str, Any]] = None,
    entity_type: AuditEntity = AuditEntity.VOLUNTEER,
    actor_id: str = "system",
    actor_role: str = "system",
) -> bool:
    """Append an audit entry without letting a sink failure undo the action.

    Returns:
        True if the entry was stored

    Logs:
        - AUDIT_WRITE_FAILED: Sink raised; the audited action still stands
    """
    try:
        audit_logger.log(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            actor_role=actor_role,
            details=details,
        )
    except Exception as e:
        logger.warning(
            "AUDIT_WRITE_FAILED",
            extra={
                "action": action.value,
                "entity_id": entity_id,
                "error": str(e),
            }
        )
        return False
    return True
