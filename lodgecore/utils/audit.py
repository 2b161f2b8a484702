from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from lodgecore.models.core import AuditEvent


def record_audit(
    db: Session,
    tenant_id: int,
    entity_type: str,
    entity_id: int,
    action: str,
    actor: Optional[str] = None,
    description: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    """
    Appends an audit row to the current transaction. Committed (or rolled
    back) together with the mutation it describes.
    """
    event = AuditEvent(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor=actor or "system",
        description=description,
        payload=payload,
    )
    db.add(event)
    return event
