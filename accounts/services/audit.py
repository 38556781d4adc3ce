import uuid
from typing import Literal

from sqlalchemy.orm import Session

from accounts.models.audit_log import AuditLog

AuditEntity = Literal["user", "session", "otp_challenge"]


def audit(
    db: Session,
    actor_user_id: uuid.UUID | None,
    entity_type: AuditEntity,
    entity_id: uuid.UUID,
    action: str,
    data: dict | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction; it lands with the flow's commit."""
    row = AuditLog(
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        data=data or {},
    )
    db.add(row)
    return row
