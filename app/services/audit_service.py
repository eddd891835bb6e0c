"""
Audit logging service

Entries are added to the caller's session and never committed here, so an
entry lands together with the change it describes or not at all.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.utils.datetime_utils import now_utc
from app.utils.json_serializer import sanitize_for_json

ENTITY_ABSENCE_REQUEST = "absence_request"
ENTITY_ROLE_INHERITANCE = "role_inheritance"


def log_audit(
    db: Session,
    actor_id: int,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
    at: Optional[datetime] = None,
) -> AuditLog:
    """
    Add an audit log entry to the current transaction

    Args:
        db: Database session
        actor_id: ID of the user performing the action
        action: Action type (e.g., "CREATE", "ARCHIVE", "WITHDRAW")
        entity_type: ENTITY_ABSENCE_REQUEST or ENTITY_ROLE_INHERITANCE
        entity_id: ID of the affected entity (optional)
        meta: Additional metadata; enums, dates and decimals are made JSON-safe
        at: Timestamp to record; defaults to now

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_json=sanitize_for_json(meta) if meta is not None else None,
        created_at=at or now_utc(),
    )
    db.add(audit_log)
    return audit_log


def log_request_event(
    db: Session,
    actor_id: int,
    action: str,
    request_id: int,
    meta: Optional[Dict[str, Any]] = None,
    at: Optional[datetime] = None,
) -> AuditLog:
    return log_audit(db, actor_id, action, ENTITY_ABSENCE_REQUEST, request_id, meta, at)


def list_entries(db: Session, entity_type: str, entity_id: int) -> List[AuditLog]:
    """Entries for one entity, oldest first."""
    return (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )
