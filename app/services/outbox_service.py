"""
Outbox service - hand-offs to external collaborators

Events are added to the caller's session and commit with the transition
that caused them. Delivery is done by a separate dispatcher which reads
undispatched rows and marks them once handed over.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.absence_request import AbsenceRequest, ApprovalStage
from app.models.outbox import OutboxEvent, OutboxEventType
from app.utils.datetime_utils import now_utc
from app.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)


def _ordered_unique(ids: Iterable[int]) -> List[int]:
    seen = set()
    result = []
    for i in ids:
        if i is not None and i not in seen:
            seen.add(i)
            result.append(i)
    return result


def emit_event(
    db: Session,
    event_type: OutboxEventType,
    request_id: int,
    payload: Dict[str, Any],
    at: Optional[datetime] = None,
) -> OutboxEvent:
    event = OutboxEvent(
        event_type=event_type.value,
        request_id=request_id,
        payload=sanitize_for_json(payload),
        created_at=at or now_utc(),
    )
    db.add(event)
    return event


def emit_notification(
    db: Session,
    request: AbsenceRequest,
    recipients: Iterable[int],
    new_stage: ApprovalStage,
    reason: str,
    at: Optional[datetime] = None,
) -> OutboxEvent:
    """Queue a notification {recipient_set, request_id, new_stage, reason}."""
    return emit_event(
        db,
        OutboxEventType.NOTIFICATION,
        request.id,
        {
            "recipient_ids": sorted(_ordered_unique(recipients)),
            "request_id": request.id,
            "new_stage": new_stage,
            "reason": reason,
        },
        at,
    )


def emit_payroll_incidence(
    db: Session,
    request: AbsenceRequest,
    at: Optional[datetime] = None,
) -> OutboxEvent:
    """Queue creation of the payroll incidence for a fully approved request."""
    return emit_event(
        db,
        OutboxEventType.PAYROLL_INCIDENCE,
        request.id,
        {
            "employee_id": request.employee_id,
            "type": request.request_type,
            "date_range": {"start": request.start_date, "end": request.end_date},
            "quantity": request.quantity,
            "source_request_id": request.id,
            "late_approval": bool(request.late_approval_flag),
        },
        at,
    )


def dates_in_range(start: date, end: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def emit_shift_exceptions(
    db: Session,
    request: AbsenceRequest,
    at: Optional[datetime] = None,
) -> List[OutboxEvent]:
    """Queue one shift exception {employee_id, date, new_shift_id} per date in the window."""
    if request.new_shift_id is None:
        logger.warning("Shift change request %s has no target shift, no exceptions queued", request.id)
        return []

    return [
        emit_event(
            db,
            OutboxEventType.SHIFT_EXCEPTION,
            request.id,
            {
                "employee_id": request.employee_id,
                "date": day,
                "new_shift_id": request.new_shift_id,
                "source_request_id": request.id,
            },
            at,
        )
        for day in dates_in_range(request.start_date, request.end_date)
    ]


def list_undispatched(db: Session, limit: int = 100) -> List[OutboxEvent]:
    return (
        db.query(OutboxEvent)
        .filter(OutboxEvent.dispatched_at.is_(None))
        .order_by(OutboxEvent.id.asc())
        .limit(limit)
        .all()
    )


def mark_dispatched(db: Session, event_ids: Iterable[int], at: Optional[datetime] = None) -> int:
    """Stamp events as delivered. Returns the number of rows updated."""
    ids = _ordered_unique(event_ids)
    if not ids:
        return 0
    updated = (
        db.query(OutboxEvent)
        .filter(OutboxEvent.id.in_(ids), OutboxEvent.dispatched_at.is_(None))
        .update({OutboxEvent.dispatched_at: at or now_utc()}, synchronize_session=False)
    )
    db.commit()
    return updated
