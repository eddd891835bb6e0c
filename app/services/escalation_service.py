"""
Escalation service - system advance of stalled requests

sweep_once is driven by an external scheduler (see
scripts/run_escalation_sweep.py). Each candidate is escalated in its own
transaction, conditioned on the state seen by the scan, so a request a human
moved in the meantime is skipped and a failure on one request never stops
the rest of the sweep.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, WorkflowError
from app.models.absence_request import AbsenceRequest, ApprovalStage, EscalationLog, RequestStatus
from app.services.absence_request_service import (
    StateToken,
    advance_values,
    compare_and_set,
    emit_advance_effects,
    next_recipients,
    observe,
)
from app.services.role_resolution_service import load_inheritance_graph
from app.services.stage_router import next_stage, profile_of
from app.utils.datetime_utils import ensure_utc
from app.utils.enums import coerce_enum

logger = logging.getLogger(__name__)


class RequestSnapshot(NamedTuple):
    request_id: int
    state: StateToken


class SweepFailure(NamedTuple):
    request_id: int
    error_type: str
    message: str


@dataclass
class SweepReport:
    escalated: List[EscalationLog] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failures: List[SweepFailure] = field(default_factory=list)


def find_stalled(db: Session, now: datetime, threshold: timedelta) -> List[RequestSnapshot]:
    """Pending requests whose last transition is at least threshold old."""
    boundary = ensure_utc(now) - threshold
    rows = (
        db.query(AbsenceRequest)
        .filter(
            AbsenceRequest.status == RequestStatus.PENDING,
            AbsenceRequest.last_action_at <= boundary,
        )
        .order_by(AbsenceRequest.last_action_at.asc(), AbsenceRequest.id.asc())
        .all()
    )
    return [RequestSnapshot(request_id=r.id, state=observe(r)) for r in rows]


def escalate_request(
    db: Session,
    snapshot: RequestSnapshot,
    now: datetime,
    reason: str,
) -> EscalationLog:
    """
    Advance one stalled request as if its current stage had approved it

    Raises:
        ConflictError: The request left the snapshot state
        ConfigurationError: Nobody can decide the next stage
    """
    now = ensure_utc(now)
    request = db.query(AbsenceRequest).filter(AbsenceRequest.id == snapshot.request_id).first()
    if request is None:
        raise NotFoundError(f"Absence request with id {snapshot.request_id} not found")
    if observe(request) != snapshot.state:
        raise ConflictError(f"Absence request {snapshot.request_id} changed since the scan")

    from_stage = snapshot.state.current_stage
    to_stage = next_stage(from_stage, profile_of(request))

    try:
        recipients = next_recipients(db, request, to_stage, load_inheritance_graph(db))
        values = advance_values(request, to_stage, now)
        values[AbsenceRequest.escalation_count] = AbsenceRequest.escalation_count + 1
        values[AbsenceRequest.is_escalated] = True
        compare_and_set(db, snapshot.request_id, snapshot.state, values)
        db.refresh(request)

        log = EscalationLog(
            request_id=request.id,
            from_stage=from_stage,
            to_stage=to_stage,
            escalated_at=now,
            reason=reason,
            notified_user_ids=sorted(recipients),
        )
        db.add(log)
        emit_advance_effects(db, request, to_stage, recipients, reason, now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(log)
    logger.info(
        "absence request escalated: request_id=%s from=%s to=%s count=%s",
        request.id,
        from_stage.value,
        to_stage.value,
        request.escalation_count,
    )
    return log


def sweep_once(
    db: Session,
    now: datetime,
    threshold: timedelta,
    reason: str,
) -> SweepReport:
    """
    Escalate every request stalled for at least threshold as of now

    Returns:
        SweepReport with the escalation logs written, ids skipped because
        they moved concurrently, and per-request failures
    """
    report = SweepReport()
    snapshots = find_stalled(db, now, threshold)
    logger.info("Escalation sweep found %d stalled request(s)", len(snapshots))

    for snapshot in snapshots:
        try:
            report.escalated.append(escalate_request(db, snapshot, now, reason))
        except ConflictError:
            report.skipped.append(snapshot.request_id)
        except WorkflowError as e:
            logger.error("Escalation of request %s failed: %s", snapshot.request_id, e.detail)
            report.failures.append(SweepFailure(snapshot.request_id, e.error_type, e.detail))
        except SQLAlchemyError as e:
            logger.exception("Escalation of request %s failed with a database error", snapshot.request_id)
            report.failures.append(SweepFailure(snapshot.request_id, type(e).__name__, str(e)))
        except Exception as e:
            logger.exception("Escalation of request %s failed unexpectedly", snapshot.request_id)
            report.failures.append(SweepFailure(snapshot.request_id, type(e).__name__, str(e)))

    logger.info(
        "Escalation sweep done: escalated=%d skipped=%d failed=%d",
        len(report.escalated),
        len(report.skipped),
        len(report.failures),
    )
    return report


def get_escalation_history(db: Session, request_id: int) -> List[EscalationLog]:
    return (
        db.query(EscalationLog)
        .filter(EscalationLog.request_id == request_id)
        .order_by(EscalationLog.escalated_at.asc(), EscalationLog.id.asc())
        .all()
    )


def stalled_count(db: Session, now: datetime, threshold: timedelta, stage: Optional[ApprovalStage] = None) -> int:
    """Number of requests a sweep at now would pick up, optionally for one stage."""
    query = db.query(AbsenceRequest).filter(
        AbsenceRequest.status == RequestStatus.PENDING,
        AbsenceRequest.last_action_at <= ensure_utc(now) - threshold,
    )
    if stage is not None:
        query = query.filter(AbsenceRequest.current_stage == coerce_enum(ApprovalStage, stage))
    return query.count()
