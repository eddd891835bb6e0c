"""
Absence request endpoints
"""
from datetime import date, timedelta
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.deps import get_db, get_current_user, require_admin, require_incidence_viewer
from app.core.errors import AuthorizationError
from app.models.absence_request import ApprovalStage
from app.models.employee import CollarType, Employee
from app.schemas.absence_request import (
    AbsenceRequestCreate,
    AbsenceRequestOut,
    ActRequest,
    ApprovalHistoryOut,
    AuditTrailOut,
    EscalationLogOut,
    StageCountsOut,
    SweepReportOut,
    SweepRequest,
    WithdrawRequest,
)
from app.services import absence_request_service as service
from app.services.escalation_service import sweep_once
from app.services.role_resolution_service import holds_any_role
from app.utils.datetime_utils import now_utc

router = APIRouter()


@router.post("", response_model=AbsenceRequestOut, status_code=status.HTTP_201_CREATED)
async def create_absence_request(
    payload: AbsenceRequestCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """
    Submit an absence request for the current user.
    The request starts at the first stage of its routing path.
    """
    return service.create_request(
        db,
        employee_id=current_user.id,
        request_type=payload.request_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        quantity=payload.quantity,
        reason=payload.reason,
        custom_fields=payload.custom_fields,
        new_shift_id=payload.new_shift_id,
    )


@router.get("/pending", response_model=List[AbsenceRequestOut])
async def list_pending(
    stage: ApprovalStage = Query(..., description="Stage to list"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Pending requests at a stage that the current user may decide."""
    return service.list_pending_for_stage(db, stage, current_user)


@router.get("/mine", response_model=List[AbsenceRequestOut])
async def list_my_requests(
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """The current user's own requests, newest first."""
    return service.list_my_requests(db, current_user, include_archived=include_archived)


@router.get("/approved", response_model=List[AbsenceRequestOut])
async def list_approved(
    employee_id: Optional[int] = Query(None),
    collar_type: Optional[CollarType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_incidence_viewer),
):
    """
    Approved requests for the payroll incidence view (payroll and administrators).
    Archived approvals are included.
    """
    return service.list_approved(
        db,
        employee_id=employee_id,
        collar_type=collar_type.value if collar_type else None,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/overlapping", response_model=List[AbsenceRequestOut])
async def list_overlapping(
    start_date: date = Query(...),
    end_date: date = Query(...),
    employee_id: Optional[int] = Query(None, description="Defaults to the current user"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Pending or approved requests intersecting a window (no state change)."""
    target = employee_id or current_user.id
    if target != current_user.id and not holds_any_role(db, current_user, settings.get_admin_roles()):
        raise AuthorizationError("Only administrators can check another employee's calendar")
    return service.list_overlapping(db, target, start_date, end_date)


@router.get("/counts", response_model=StageCountsOut)
async def stage_counts(
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Pending requests per stage visible to the current user."""
    counts = service.counts(db, current_user)
    return StageCountsOut(counts=counts, total=sum(counts.values()))


@router.post("/escalations/sweep", response_model=SweepReportOut)
async def run_sweep(
    payload: Optional[SweepRequest] = Body(None),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_admin),
):
    """Run one escalation sweep now (administrators only)."""
    hours = (payload.threshold_hours if payload else None) or settings.ESCALATION_THRESHOLD_HOURS
    reason = (payload.reason if payload else None) or settings.ESCALATION_REASON
    report = sweep_once(db, now_utc(), timedelta(hours=hours), reason)
    return SweepReportOut(
        escalated=[EscalationLogOut.model_validate(log) for log in report.escalated],
        skipped=report.skipped,
        failures=[f._asdict() for f in report.failures],
    )


@router.get("/{request_id}", response_model=AbsenceRequestOut)
async def get_absence_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    return service.get_request(db, request_id, current_user)


@router.get("/{request_id}/audit", response_model=AuditTrailOut)
async def get_audit_trail(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """
    Approval history and escalation log, plus the state they replay to.
    """
    request = service.get_request(db, request_id, current_user)
    trail = service.get_audit_trail(db, request_id)
    return AuditTrailOut(
        request_id=request.id,
        status=request.status,
        current_stage=request.current_stage,
        decided_status=request.decided_status,
        replayed_status=trail.replayed_status,
        replayed_stage=trail.replayed_stage,
        history=[ApprovalHistoryOut.model_validate(h) for h in trail.history],
        escalations=[EscalationLogOut.model_validate(e) for e in trail.escalations],
    )


@router.post("/{request_id}/act", response_model=AbsenceRequestOut)
async def act_on_request(
    request_id: int,
    payload: ActRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """
    Approve or decline at the claimed stage.
    Returns 409 when the request moved on since the client read it.
    """
    return service.act(
        db,
        request_id,
        current_user,
        payload.action,
        payload.claimed_stage,
        comment=payload.comment,
    )


@router.post("/{request_id}/withdraw", response_model=AbsenceRequestOut)
async def withdraw_request(
    request_id: int,
    payload: Optional[WithdrawRequest] = Body(None),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    return service.withdraw(db, request_id, current_user, comment=payload.comment if payload else None)


@router.post("/{request_id}/archive", response_model=AbsenceRequestOut)
async def archive_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    return service.archive(db, request_id, current_user)
