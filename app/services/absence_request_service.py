"""
Absence request service - creation and the approval state machine

Every transition is one compare-and-set UPDATE conditioned on the
(status, current_stage, last_action_at) triple read before deciding. The
history row, outbox events and audit entry are added to the same session
and committed together with it; a lost race rolls all of them back.
"""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, NamedTuple, Optional, Set

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.models.absence_request import (
    AbsenceRequest,
    ApprovalAction,
    ApprovalHistory,
    ApprovalStage,
    ARCHIVABLE_STATUSES,
    EscalationLog,
    RequestStatus,
    RequestTypeConfig,
)
from app.models.employee import Employee
from app.services import outbox_service
from app.services.audit_service import log_request_event
from app.services.payroll_cutoff_service import compute_cutoff, is_late, is_payroll_excluding_stage
from app.services.role_resolution_service import (
    MANAGER_STAGES,
    holds_any_role,
    is_authorized,
    load_inheritance_graph,
    normalize_role,
    require_approvers,
    resolve_approvers,
    resolve_role_closure,
)
from app.services.stage_router import (
    RouteProfile,
    next_stage,
    profile_of,
    replay_audit,
    route_profile,
    stage_path,
)
from app.utils.datetime_utils import ensure_utc, now_utc
from app.utils.enums import coerce_enum

logger = logging.getLogger(__name__)

WITHDRAWAL_COMMENT = "withdrawn by employee"

# Requests that still occupy the employee's calendar
CALENDAR_STATUSES = (RequestStatus.PENDING, RequestStatus.APPROVED)

# Approved, whether or not it was archived afterwards
WAS_APPROVED = or_(
    AbsenceRequest.status == RequestStatus.APPROVED,
    and_(
        AbsenceRequest.status == RequestStatus.ARCHIVED,
        AbsenceRequest.decided_status == RequestStatus.APPROVED,
    ),
)

ACTIONABLE_STAGES = [stage for stage in ApprovalStage if stage != ApprovalStage.COMPLETED]


class StateToken(NamedTuple):
    """The state a decision was based on."""
    status: RequestStatus
    current_stage: ApprovalStage
    last_action_at: datetime


class AuditTrail(NamedTuple):
    history: List[ApprovalHistory]
    escalations: List[EscalationLog]
    replayed_status: RequestStatus
    replayed_stage: ApprovalStage


def observe(request: AbsenceRequest) -> StateToken:
    # last_action_at is kept as loaded so it compares equal to the stored value
    return StateToken(
        status=coerce_enum(RequestStatus, request.status),
        current_stage=coerce_enum(ApprovalStage, request.current_stage),
        last_action_at=request.last_action_at,
    )


def compare_and_set(
    db: Session,
    request_id: int,
    observed: StateToken,
    values: Dict[Any, Any],
) -> None:
    """
    Apply values to the request only if it is still in the observed state.

    Does not commit.

    Raises:
        ConflictError: If another transition got there first
    """
    updated = (
        db.query(AbsenceRequest)
        .filter(
            AbsenceRequest.id == request_id,
            AbsenceRequest.status == observed.status,
            AbsenceRequest.current_stage == observed.current_stage,
            AbsenceRequest.last_action_at == observed.last_action_at,
        )
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        logger.warning(
            "Optimistic check failed for absence request %s (expected %s at %s)",
            request_id,
            observed.status.value,
            observed.current_stage.value,
        )
        raise ConflictError(
            f"Absence request {request_id} changed since it was read; reload and retry",
            request_id=request_id,
        )


def get_type_config(db: Session, code: str, active_only: bool = True) -> Optional[RequestTypeConfig]:
    query = db.query(RequestTypeConfig).filter(RequestTypeConfig.code == (code or "").strip().upper())
    if active_only:
        query = query.filter(RequestTypeConfig.active == True)
    return query.first()


def derive_route_profile(
    db: Session,
    employee: Employee,
    type_config: Optional[RequestTypeConfig],
) -> RouteProfile:
    supervisor = None
    if employee.supervisor_id is not None:
        supervisor = db.query(Employee).filter(Employee.id == employee.supervisor_id).first()
    return route_profile(
        employee,
        supervisor,
        type_config,
        combined_roles=settings.get_combined_supervisor_roles(),
        unionized_types=settings.get_unionized_employee_types(),
    )


def _load_request(db: Session, request_id: int) -> AbsenceRequest:
    request = db.query(AbsenceRequest).filter(AbsenceRequest.id == request_id).first()
    if not request:
        raise NotFoundError(f"Absence request with id {request_id} not found", request_id=request_id)
    return request


def _validate_window(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError(
            f"end_date {end_date.isoformat()} is before start_date {start_date.isoformat()}"
        )


def _validate_quantity(quantity) -> Decimal:
    try:
        value = Decimal(str(quantity))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid quantity: {quantity}")
    if not value.is_finite() or value <= 0:
        raise ValidationError("quantity must be positive")
    return value


def _validate_payload(
    type_config: RequestTypeConfig,
    custom_fields: Optional[Dict[str, Any]],
    new_shift_id: Optional[int],
) -> None:
    fields = custom_fields or {}
    missing = [
        key for key in (type_config.required_fields or [])
        if fields.get(key) in (None, "")
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields for {type_config.code}: {', '.join(missing)}",
            missing=missing,
        )
    if type_config.requires_shift and new_shift_id is None:
        raise ValidationError(f"new_shift_id is required for {type_config.code}")


def create_request(
    db: Session,
    employee_id: int,
    request_type: str,
    start_date: date,
    end_date: date,
    quantity,
    reason: Optional[str] = None,
    custom_fields: Optional[Dict[str, Any]] = None,
    new_shift_id: Optional[int] = None,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> AbsenceRequest:
    """
    Create an absence request at its initial stage

    Input is validated before anything is written. The routing profile is
    derived once and stored, every stage of the resulting path must have at
    least one approver, and the payroll cutoff is computed here and never
    again.

    Raises:
        ValidationError: Malformed window, quantity, type or payload
        NotFoundError: Unknown or inactive employee
        ConfigurationError: A stage on the path has nobody to decide it
    """
    _validate_window(start_date, end_date)
    amount = _validate_quantity(quantity)

    type_config = get_type_config(db, request_type)
    if type_config is None:
        raise ValidationError(f"Unknown request type: {request_type}")
    _validate_payload(type_config, custom_fields, new_shift_id)

    employee = db.query(Employee).filter(Employee.id == employee_id, Employee.active == True).first()
    if not employee:
        raise NotFoundError(f"Employee with id {employee_id} not found", employee_id=employee_id)

    now = ensure_utc(now or now_utc())
    profile = derive_route_profile(db, employee, type_config)
    path = stage_path(profile)

    graph = load_inheritance_graph(db)
    initial_approvers: Set[int] = set()
    for stage in path[:-1]:
        approvers = require_approvers(db, employee, stage, graph)
        if stage == path[0]:
            initial_approvers = approvers

    cutoff = compute_cutoff(
        db,
        employee,
        start_date,
        now,
        tz_name or settings.PAYROLL_TIMEZONE,
        settings.get_unionized_employee_types(),
    )

    try:
        request = AbsenceRequest(
            employee_id=employee.id,
            request_type=type_config.code,
            start_date=start_date,
            end_date=end_date,
            quantity=amount,
            reason=reason,
            status=RequestStatus.PENDING,
            current_stage=path[0],
            hr_route=profile.hr_route,
            supervisor_combined=profile.supervisor_combined,
            last_action_at=now,
            escalation_count=0,
            is_escalated=False,
            payroll_cutoff_date=cutoff,
            late_approval_flag=False,
            excluded_from_payroll=False,
            custom_fields=custom_fields,
            new_shift_id=new_shift_id,
        )
        db.add(request)
        db.flush()

        outbox_service.emit_notification(db, request, initial_approvers, path[0], "submitted", at=now)
        log_request_event(
            db,
            employee.id,
            "CREATE",
            request.id,
            meta={
                "request_type": type_config.code,
                "start_date": start_date,
                "end_date": end_date,
                "quantity": amount,
                "path": path,
                "payroll_cutoff_date": cutoff,
            },
            at=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request)
    logger.info(
        "absence request created: request_id=%s employee_id=%s type=%s stage=%s path=%s",
        request.id,
        employee.id,
        type_config.code,
        path[0].value,
        "->".join(stage.value for stage in path),
    )
    return request


def advance_values(
    request: AbsenceRequest,
    to_stage: ApprovalStage,
    now: datetime,
) -> Dict[Any, Any]:
    """Column values for moving a pending request forward to to_stage."""
    values: Dict[Any, Any] = {
        AbsenceRequest.current_stage: to_stage,
        AbsenceRequest.last_action_at: now,
    }
    if to_stage == ApprovalStage.COMPLETED:
        values[AbsenceRequest.status] = RequestStatus.APPROVED
        values[AbsenceRequest.decided_status] = RequestStatus.APPROVED
        values[AbsenceRequest.late_approval_flag] = is_late(request.payroll_cutoff_date, now)
        values[AbsenceRequest.excluded_from_payroll] = False
    return values


def emit_advance_effects(
    db: Session,
    request: AbsenceRequest,
    to_stage: ApprovalStage,
    recipients: Set[int],
    reason: str,
    now: datetime,
) -> None:
    """
    Queue the hand-offs for a forward move

    A terminal approval queues the payroll incidence and, for types that
    carry a target shift, one shift exception per date.
    """
    if to_stage == ApprovalStage.COMPLETED:
        outbox_service.emit_payroll_incidence(db, request, at=now)
        type_config = get_type_config(db, request.request_type, active_only=False)
        if type_config is not None and type_config.requires_shift:
            outbox_service.emit_shift_exceptions(db, request, at=now)
    outbox_service.emit_notification(db, request, recipients, to_stage, reason, at=now)


def next_recipients(
    db: Session,
    request: AbsenceRequest,
    to_stage: ApprovalStage,
    graph=None,
) -> Set[int]:
    """Who is told about a forward move: the next approvers, or the employee once completed."""
    if to_stage == ApprovalStage.COMPLETED:
        return {request.employee_id}
    employee = db.query(Employee).filter(Employee.id == request.employee_id).first()
    return require_approvers(db, employee, to_stage, graph)


def act(
    db: Session,
    request_id: int,
    actor: Employee,
    action: ApprovalAction,
    claimed_stage: ApprovalStage,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AbsenceRequest:
    """
    Apply one approve/decline decision

    Raises:
        NotFoundError: Unknown request
        ConflictError: Request not pending, claimed stage is stale, or lost race
        AuthorizationError: Actor may not decide the current stage
        ConfigurationError: Nobody can decide the stage the request would move to
    """
    action = coerce_enum(ApprovalAction, action)
    claimed_stage = coerce_enum(ApprovalStage, claimed_stage)
    request = _load_request(db, request_id)
    observed = observe(request)

    if observed.status != RequestStatus.PENDING:
        raise ConflictError(
            f"Absence request {request_id} is already {observed.status.value}",
            request_id=request_id,
        )
    if claimed_stage != observed.current_stage:
        raise ConflictError(
            f"Absence request {request_id} is at stage {observed.current_stage.value}, "
            f"not {claimed_stage.value}",
            request_id=request_id,
        )

    graph = load_inheritance_graph(db)
    if not is_authorized(db, actor, request, observed.current_stage, graph):
        raise AuthorizationError(
            f"User {actor.id} is not authorized to act at stage {observed.current_stage.value}",
            request_id=request_id,
        )

    now = ensure_utc(now or now_utc())
    from_stage = observed.current_stage
    to_stage = next_stage(from_stage, profile_of(request), action)

    try:
        if to_stage is None:
            compare_and_set(db, request_id, observed, {
                AbsenceRequest.status: RequestStatus.DECLINED,
                AbsenceRequest.decided_status: RequestStatus.DECLINED,
                AbsenceRequest.last_action_at: now,
                AbsenceRequest.late_approval_flag: False,
                AbsenceRequest.excluded_from_payroll: is_payroll_excluding_stage(from_stage),
            })
            db.refresh(request)
            outbox_service.emit_notification(db, request, {request.employee_id}, from_stage, "declined", at=now)
        else:
            recipients = next_recipients(db, request, to_stage, graph)
            compare_and_set(db, request_id, observed, advance_values(request, to_stage, now))
            db.refresh(request)
            emit_advance_effects(db, request, to_stage, recipients, f"approved at {from_stage.value}", now)

        db.add(ApprovalHistory(
            request_id=request_id,
            approver_id=actor.id,
            stage=from_stage,
            action=action,
            comment=comment,
            action_at=now,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request)
    logger.info(
        "absence request transition: request_id=%s actor_id=%s action=%s from=%s to=%s status=%s",
        request_id,
        actor.id,
        action.value,
        from_stage.value,
        request.current_stage.value,
        request.status.value,
    )
    return request


def withdraw(
    db: Session,
    request_id: int,
    actor: Employee,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AbsenceRequest:
    """
    Employee withdraws their own pending request

    Recorded as a decline at the current stage. Never excludes from payroll.

    Raises:
        NotFoundError, AuthorizationError, ConflictError
    """
    request = _load_request(db, request_id)
    if request.employee_id != actor.id:
        raise AuthorizationError("Only the requesting employee can withdraw a request", request_id=request_id)

    observed = observe(request)
    if observed.status != RequestStatus.PENDING:
        raise ConflictError(
            f"Absence request {request_id} is already {observed.status.value}",
            request_id=request_id,
        )

    now = ensure_utc(now or now_utc())
    comment = comment or WITHDRAWAL_COMMENT
    try:
        approvers = resolve_approvers(db, request, observed.current_stage)
        compare_and_set(db, request_id, observed, {
            AbsenceRequest.status: RequestStatus.DECLINED,
            AbsenceRequest.decided_status: RequestStatus.DECLINED,
            AbsenceRequest.last_action_at: now,
            AbsenceRequest.late_approval_flag: False,
            AbsenceRequest.excluded_from_payroll: False,
        })
        db.refresh(request)
        db.add(ApprovalHistory(
            request_id=request_id,
            approver_id=actor.id,
            stage=observed.current_stage,
            action=ApprovalAction.DECLINED,
            comment=comment,
            action_at=now,
        ))
        outbox_service.emit_notification(db, request, approvers, observed.current_stage, "withdrawn", at=now)
        log_request_event(
            db,
            actor.id,
            "WITHDRAW",
            request_id,
            meta={"stage": observed.current_stage, "comment": comment},
            at=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request)
    logger.info("absence request withdrawn: request_id=%s stage=%s", request_id, observed.current_stage.value)
    return request


def archive(
    db: Session,
    request_id: int,
    actor: Employee,
    now: Optional[datetime] = None,
) -> AbsenceRequest:
    """
    Archive a decided request (one-way)

    Raises:
        NotFoundError: Unknown request
        AuthorizationError: Actor is neither the owner nor an administrator
        ConflictError: Request is still pending or already archived
    """
    request = _load_request(db, request_id)
    if request.employee_id != actor.id and not holds_any_role(db, actor, settings.get_admin_roles()):
        raise AuthorizationError("Only the owner or an administrator can archive a request", request_id=request_id)

    observed = observe(request)
    if observed.status not in ARCHIVABLE_STATUSES:
        raise ConflictError(
            f"Cannot archive absence request with status {observed.status.value}",
            request_id=request_id,
        )

    now = ensure_utc(now or now_utc())
    try:
        compare_and_set(db, request_id, observed, {
            AbsenceRequest.status: RequestStatus.ARCHIVED,
            AbsenceRequest.decided_status: observed.status,
        })
        log_request_event(
            db,
            actor.id,
            "ARCHIVE",
            request_id,
            meta={"before_status": observed.status},
            at=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request)
    logger.info(
        "absence request archived: request_id=%s before=%s actor_id=%s",
        request_id,
        observed.status.value,
        actor.id,
    )
    return request


def can_view(db: Session, actor: Employee, request: AbsenceRequest, graph=None) -> bool:
    """Owner, administrators, anyone who already decided it, or a current approver."""
    if request.employee_id == actor.id:
        return True
    if holds_any_role(db, actor, settings.get_admin_roles()):
        return True
    decided = db.query(ApprovalHistory.id).filter(
        ApprovalHistory.request_id == request.id,
        ApprovalHistory.approver_id == actor.id,
    ).first()
    if decided:
        return True
    status = coerce_enum(RequestStatus, request.status)
    if status == RequestStatus.PENDING:
        return is_authorized(db, actor, request, request.current_stage, graph)
    return False


def get_request(db: Session, request_id: int, actor: Optional[Employee] = None) -> AbsenceRequest:
    """
    Raises:
        NotFoundError: If the request does not exist or actor may not see it
    """
    request = _load_request(db, request_id)
    if actor is not None and not can_view(db, actor, request):
        raise NotFoundError(f"Absence request with id {request_id} not found", request_id=request_id)
    return request


def _candidate_criteria(db: Session, actor: Employee, stage: ApprovalStage, graph) -> List[Any]:
    """
    SQL narrowing for pending requests at stage that actor might decide

    An actor that inherits no other role can only decide as a resolved
    approver, so supervisor and manager stages reduce to the reporting links.
    is_authorized still has the final word on every candidate.
    """
    criteria = [
        AbsenceRequest.status == RequestStatus.PENDING,
        AbsenceRequest.current_stage == stage,
        AbsenceRequest.employee_id != actor.id,
    ]
    actor_role = normalize_role(actor.role)
    if resolve_role_closure(db, actor_role, graph) - {actor_role}:
        return criteria

    if stage == ApprovalStage.SUPERVISOR:
        criteria.append(Employee.supervisor_id == actor.id)
    elif stage in MANAGER_STAGES:
        supervisors = [
            employee_id for (employee_id,) in
            db.query(Employee.id).filter(Employee.general_manager_id == actor.id).all()
        ]
        criteria.append(or_(
            Employee.general_manager_id == actor.id,
            and_(
                Employee.general_manager_id.is_(None),
                Employee.supervisor_id.in_(supervisors),
            ),
        ))
    return criteria


def _pending_candidates(db: Session, actor: Employee, stage: ApprovalStage, graph) -> List[AbsenceRequest]:
    return (
        db.query(AbsenceRequest)
        .join(Employee, Employee.id == AbsenceRequest.employee_id)
        .options(joinedload(AbsenceRequest.employee))
        .filter(*_candidate_criteria(db, actor, stage, graph))
        .order_by(AbsenceRequest.last_action_at.asc(), AbsenceRequest.id.asc())
        .all()
    )


def list_pending_for_stage(db: Session, stage: ApprovalStage, actor: Employee) -> List[AbsenceRequest]:
    """Pending requests at stage that actor may decide, oldest action first."""
    stage = coerce_enum(ApprovalStage, stage)
    graph = load_inheritance_graph(db)
    return [
        r for r in _pending_candidates(db, actor, stage, graph)
        if is_authorized(db, actor, r, stage, graph)
    ]


def list_overlapping(
    db: Session,
    employee_id: int,
    start_date: date,
    end_date: date,
    exclude_request_id: Optional[int] = None,
) -> List[AbsenceRequest]:
    """
    Pending or approved requests of the employee that intersect the window.
    Approved requests count even after they were archived. Read-only.
    """
    _validate_window(start_date, end_date)
    # Overlap: existing.end >= new.start AND existing.start <= new.end
    query = db.query(AbsenceRequest).filter(
        AbsenceRequest.employee_id == employee_id,
        or_(AbsenceRequest.status.in_(CALENDAR_STATUSES), WAS_APPROVED),
        AbsenceRequest.end_date >= start_date,
        AbsenceRequest.start_date <= end_date,
    )
    if exclude_request_id:
        query = query.filter(AbsenceRequest.id != exclude_request_id)
    return query.order_by(AbsenceRequest.start_date.asc()).all()


def counts(db: Session, actor: Employee) -> Dict[str, int]:
    """Number of pending requests per stage that actor may decide."""
    graph = load_inheritance_graph(db)
    return {
        stage.value: sum(
            1 for r in _pending_candidates(db, actor, stage, graph)
            if is_authorized(db, actor, r, stage, graph)
        )
        for stage in ACTIONABLE_STAGES
    }


def list_my_requests(
    db: Session,
    actor: Employee,
    include_archived: bool = False,
) -> List[AbsenceRequest]:
    """The actor's own requests, newest first. Archived ones only on request."""
    query = db.query(AbsenceRequest).filter(AbsenceRequest.employee_id == actor.id)
    if not include_archived:
        query = query.filter(AbsenceRequest.status != RequestStatus.ARCHIVED)
    return query.order_by(AbsenceRequest.created_at.desc(), AbsenceRequest.id.desc()).all()


def list_approved(
    db: Session,
    employee_id: Optional[int] = None,
    collar_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[AbsenceRequest]:
    """
    Approved requests for the payroll incidence view, archived ones included

    Filters are optional; a date window keeps the requests that intersect it.

    Raises:
        ValidationError: If the window is reversed
    """
    query = (
        db.query(AbsenceRequest)
        .join(Employee, Employee.id == AbsenceRequest.employee_id)
        .options(joinedload(AbsenceRequest.employee))
        .filter(WAS_APPROVED)
    )
    if employee_id is not None:
        query = query.filter(AbsenceRequest.employee_id == employee_id)
    if collar_type:
        query = query.filter(Employee.collar_type == collar_type.strip().lower())
    if start_date is not None and end_date is not None:
        _validate_window(start_date, end_date)
    if start_date is not None:
        query = query.filter(AbsenceRequest.end_date >= start_date)
    if end_date is not None:
        query = query.filter(AbsenceRequest.start_date <= end_date)
    return query.order_by(AbsenceRequest.start_date.asc(), AbsenceRequest.id.asc()).all()


def get_audit_trail(db: Session, request_id: int, actor: Optional[Employee] = None) -> AuditTrail:
    """
    Approval history and escalation log of a request, with the state they replay to.

    Raises:
        NotFoundError: If the request does not exist or actor may not see it
        ValueError: If the recorded trail is inconsistent
    """
    request = get_request(db, request_id, actor)
    history = (
        db.query(ApprovalHistory)
        .filter(ApprovalHistory.request_id == request.id)
        .order_by(ApprovalHistory.action_at.asc(), ApprovalHistory.id.asc())
        .all()
    )
    escalations = (
        db.query(EscalationLog)
        .filter(EscalationLog.request_id == request.id)
        .order_by(EscalationLog.escalated_at.asc(), EscalationLog.id.asc())
        .all()
    )
    status, stage = replay_audit(profile_of(request), history, escalations)
    return AuditTrail(history=history, escalations=escalations, replayed_status=status, replayed_stage=stage)
