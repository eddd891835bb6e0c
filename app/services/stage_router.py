"""
Stage router - which approval stages a request passes, in what order

The whole routing policy is the two tables below. A request's routing profile
(combined supervisor role? which HR stage, if any?) is derived from the
directory once at creation and stored on the request, so every later
next-stage decision and every audit replay sees the same path.

Policy:
1. Supervisor holds a combined supervisor+general-manager role: SUPERVISOR and
   MANAGER are skipped; the request starts at the HR stage for its collar.
2. Otherwise: SUPERVISOR -> MANAGER -> HR variant -> COMPLETED.
3. White collar: manager approval is final unless the request type is HR-mandatory.
4. Blue/gray collar (and unionized types): always HR_BLUE_GRAY.
5. A decline leaves the sequence at any stage.
"""
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from app.models.absence_request import (
    AbsenceRequest,
    ApprovalAction,
    ApprovalHistory,
    ApprovalStage,
    EscalationLog,
    HrRoute,
    RequestStatus,
    RequestTypeConfig,
)
from app.models.employee import CollarType, Employee
from app.utils.datetime_utils import ensure_utc
from app.utils.enums import coerce_enum


class RouteProfile(NamedTuple):
    supervisor_combined: bool
    hr_route: HrRoute


S = ApprovalStage

INITIAL_STAGES: Dict[Tuple[bool, HrRoute], ApprovalStage] = {
    (False, HrRoute.NONE): S.SUPERVISOR,
    (False, HrRoute.HR): S.SUPERVISOR,
    (False, HrRoute.HR_BLUE_GRAY): S.SUPERVISOR,
    (True, HrRoute.NONE): S.HR,
    (True, HrRoute.HR): S.HR,
    (True, HrRoute.HR_BLUE_GRAY): S.HR_BLUE_GRAY,
}

# (current stage, HR route) -> stage after an approval
STAGE_TRANSITIONS: Dict[Tuple[ApprovalStage, HrRoute], ApprovalStage] = {
    (S.SUPERVISOR, HrRoute.NONE): S.MANAGER,
    (S.SUPERVISOR, HrRoute.HR): S.MANAGER,
    (S.SUPERVISOR, HrRoute.HR_BLUE_GRAY): S.MANAGER,
    (S.MANAGER, HrRoute.NONE): S.COMPLETED,
    (S.MANAGER, HrRoute.HR): S.HR,
    (S.MANAGER, HrRoute.HR_BLUE_GRAY): S.HR_BLUE_GRAY,
    (S.GENERAL_MANAGER, HrRoute.NONE): S.COMPLETED,
    (S.GENERAL_MANAGER, HrRoute.HR): S.HR,
    (S.GENERAL_MANAGER, HrRoute.HR_BLUE_GRAY): S.HR_BLUE_GRAY,
    (S.HR, HrRoute.NONE): S.COMPLETED,
    (S.HR, HrRoute.HR): S.COMPLETED,
    (S.HR, HrRoute.HR_BLUE_GRAY): S.COMPLETED,
    (S.HR_BLUE_GRAY, HrRoute.NONE): S.COMPLETED,
    (S.HR_BLUE_GRAY, HrRoute.HR): S.COMPLETED,
    (S.HR_BLUE_GRAY, HrRoute.HR_BLUE_GRAY): S.COMPLETED,
    (S.PAYROLL, HrRoute.NONE): S.COMPLETED,
    (S.PAYROLL, HrRoute.HR): S.COMPLETED,
    (S.PAYROLL, HrRoute.HR_BLUE_GRAY): S.COMPLETED,
}

BLUE_GRAY_COLLARS = frozenset({CollarType.BLUE_COLLAR.value, CollarType.GRAY_COLLAR.value})


def is_blue_or_gray(employee: Employee, unionized_types: Iterable[str] = ()) -> bool:
    collar = (employee.collar_type or "").strip().lower()
    employee_type = (employee.employee_type or "").strip().lower()
    return collar in BLUE_GRAY_COLLARS or employee_type in set(unionized_types)


def route_profile(
    employee: Employee,
    supervisor: Optional[Employee],
    type_config: Optional[RequestTypeConfig],
    combined_roles: Iterable[str] = (),
    unionized_types: Iterable[str] = (),
) -> RouteProfile:
    """Derive the routing profile from directory and request-type data."""
    combined = supervisor is not None and (supervisor.role or "").strip().lower() in set(combined_roles)

    if is_blue_or_gray(employee, unionized_types):
        hr_route = HrRoute.HR_BLUE_GRAY
    elif type_config is not None and type_config.hr_mandatory:
        hr_route = HrRoute.HR
    else:
        hr_route = HrRoute.NONE

    return RouteProfile(supervisor_combined=combined, hr_route=hr_route)


def profile_of(request: AbsenceRequest) -> RouteProfile:
    """The routing profile frozen on a request."""
    return RouteProfile(
        supervisor_combined=bool(request.supervisor_combined),
        hr_route=coerce_enum(HrRoute, request.hr_route),
    )


def initial_stage(profile: RouteProfile) -> ApprovalStage:
    return INITIAL_STAGES[(profile.supervisor_combined, profile.hr_route)]


def next_stage(
    current: ApprovalStage,
    profile: RouteProfile,
    action: ApprovalAction = ApprovalAction.APPROVED,
) -> Optional[ApprovalStage]:
    """
    Stage after acting on current.

    Returns None for a decline: the request leaves the sequence with status
    DECLINED. COMPLETED means the request is fully approved.

    Raises:
        ValueError: If current has no outgoing transition (e.g. COMPLETED)
    """
    if coerce_enum(ApprovalAction, action) == ApprovalAction.DECLINED:
        return None
    key = (coerce_enum(ApprovalStage, current), profile.hr_route)
    if key not in STAGE_TRANSITIONS:
        raise ValueError(f"No transition from stage {key[0].value}")
    return STAGE_TRANSITIONS[key]


def stage_path(profile: RouteProfile) -> List[ApprovalStage]:
    """Ordered stages a request with this profile passes, ending with COMPLETED."""
    path = [initial_stage(profile)]
    while path[-1] != ApprovalStage.COMPLETED:
        if len(path) > len(ApprovalStage):
            raise ValueError(f"Routing table loops for profile {profile}")
        path.append(next_stage(path[-1], profile))
    return path


def _entry_time(entry) -> datetime:
    if isinstance(entry, EscalationLog):
        return ensure_utc(entry.escalated_at)
    return ensure_utc(entry.action_at)


def replay_audit(
    profile: RouteProfile,
    history: Sequence[ApprovalHistory],
    escalations: Sequence[EscalationLog] = (),
) -> Tuple[RequestStatus, ApprovalStage]:
    """
    Rebuild (status, current_stage) from the audit trail alone.

    Entries are applied in timestamp order starting from the profile's
    initial stage. An entry that does not match the stage reached so far
    means the trail is inconsistent.

    Raises:
        ValueError: If the trail does not describe a valid path
    """
    entries = sorted(
        list(history) + list(escalations),
        key=lambda e: (_entry_time(e), 0 if isinstance(e, ApprovalHistory) else 1, e.id or 0),
    )

    status = RequestStatus.PENDING
    stage = initial_stage(profile)

    for entry in entries:
        if status != RequestStatus.PENDING:
            raise ValueError(f"Audit entry {entry.id} recorded after the request was {status.value}")

        if isinstance(entry, EscalationLog):
            from_stage = coerce_enum(ApprovalStage, entry.from_stage)
            if from_stage != stage:
                raise ValueError(f"Escalation {entry.id} starts at {from_stage.value}, expected {stage.value}")
            stage = coerce_enum(ApprovalStage, entry.to_stage)
        else:
            entry_stage = coerce_enum(ApprovalStage, entry.stage)
            if entry_stage != stage:
                raise ValueError(f"History {entry.id} is at {entry_stage.value}, expected {stage.value}")
            following = next_stage(stage, profile, entry.action)
            if following is None:
                status = RequestStatus.DECLINED
                continue
            stage = following

        if stage == ApprovalStage.COMPLETED:
            status = RequestStatus.APPROVED

    return status, stage
