"""
Role resolution service - who may act on a request at a given stage

Directory data (employees, role inheritance edges, HR assignments) is read
fresh on every call; nothing is cached across requests because it is
administered elsewhere and may change between two actions on one request.
"""
import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from app.core.errors import ConfigurationError, ValidationError
from app.models.absence_request import AbsenceRequest, ApprovalStage
from app.models.employee import Employee
from app.models.role import (
    HRAssignment,
    RoleInheritance,
    ROLE_HR,
    ROLE_PAYROLL,
    VALID_ROLES,
)
from app.services.audit_service import ENTITY_ROLE_INHERITANCE, log_audit

logger = logging.getLogger(__name__)

# Inheritance chains longer than this are treated as misconfiguration
MAX_INHERITANCE_DEPTH = 20

HR_STAGES = frozenset({ApprovalStage.HR, ApprovalStage.HR_BLUE_GRAY})
MANAGER_STAGES = frozenset({ApprovalStage.MANAGER, ApprovalStage.GENERAL_MANAGER})


def normalize_role(role: Optional[str]) -> str:
    return (role or "").strip().lower()


def load_inheritance_graph(db: Session) -> Dict[str, List[str]]:
    """
    Map each child role to its active parent roles, highest priority first.
    """
    edges = (
        db.query(RoleInheritance)
        .filter(RoleInheritance.is_active == True)
        .order_by(RoleInheritance.child_role.asc(), RoleInheritance.priority.desc())
        .all()
    )
    graph: Dict[str, List[str]] = {}
    for edge in edges:
        graph.setdefault(normalize_role(edge.child_role), []).append(normalize_role(edge.parent_role))
    return graph


def resolve_role_closure(
    db: Session,
    role: str,
    graph: Optional[Dict[str, List[str]]] = None,
) -> Set[str]:
    """
    Return role plus every role it inherits, directly or transitively.

    Breadth-first with a visited set, so cyclic data terminates; walks
    deeper than MAX_INHERITANCE_DEPTH are cut off and logged.
    """
    if graph is None:
        graph = load_inheritance_graph(db)

    start = normalize_role(role)
    visited: Set[str] = {start}
    queue = deque([(start, 0)])

    while queue:
        current, depth = queue.popleft()
        if depth >= MAX_INHERITANCE_DEPTH:
            logger.warning("Role inheritance walk from %s exceeded depth %d", start, MAX_INHERITANCE_DEPTH)
            continue
        for parent in graph.get(current, []):
            if parent not in visited:
                visited.add(parent)
                queue.append((parent, depth + 1))

    return visited


def role_holders(
    db: Session,
    role: str,
    graph: Optional[Dict[str, List[str]]] = None,
) -> Set[int]:
    """IDs of active employees whose role is, or inherits, the given role."""
    if graph is None:
        graph = load_inheritance_graph(db)

    target = normalize_role(role)
    assigned_roles = [r for (r,) in db.query(Employee.role).filter(Employee.active == True).distinct().all()]
    matching = [r for r in assigned_roles if target in resolve_role_closure(db, r, graph)]
    if not matching:
        return set()

    rows = db.query(Employee.id).filter(
        Employee.active == True,
        Employee.role.in_(matching),
    ).all()
    return {employee_id for (employee_id,) in rows}


def _active_ids(db: Session, ids: Iterable[Optional[int]]) -> Set[int]:
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return set()
    rows = db.query(Employee.id).filter(Employee.id.in_(wanted), Employee.active == True).all()
    return {employee_id for (employee_id,) in rows}


def _hr_approvers(db: Session, employee: Employee, graph: Dict[str, List[str]]) -> Set[int]:
    employee_type = normalize_role(employee.employee_type)
    if employee_type:
        rows = (
            db.query(HRAssignment.hr_user_id)
            .join(Employee, Employee.id == HRAssignment.hr_user_id)
            .filter(
                HRAssignment.employee_type == employee_type,
                Employee.active == True,
            )
            .all()
        )
        assigned = {hr_user_id for (hr_user_id,) in rows}
        if assigned:
            return assigned

    # No assignment covers this employee: any holder of the unscoped HR role
    return role_holders(db, ROLE_HR, graph)


def resolve_approvers_for_employee(
    db: Session,
    employee: Employee,
    stage: ApprovalStage,
    graph: Optional[Dict[str, List[str]]] = None,
) -> Set[int]:
    """
    Compute the identities authorized to decide the given stage for an employee.

    - SUPERVISOR: the directly assigned supervisor
    - MANAGER / GENERAL_MANAGER: the employee's general manager, else the supervisor's
    - HR / HR_BLUE_GRAY: HR users assigned to the employee's type, else all HR role holders
    - PAYROLL: payroll role holders
    - COMPLETED: nobody
    """
    if graph is None:
        graph = load_inheritance_graph(db)

    if stage == ApprovalStage.SUPERVISOR:
        return _active_ids(db, [employee.supervisor_id])

    if stage in MANAGER_STAGES:
        manager_id = employee.general_manager_id
        if manager_id is None and employee.supervisor_id is not None:
            supervisor = db.query(Employee).filter(Employee.id == employee.supervisor_id).first()
            manager_id = supervisor.general_manager_id if supervisor else None
        return _active_ids(db, [manager_id])

    if stage in HR_STAGES:
        return _hr_approvers(db, employee, graph)

    if stage == ApprovalStage.PAYROLL:
        return role_holders(db, ROLE_PAYROLL, graph)

    return set()


def resolve_approvers(
    db: Session,
    request: AbsenceRequest,
    stage: ApprovalStage,
    graph: Optional[Dict[str, List[str]]] = None,
) -> Set[int]:
    """Approver identities for a request at a stage."""
    employee = request.employee or db.query(Employee).filter(Employee.id == request.employee_id).first()
    if employee is None:
        return set()
    return resolve_approvers_for_employee(db, employee, stage, graph)


def require_approvers(
    db: Session,
    employee: Employee,
    stage: ApprovalStage,
    graph: Optional[Dict[str, List[str]]] = None,
) -> Set[int]:
    """
    Same as resolve_approvers_for_employee but an empty result is a configuration fault.

    Raises:
        ConfigurationError: If nobody could ever decide this stage
    """
    approvers = resolve_approvers_for_employee(db, employee, stage, graph)
    if stage != ApprovalStage.COMPLETED and not approvers:
        raise ConfigurationError(
            f"No approver configured for stage {stage.value} of employee {employee.id}",
            employee_id=employee.id,
            stage=stage.value,
        )
    return approvers


def is_authorized(
    db: Session,
    actor: Employee,
    request: AbsenceRequest,
    stage: ApprovalStage,
    graph: Optional[Dict[str, List[str]]] = None,
) -> bool:
    """
    Check whether actor may decide request at stage

    Authorized when the actor is a resolved approver, or when the actor's role
    strictly inherits the assigned role of one of them (e.g. admin over a
    supervisor). Nobody decides their own request.
    """
    if actor.id == request.employee_id:
        return False

    if graph is None:
        graph = load_inheritance_graph(db)
    approvers = resolve_approvers(db, request, stage, graph)
    if actor.id in approvers:
        return True
    if not approvers:
        return False

    actor_role = normalize_role(actor.role)
    inherited = resolve_role_closure(db, actor_role, graph) - {actor_role}
    if not inherited:
        return False

    approver_roles = {
        normalize_role(role)
        for (role,) in db.query(Employee.role).filter(Employee.id.in_(approvers)).all()
    }
    return bool(inherited & approver_roles)


def holds_any_role(db: Session, actor: Employee, roles: Iterable[str]) -> bool:
    """True if the actor's role closure contains any of the given roles."""
    wanted = {normalize_role(r) for r in roles}
    return bool(resolve_role_closure(db, actor.role) & wanted)


def add_inheritance_edge(
    db: Session,
    child_role: str,
    parent_role: str,
    priority: int = 0,
    notes: Optional[str] = None,
    actor_id: Optional[int] = None,
) -> RoleInheritance:
    """
    Create a role inheritance edge after validating it

    Rejects unknown roles, self-inheritance, duplicates and edges that would
    close a cycle (parent already inherits child).

    Raises:
        ValidationError: If the edge is invalid
    """
    child = normalize_role(child_role)
    parent = normalize_role(parent_role)

    if child not in VALID_ROLES:
        raise ValidationError(f"Invalid child role: {child_role}")
    if parent not in VALID_ROLES:
        raise ValidationError(f"Invalid parent role: {parent_role}")
    if child == parent:
        raise ValidationError("A role cannot inherit from itself")

    existing = (
        db.query(RoleInheritance)
        .filter(RoleInheritance.child_role == child, RoleInheritance.parent_role == parent)
        .first()
    )
    if existing:
        raise ValidationError(f"Inheritance already exists between {child} and {parent}")

    if child in resolve_role_closure(db, parent):
        raise ValidationError(
            f"Circular dependency detected: {parent} already inherits from {child}"
        )

    edge = RoleInheritance(
        child_role=child,
        parent_role=parent,
        priority=priority,
        notes=notes,
        is_active=True,
    )
    db.add(edge)
    db.flush()

    if actor_id is not None:
        log_audit(
            db=db,
            actor_id=actor_id,
            action="CREATE",
            entity_type=ENTITY_ROLE_INHERITANCE,
            entity_id=edge.id,
            meta={"child_role": child, "parent_role": parent, "priority": priority},
        )

    db.commit()
    db.refresh(edge)
    logger.info("Role inheritance added: %s -> %s", child, parent)
    return edge
