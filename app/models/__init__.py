"""
Database models
"""
from app.models.employee import Employee, CollarType
from app.models.role import RoleInheritance, HRAssignment
from app.models.audit_log import AuditLog
from app.models.absence_request import (
    AbsenceRequest,
    ApprovalHistory,
    EscalationLog,
    RequestTypeConfig,
    RequestStatus,
    ApprovalStage,
    ApprovalAction,
    HrRoute,
    QuantityUnit,
    TERMINAL_STATUSES,
    ARCHIVABLE_STATUSES,
)
from app.models.payroll_period import PayrollPeriod, PayrollFrequency
from app.models.outbox import OutboxEvent, OutboxEventType

__all__ = [
    "Employee",
    "CollarType",
    "RoleInheritance",
    "HRAssignment",
    "AuditLog",
    "AbsenceRequest",
    "ApprovalHistory",
    "EscalationLog",
    "RequestTypeConfig",
    "RequestStatus",
    "ApprovalStage",
    "ApprovalAction",
    "HrRoute",
    "QuantityUnit",
    "TERMINAL_STATUSES",
    "ARCHIVABLE_STATUSES",
    "PayrollPeriod",
    "PayrollFrequency",
    "OutboxEvent",
    "OutboxEventType",
]
