"""
Absence request models

AbsenceRequest is the workflow subject. ApprovalHistory and EscalationLog are
append-only audit tables: rows are inserted in the same transaction as the
transition they describe and never updated or deleted.
"""
from sqlalchemy import (
    Column,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    Numeric,
    Boolean,
    JSON,
    Index,
    CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import text
import enum
from app.db.base import Base


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    ARCHIVED = "ARCHIVED"


class ApprovalStage(str, enum.Enum):
    SUPERVISOR = "SUPERVISOR"
    MANAGER = "MANAGER"
    GENERAL_MANAGER = "GENERAL_MANAGER"
    HR = "HR"
    HR_BLUE_GRAY = "HR_BLUE_GRAY"
    PAYROLL = "PAYROLL"
    COMPLETED = "COMPLETED"


class ApprovalAction(str, enum.Enum):
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class HrRoute(str, enum.Enum):
    """Which HR stage, if any, follows manager approval."""
    NONE = "NONE"
    HR = "HR"
    HR_BLUE_GRAY = "HR_BLUE_GRAY"


class QuantityUnit(str, enum.Enum):
    DAYS = "DAYS"
    HOURS = "HOURS"


TERMINAL_STATUSES = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.DECLINED,
    RequestStatus.ARCHIVED,
})

# Only these may be archived
ARCHIVABLE_STATUSES = frozenset({RequestStatus.APPROVED, RequestStatus.DECLINED})


class RequestTypeConfig(Base):
    """
    Per-type configuration. hr_mandatory forces the HR stage for white-collar
    employees; required_fields lists custom-field keys the payload must carry.
    """
    __tablename__ = "request_type_configs"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    unit = Column(String(10), nullable=False, default=QuantityUnit.DAYS.value)
    hr_mandatory = Column(Boolean, nullable=False, default=False)
    requires_shift = Column(Boolean, nullable=False, default=False)
    required_fields = Column(JSON, nullable=True)
    active = Column(Boolean, nullable=False, default=True)


class AbsenceRequest(Base):
    __tablename__ = "absence_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    request_type = Column(String(50), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    quantity = Column(Numeric(6, 2), nullable=False)  # Days or hours, per request_type_configs.unit
    reason = Column(Text, nullable=True)
    status = Column(SQLEnum(RequestStatus, name="request_status"), nullable=False, default=RequestStatus.PENDING, index=True)
    current_stage = Column(SQLEnum(ApprovalStage, name="approval_stage"), nullable=False, index=True)
    # APPROVED or DECLINED once terminal; survives archiving
    decided_status = Column(SQLEnum(RequestStatus, name="request_status"), nullable=True)

    # Routing profile frozen at creation
    hr_route = Column(SQLEnum(HrRoute, name="hr_route"), nullable=False, default=HrRoute.NONE)
    supervisor_combined = Column(Boolean, nullable=False, default=False)

    # Escalation tracking
    last_action_at = Column(DateTime(timezone=True), nullable=False, index=True)
    escalation_count = Column(Integer, nullable=False, default=0)
    is_escalated = Column(Boolean, nullable=False, default=False)

    # Payroll interface flags
    payroll_cutoff_date = Column(DateTime(timezone=True), nullable=True)
    late_approval_flag = Column(Boolean, nullable=False, default=False)
    excluded_from_payroll = Column(Boolean, nullable=False, default=False)

    # Type-specific payload
    custom_fields = Column(JSON, nullable=True)
    new_shift_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    # Relationships
    employee = relationship("Employee", foreign_keys=[employee_id], back_populates="absence_requests")
    approval_history = relationship(
        "ApprovalHistory",
        back_populates="request",
        order_by="ApprovalHistory.id",
    )
    escalation_logs = relationship(
        "EscalationLog",
        back_populates="request",
        order_by="EscalationLog.id",
    )

    __table_args__ = (
        Index("ix_absence_requests_employee_dates", "employee_id", "start_date", "end_date"),
        Index("ix_absence_requests_status_stage", "status", "current_stage"),
        CheckConstraint("start_date <= end_date", name="check_absence_start_le_end"),
        CheckConstraint("quantity > 0", name="check_absence_quantity_positive"),
    )


class ApprovalHistory(Base):
    __tablename__ = "approval_history"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("absence_requests.id"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    stage = Column(SQLEnum(ApprovalStage, name="approval_stage"), nullable=False)
    action = Column(SQLEnum(ApprovalAction, name="approval_action"), nullable=False)
    comment = Column(Text, nullable=True)
    action_at = Column(DateTime(timezone=True), nullable=False)

    request = relationship("AbsenceRequest", back_populates="approval_history")
    approver = relationship("Employee", foreign_keys=[approver_id])


class EscalationLog(Base):
    __tablename__ = "escalation_logs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("absence_requests.id"), nullable=False, index=True)
    from_stage = Column(SQLEnum(ApprovalStage, name="approval_stage"), nullable=False)
    to_stage = Column(SQLEnum(ApprovalStage, name="approval_stage"), nullable=False)
    escalated_at = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String(255), nullable=False)
    notified_user_ids = Column(JSON, nullable=False, default=list)  # Ordered, de-duplicated ids

    request = relationship("AbsenceRequest", back_populates="escalation_logs")
