"""
Absence request schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from app.models.absence_request import ApprovalAction, ApprovalStage, HrRoute, RequestStatus
from app.utils.datetime_utils import iso_8601_utc


class AbsenceRequestCreate(BaseModel):
    """Schema for submitting an absence request (owner is the caller)"""
    request_type: str = Field(..., min_length=1, max_length=50, description="Request type code, e.g. VACATION")
    start_date: date = Field(..., description="First day of the absence")
    end_date: date = Field(..., description="Last day of the absence")
    quantity: Decimal = Field(..., description="Days or hours, depending on the request type")
    reason: Optional[str] = Field(None, description="Free-text reason")
    custom_fields: Optional[Dict[str, Any]] = Field(None, description="Type-specific field values")
    new_shift_id: Optional[int] = Field(None, description="Target shift for shift changes")


class ActRequest(BaseModel):
    """Schema for an approve/decline decision"""
    action: ApprovalAction = Field(..., description="APPROVED or DECLINED")
    claimed_stage: ApprovalStage = Field(..., description="Stage the client believes the request is at")
    comment: Optional[str] = Field(None, description="Optional comment")


class WithdrawRequest(BaseModel):
    comment: Optional[str] = Field(None, description="Why the employee withdrew")


class SweepRequest(BaseModel):
    """Optional overrides for a manual sweep"""
    threshold_hours: Optional[int] = Field(None, gt=0, description="Defaults to ESCALATION_THRESHOLD_HOURS")
    reason: Optional[str] = Field(None, max_length=255, description="Defaults to ESCALATION_REASON")


class AbsenceRequestOut(BaseModel):
    id: int
    employee_id: int
    request_type: str
    start_date: date
    end_date: date
    quantity: Decimal
    reason: Optional[str]
    status: RequestStatus
    current_stage: ApprovalStage
    decided_status: Optional[RequestStatus] = None
    hr_route: HrRoute
    supervisor_combined: bool
    last_action_at: datetime
    escalation_count: int
    is_escalated: bool
    payroll_cutoff_date: Optional[datetime]
    late_approval_flag: bool
    excluded_from_payroll: bool
    custom_fields: Optional[Dict[str, Any]] = None
    new_shift_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("last_action_at", "payroll_cutoff_date", "created_at", "updated_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)


class ApprovalHistoryOut(BaseModel):
    id: int
    request_id: int
    approver_id: int
    stage: ApprovalStage
    action: ApprovalAction
    comment: Optional[str]
    action_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("action_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)


class EscalationLogOut(BaseModel):
    id: int
    request_id: int
    from_stage: ApprovalStage
    to_stage: ApprovalStage
    escalated_at: datetime
    reason: str
    notified_user_ids: List[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("escalated_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt: Optional[datetime]) -> Optional[str]:
        return iso_8601_utc(dt)


class AuditTrailOut(BaseModel):
    """Decision trail plus the state it replays to"""
    request_id: int
    status: RequestStatus
    current_stage: ApprovalStage
    decided_status: Optional[RequestStatus] = None
    replayed_status: RequestStatus
    replayed_stage: ApprovalStage
    history: List[ApprovalHistoryOut]
    escalations: List[EscalationLogOut]
    consistent: bool = False

    @model_validator(mode="after")
    def set_consistent(self) -> "AuditTrailOut":
        # Archiving is not a workflow decision; an archived request replays to its decided status
        effective = self.decided_status if self.status == RequestStatus.ARCHIVED else self.status
        status_matches = effective == self.replayed_status
        self.consistent = status_matches and self.current_stage == self.replayed_stage
        return self


class SweepFailureOut(BaseModel):
    request_id: int
    error_type: str
    message: str


class SweepReportOut(BaseModel):
    escalated: List[EscalationLogOut]
    skipped: List[int]
    failures: List[SweepFailureOut]


class StageCountsOut(BaseModel):
    counts: Dict[str, int]
    total: int
