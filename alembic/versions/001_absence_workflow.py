"""Absence request workflow tables

Revision ID: 001_absence_workflow
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "001_absence_workflow"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAGES = ("SUPERVISOR", "MANAGER", "GENERAL_MANAGER", "HR", "HR_BLUE_GRAY", "PAYROLL", "COMPLETED")

# Created explicitly once; approval_stage is shared by three tables
request_status = postgresql.ENUM("PENDING", "APPROVED", "DECLINED", "ARCHIVED", name="request_status", create_type=False)
approval_stage = postgresql.ENUM(*STAGES, name="approval_stage", create_type=False)
approval_action = postgresql.ENUM("APPROVED", "DECLINED", name="approval_action", create_type=False)
hr_route = postgresql.ENUM("NONE", "HR", "HR_BLUE_GRAY", name="hr_route", create_type=False)


def _created_at():
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (request_status, approval_stage, approval_action, hr_route):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("emp_code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="employee"),
        sa.Column("supervisor_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("general_manager_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("collar_type", sa.String(), nullable=False, server_default="white_collar"),
        sa.Column("employee_type", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_employees_id", "employees", ["id"])
    op.create_index("ix_employees_emp_code", "employees", ["emp_code"], unique=True)
    op.create_index("ix_employees_supervisor_id", "employees", ["supervisor_id"])
    op.create_index("ix_employees_general_manager_id", "employees", ["general_manager_id"])

    op.create_table(
        "role_inheritances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("child_role", sa.String(50), nullable=False),
        sa.Column("parent_role", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("child_role", "parent_role", name="uq_role_inheritances_child_parent"),
        sa.CheckConstraint("child_role <> parent_role", name="check_role_inheritance_not_self"),
    )
    op.create_index("ix_role_inheritances_id", "role_inheritances", ["id"])
    op.create_index("ix_role_inheritances_child_role", "role_inheritances", ["child_role"])
    op.create_index("ix_role_inheritances_parent_role", "role_inheritances", ["parent_role"])

    op.create_table(
        "hr_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("hr_user_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("employee_type", sa.String(50), nullable=False),
        _created_at(),
        sa.UniqueConstraint("hr_user_id", "employee_type", name="uq_hr_assignments_user_type"),
    )
    op.create_index("ix_hr_assignments_id", "hr_assignments", ["id"])
    op.create_index("ix_hr_assignments_hr_user_id", "hr_assignments", ["hr_user_id"])
    op.create_index("ix_hr_assignments_employee_type", "hr_assignments", ["employee_type"])

    op.create_table(
        "request_type_configs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("unit", sa.String(10), nullable=False, server_default="DAYS"),
        sa.Column("hr_mandatory", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("requires_shift", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("required_fields", sa.JSON(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_request_type_configs_id", "request_type_configs", ["id"])
    op.create_index("ix_request_type_configs_code", "request_type_configs", ["code"], unique=True)

    op.create_table(
        "payroll_periods",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("period_code", sa.String(50), nullable=False, unique=True),
        sa.Column("frequency", sa.String(20), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("cutoff_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("start_date <= end_date", name="check_payroll_period_start_le_end"),
    )
    op.create_index("ix_payroll_periods_id", "payroll_periods", ["id"])
    op.create_index("ix_payroll_periods_frequency_dates", "payroll_periods", ["frequency", "start_date", "end_date"])

    op.create_table(
        "absence_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("request_type", sa.String(50), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("quantity", sa.Numeric(6, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", request_status, nullable=False),
        sa.Column("current_stage", approval_stage, nullable=False),
        sa.Column("decided_status", request_status, nullable=True),
        sa.Column("hr_route", hr_route, nullable=False),
        sa.Column("supervisor_combined", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_action_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("escalation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_escalated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payroll_cutoff_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("late_approval_flag", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("excluded_from_payroll", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("custom_fields", sa.JSON(), nullable=True),
        sa.Column("new_shift_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("start_date <= end_date", name="check_absence_start_le_end"),
        sa.CheckConstraint("quantity > 0", name="check_absence_quantity_positive"),
    )
    op.create_index("ix_absence_requests_id", "absence_requests", ["id"])
    op.create_index("ix_absence_requests_employee_id", "absence_requests", ["employee_id"])
    op.create_index("ix_absence_requests_status", "absence_requests", ["status"])
    op.create_index("ix_absence_requests_current_stage", "absence_requests", ["current_stage"])
    op.create_index("ix_absence_requests_last_action_at", "absence_requests", ["last_action_at"])
    op.create_index("ix_absence_requests_employee_dates", "absence_requests", ["employee_id", "start_date", "end_date"])
    op.create_index("ix_absence_requests_status_stage", "absence_requests", ["status", "current_stage"])

    op.create_table(
        "approval_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("absence_requests.id"), nullable=False),
        sa.Column("approver_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("stage", approval_stage, nullable=False),
        sa.Column("action", approval_action, nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("action_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_approval_history_id", "approval_history", ["id"])
    op.create_index("ix_approval_history_request_id", "approval_history", ["request_id"])

    op.create_table(
        "escalation_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("absence_requests.id"), nullable=False),
        sa.Column("from_stage", approval_stage, nullable=False),
        sa.Column("to_stage", approval_stage, nullable=False),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("notified_user_ids", sa.JSON(), nullable=False),
    )
    op.create_index("ix_escalation_logs_id", "escalation_logs", ["id"])
    op.create_index("ix_escalation_logs_request_id", "escalation_logs", ["request_id"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("absence_requests.id"), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_events_id", "outbox_events", ["id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_request_id", "outbox_events", ["request_id"])
    op.create_index("ix_outbox_events_dispatched_at", "outbox_events", ["dispatched_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("meta_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    for table in (
        "audit_logs",
        "outbox_events",
        "escalation_logs",
        "approval_history",
        "absence_requests",
        "payroll_periods",
        "request_type_configs",
        "hr_assignments",
        "role_inheritances",
        "employees",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (hr_route, approval_action, approval_stage, request_status):
        enum_type.drop(bind, checkfirst=True)
