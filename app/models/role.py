"""
Role configuration models

RoleInheritance: holders of child_role also carry every permission of
parent_role, transitively. HRAssignment partitions HR approval duty by
employee type.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base


# Role names used by routing and resolution
ROLE_EMPLOYEE = "employee"
ROLE_SUPERVISOR = "supervisor"
ROLE_MANAGER = "manager"
ROLE_GENERAL_MANAGER = "gm"
ROLE_SUP_AND_GM = "sup_and_gm"
ROLE_HR = "hr"
ROLE_HR_BLUE_GRAY = "hr_blue_gray"
ROLE_HR_WHITE = "hr_white"
ROLE_HR_AND_PR = "hr_and_pr"
ROLE_PAYROLL = "payroll"
ROLE_ACCOUNTANT = "accountant"
ROLE_ADMIN = "admin"

VALID_ROLES = frozenset({
    ROLE_EMPLOYEE,
    ROLE_SUPERVISOR,
    ROLE_MANAGER,
    ROLE_GENERAL_MANAGER,
    ROLE_SUP_AND_GM,
    ROLE_HR,
    ROLE_HR_BLUE_GRAY,
    ROLE_HR_WHITE,
    ROLE_HR_AND_PR,
    ROLE_PAYROLL,
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
})


class RoleInheritance(Base):
    __tablename__ = "role_inheritances"

    id = Column(Integer, primary_key=True, index=True)
    child_role = Column(String(50), nullable=False, index=True)
    parent_role = Column(String(50), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)  # Higher is walked first
    notes = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.current_timestamp(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("child_role", "parent_role", name="uq_role_inheritances_child_parent"),
        CheckConstraint("child_role <> parent_role", name="check_role_inheritance_not_self"),
    )


class HRAssignment(Base):
    __tablename__ = "hr_assignments"

    id = Column(Integer, primary_key=True, index=True)
    hr_user_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    employee_type = Column(String(50), nullable=False, index=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.current_timestamp(),
        nullable=False,
    )

    hr_user = relationship("Employee", foreign_keys=[hr_user_id])

    __table_args__ = (
        UniqueConstraint("hr_user_id", "employee_type", name="uq_hr_assignments_user_type"),
    )
