"""
Employee model

Read-only mirror of the platform directory: reporting links, classification
and the assigned role used by approver resolution.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.db.base import Base


class CollarType(str, enum.Enum):
    WHITE_COLLAR = "white_collar"
    BLUE_COLLAR = "blue_collar"
    GRAY_COLLAR = "gray_collar"


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    emp_code = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="employee")  # Lower-case role name, see role_inheritances
    supervisor_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    general_manager_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    collar_type = Column(String, nullable=False, default=CollarType.WHITE_COLLAR.value)
    employee_type = Column(String, nullable=True)  # e.g. sindicalizado / no_sindicalizado
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    # Relationships
    supervisor = relationship("Employee", remote_side=[id], foreign_keys=[supervisor_id])
    general_manager = relationship("Employee", remote_side=[id], foreign_keys=[general_manager_id])
    absence_requests = relationship("AbsenceRequest", foreign_keys="AbsenceRequest.employee_id", back_populates="employee")
