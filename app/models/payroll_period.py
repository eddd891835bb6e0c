"""
Payroll period model

Read-only from the workflow's point of view: the period containing a
request's start date supplies its processing cutoff.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, Index, CheckConstraint
import enum
from app.db.base import Base


class PayrollFrequency(str, enum.Enum):
    WEEKLY = "weekly"      # Blue and gray collar
    BIWEEKLY = "biweekly"  # White collar
    MONTHLY = "monthly"


class PayrollPeriod(Base):
    __tablename__ = "payroll_periods"

    id = Column(Integer, primary_key=True, index=True)
    period_code = Column(String(50), unique=True, nullable=False)  # e.g. 2026-W07, 2026-BW04
    frequency = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    cutoff_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_payroll_periods_frequency_dates", "frequency", "start_date", "end_date"),
        CheckConstraint("start_date <= end_date", name="check_payroll_period_start_le_end"),
    )
