"""
Payroll cutoff service

The cutoff is computed once when a request is created and never recomputed.
Late/excluded flags derived from it are stamped by the approval processor at
the terminal transition only.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.models.absence_request import ApprovalStage
from app.models.employee import Employee
from app.models.payroll_period import PayrollFrequency, PayrollPeriod
from app.services.stage_router import is_blue_or_gray
from app.utils.datetime_utils import UTC, ensure_utc, to_zone
from app.utils.enums import coerce_enum

logger = logging.getLogger(__name__)

FRIDAY = 4
CUTOFF_LOCAL_TIME = time(23, 59, 59)
# From this hour on a Friday, the same-day cutoff is considered passed
FRIDAY_ROLLOVER_HOUR = 23

# A decline at these stages removes the request from payroll export
PAYROLL_EXCLUDING_STAGES = frozenset({
    ApprovalStage.HR,
    ApprovalStage.HR_BLUE_GRAY,
    ApprovalStage.PAYROLL,
})


def payroll_frequency_for(employee: Employee, unionized_types: Iterable[str] = ()) -> PayrollFrequency:
    """Blue/gray collar and unionized staff are paid weekly, everyone else biweekly."""
    if is_blue_or_gray(employee, unionized_types):
        return PayrollFrequency.WEEKLY
    return PayrollFrequency.BIWEEKLY


def find_period(db: Session, frequency: PayrollFrequency, on: date) -> Optional[PayrollPeriod]:
    return (
        db.query(PayrollPeriod)
        .filter(
            PayrollPeriod.frequency == frequency.value,
            PayrollPeriod.start_date <= on,
            PayrollPeriod.end_date >= on,
        )
        .order_by(PayrollPeriod.start_date.desc())
        .first()
    )


def fallback_cutoff(now: datetime, weekly: bool, tz_name: str) -> datetime:
    """
    Next Friday 23:59:59 in payroll local time, returned in UTC.

    On a Friday from 23:00 on, the cutoff rolls to the following week.
    Biweekly payrolls close on odd ISO weeks, so an even-week Friday moves
    forward by seven days.
    """
    tz = ZoneInfo(tz_name)
    local_now = to_zone(now, tz_name)

    days_until_friday = (FRIDAY - local_now.weekday()) % 7
    if days_until_friday == 0 and local_now.hour >= FRIDAY_ROLLOVER_HOUR:
        days_until_friday = 7

    friday = local_now.date() + timedelta(days=days_until_friday)
    if not weekly and friday.isocalendar()[1] % 2 == 0:
        friday = friday + timedelta(days=7)

    return datetime.combine(friday, CUTOFF_LOCAL_TIME, tzinfo=tz).astimezone(UTC)


def compute_cutoff(
    db: Session,
    employee: Employee,
    start_date: date,
    now: datetime,
    tz_name: str,
    unionized_types: Iterable[str] = (),
) -> datetime:
    """
    Processing cutoff of the payroll period a request falls into

    Uses the period (weekly or biweekly, by classification) containing the
    request's start date. Without a matching period row, falls back to the
    Friday rule relative to now.

    Returns:
        Timezone-aware UTC datetime
    """
    frequency = payroll_frequency_for(employee, unionized_types)
    period = find_period(db, frequency, start_date)
    if period is not None:
        return ensure_utc(period.cutoff_at)

    logger.info(
        "No %s payroll period covers %s for employee %s, using fallback cutoff",
        frequency.value,
        start_date.isoformat(),
        employee.id,
    )
    return fallback_cutoff(now, frequency == PayrollFrequency.WEEKLY, tz_name)


def is_late(cutoff: Optional[datetime], at: datetime) -> bool:
    if cutoff is None:
        return False
    return ensure_utc(at) > ensure_utc(cutoff)


def is_payroll_excluding_stage(stage) -> bool:
    return coerce_enum(ApprovalStage, stage) in PAYROLL_EXCLUDING_STAGES
