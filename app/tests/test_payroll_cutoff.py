"""
Tests for payroll cutoff computation and flags
"""
from datetime import date, datetime, timezone

from app.models.absence_request import ApprovalStage
from app.models.payroll_period import PayrollFrequency, PayrollPeriod
from app.services.payroll_cutoff_service import (
    compute_cutoff,
    fallback_cutoff,
    is_late,
    is_payroll_excluding_stage,
    payroll_frequency_for,
)

TZ = "America/Mexico_City"


def test_fallback_weekly_is_next_friday_end_of_day(now):
    # Monday 2026-03-02 -> Friday 2026-03-06 23:59:59 CST (UTC-6)
    assert fallback_cutoff(now, weekly=True, tz_name=TZ) == datetime(2026, 3, 7, 5, 59, 59, tzinfo=timezone.utc)


def test_fallback_biweekly_skips_even_iso_week(now):
    # 2026-03-06 is in ISO week 10, so white collar closes a week later
    assert fallback_cutoff(now, weekly=False, tz_name=TZ) == datetime(2026, 3, 14, 5, 59, 59, tzinfo=timezone.utc)


def test_fallback_friday_before_rollover_hour_is_same_day():
    friday_evening = datetime(2026, 3, 7, 4, 0, tzinfo=timezone.utc)  # Fri 22:00 local
    assert fallback_cutoff(friday_evening, weekly=True, tz_name=TZ) == datetime(2026, 3, 7, 5, 59, 59, tzinfo=timezone.utc)


def test_fallback_friday_late_night_rolls_a_week():
    friday_late = datetime(2026, 3, 7, 5, 30, tzinfo=timezone.utc)  # Fri 23:30 local
    assert fallback_cutoff(friday_late, weekly=True, tz_name=TZ) == datetime(2026, 3, 14, 5, 59, 59, tzinfo=timezone.utc)


def test_payroll_frequency_by_classification(org):
    assert payroll_frequency_for(org.white) == PayrollFrequency.BIWEEKLY
    assert payroll_frequency_for(org.blue) == PayrollFrequency.WEEKLY
    assert payroll_frequency_for(org.union, ["sindicalizado"]) == PayrollFrequency.WEEKLY


def test_compute_cutoff_uses_covering_period(org, db, now):
    weekly_cutoff = datetime(2026, 3, 13, 18, 0, tzinfo=timezone.utc)
    biweekly_cutoff = datetime(2026, 3, 20, 18, 0, tzinfo=timezone.utc)
    db.add_all([
        PayrollPeriod(
            period_code="2026-W11",
            frequency=PayrollFrequency.WEEKLY.value,
            start_date=date(2026, 3, 9),
            end_date=date(2026, 3, 15),
            cutoff_at=weekly_cutoff,
        ),
        PayrollPeriod(
            period_code="2026-BW06",
            frequency=PayrollFrequency.BIWEEKLY.value,
            start_date=date(2026, 3, 9),
            end_date=date(2026, 3, 22),
            cutoff_at=biweekly_cutoff,
        ),
    ])
    db.commit()

    assert compute_cutoff(db, org.blue, date(2026, 3, 10), now, TZ) == weekly_cutoff
    assert compute_cutoff(db, org.white, date(2026, 3, 10), now, TZ) == biweekly_cutoff


def test_compute_cutoff_falls_back_without_period(org, db, now):
    assert compute_cutoff(db, org.blue, date(2026, 4, 1), now, TZ) == fallback_cutoff(now, True, TZ)


def test_is_late_boundary():
    cutoff = datetime(2026, 3, 7, 5, 59, 59, tzinfo=timezone.utc)
    assert not is_late(cutoff, cutoff)
    assert is_late(cutoff, datetime(2026, 3, 7, 6, 0, tzinfo=timezone.utc))
    # Naive values from SQLite are UTC
    assert is_late(cutoff.replace(tzinfo=None), datetime(2026, 3, 8, tzinfo=timezone.utc))
    assert not is_late(None, cutoff)


def test_payroll_excluding_stages():
    assert is_payroll_excluding_stage(ApprovalStage.HR)
    assert is_payroll_excluding_stage("HR_BLUE_GRAY")
    assert is_payroll_excluding_stage(ApprovalStage.PAYROLL)
    assert not is_payroll_excluding_stage(ApprovalStage.SUPERVISOR)
    assert not is_payroll_excluding_stage(ApprovalStage.MANAGER)
