"""
Tests for the escalation sweeper
"""
from datetime import date, timedelta

import pytest

from app.core.errors import ConflictError
from app.models.absence_request import ApprovalAction, ApprovalStage, EscalationLog, RequestStatus
from app.models.outbox import OutboxEvent, OutboxEventType
from app.services import absence_request_service as service
from app.services import escalation_service
from app.services.escalation_service import (
    escalate_request,
    find_stalled,
    get_escalation_history,
    stalled_count,
    sweep_once,
)
from app.utils.datetime_utils import ensure_utc

THRESHOLD = timedelta(hours=24)
REASON = "stalled beyond threshold"


def _create(db, employee, now):
    return service.create_request(
        db,
        employee_id=employee.id,
        request_type="VACATION",
        start_date=date(2026, 3, 9),
        end_date=date(2026, 3, 10),
        quantity=2,
        now=now,
    )


def test_stalled_supervisor_stage_escalates_to_manager(org, db, now):
    request = _create(db, org.white, now)

    report = sweep_once(db, now + timedelta(hours=25), THRESHOLD, REASON)

    assert report.skipped == []
    assert report.failures == []
    assert len(report.escalated) == 1
    log = report.escalated[0]
    assert log.request_id == request.id
    assert log.from_stage == ApprovalStage.SUPERVISOR
    assert log.to_stage == ApprovalStage.MANAGER
    assert log.reason == REASON
    assert log.notified_user_ids == [org.gm.id]

    request = service.get_request(db, request.id)
    assert request.status == RequestStatus.PENDING
    assert request.current_stage == ApprovalStage.MANAGER
    assert request.escalation_count == 1
    assert request.is_escalated is True
    assert ensure_utc(request.last_action_at) == now + timedelta(hours=25)


def test_sweep_escalates_each_stall_exactly_once(org, db, now):
    request = _create(db, org.white, now)
    later = now + timedelta(hours=25)

    sweep_once(db, later, THRESHOLD, REASON)
    second = sweep_once(db, later, THRESHOLD, REASON)

    assert second.escalated == []
    assert len(get_escalation_history(db, request.id)) == 1
    assert service.get_request(db, request.id).escalation_count == 1


def test_threshold_is_inclusive(org, db, now):
    _create(db, org.white, now)
    assert stalled_count(db, now + THRESHOLD - timedelta(seconds=1), THRESHOLD) == 0
    assert stalled_count(db, now + THRESHOLD, THRESHOLD) == 1
    assert stalled_count(db, now + THRESHOLD, THRESHOLD, stage=ApprovalStage.MANAGER) == 0
    assert stalled_count(db, now + THRESHOLD, THRESHOLD, stage="SUPERVISOR") == 1


def test_repeated_stalls_keep_counting(org, db, now):
    request = _create(db, org.white, now)
    sweep_once(db, now + timedelta(hours=25), THRESHOLD, REASON)
    report = sweep_once(db, now + timedelta(hours=50), THRESHOLD, REASON)

    assert report.escalated[0].to_stage == ApprovalStage.COMPLETED
    request = service.get_request(db, request.id)
    assert request.escalation_count == 2
    assert request.status == RequestStatus.APPROVED


def test_escalation_to_completed_hands_off_to_payroll(org, db, now):
    request = _create(db, org.white_combo, now)
    assert request.current_stage == ApprovalStage.HR

    report = sweep_once(db, now + timedelta(hours=30), THRESHOLD, REASON)

    log = report.escalated[0]
    assert log.to_stage == ApprovalStage.COMPLETED
    assert log.notified_user_ids == [org.white_combo.id]

    request = service.get_request(db, request.id)
    assert request.status == RequestStatus.APPROVED
    assert request.excluded_from_payroll is False
    incidences = (
        db.query(OutboxEvent)
        .filter(
            OutboxEvent.request_id == request.id,
            OutboxEvent.event_type == OutboxEventType.PAYROLL_INCIDENCE.value,
        )
        .all()
    )
    assert len(incidences) == 1


def test_human_action_wins_over_stale_snapshot(org, db, now):
    request = _create(db, org.white, now)
    [snapshot] = find_stalled(db, now + timedelta(hours=25), THRESHOLD)

    service.act(
        db, request.id, org.sup, ApprovalAction.APPROVED, ApprovalStage.SUPERVISOR,
        now=now + timedelta(hours=25),
    )

    with pytest.raises(ConflictError):
        escalate_request(db, snapshot, now + timedelta(hours=25, seconds=1), REASON)

    request = service.get_request(db, request.id)
    assert request.current_stage == ApprovalStage.MANAGER
    assert request.escalation_count == 0
    assert db.query(EscalationLog).count() == 0


def test_sweep_reports_concurrently_moved_requests_as_skipped(org, db, now, monkeypatch):
    request = _create(db, org.white, now)
    later = now + timedelta(hours=25)
    snapshots = find_stalled(db, later, THRESHOLD)

    service.act(db, request.id, org.sup, ApprovalAction.DECLINED, ApprovalStage.SUPERVISOR, now=later)
    monkeypatch.setattr(escalation_service, "find_stalled", lambda *args: snapshots)

    report = sweep_once(db, later, THRESHOLD, REASON)
    assert report.escalated == []
    assert report.skipped == [request.id]
    assert service.get_request(db, request.id).status == RequestStatus.DECLINED


def test_one_failing_request_does_not_stop_the_sweep(org, db, now, employee_factory):
    gm2 = employee_factory("GM-002", role="gm")
    stuck = employee_factory("EMP-300", supervisor_id=org.sup.id, general_manager_id=gm2.id)
    broken = _create(db, stuck, now)
    healthy = _create(db, org.white, now)

    gm2.active = False
    db.commit()

    report = sweep_once(db, now + timedelta(hours=25), THRESHOLD, REASON)

    assert [f.request_id for f in report.failures] == [broken.id]
    assert report.failures[0].error_type == "ConfigurationError"
    assert [log.request_id for log in report.escalated] == [healthy.id]

    assert service.get_request(db, broken.id).current_stage == ApprovalStage.SUPERVISOR
    assert service.get_request(db, healthy.id).current_stage == ApprovalStage.MANAGER


def test_decided_requests_are_never_escalated(org, db, now):
    request = _create(db, org.white, now)
    service.act(db, request.id, org.sup, ApprovalAction.DECLINED, ApprovalStage.SUPERVISOR, now=now)

    report = sweep_once(db, now + timedelta(days=10), THRESHOLD, REASON)
    assert report.escalated == []
    assert stalled_count(db, now + timedelta(days=10), THRESHOLD) == 0


def test_unexpected_error_on_one_request_is_isolated(org, db, now, monkeypatch):
    bad = _create(db, org.white, now)
    good = _create(db, org.blue, now)
    real_escalate = escalation_service.escalate_request

    def escalate(db, snapshot, now, reason):
        if snapshot.request_id == bad.id:
            raise ValueError("'LIMBO' is not a valid ApprovalStage")
        return real_escalate(db, snapshot, now, reason)

    monkeypatch.setattr(escalation_service, "escalate_request", escalate)
    report = sweep_once(db, now + timedelta(hours=25), THRESHOLD, REASON)

    assert [(f.request_id, f.error_type) for f in report.failures] == [(bad.id, "ValueError")]
    assert [log.request_id for log in report.escalated] == [good.id]
    assert service.get_request(db, good.id).escalation_count == 1
