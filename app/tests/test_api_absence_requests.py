"""
Tests for the absence request endpoints
"""
from datetime import date, datetime, timezone

from app.services import absence_request_service as service

BASE = "/api/v1/absence-requests"
LONG_AGO = datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc)


def _submit(client, headers, **overrides):
    body = {
        "request_type": "VACATION",
        "start_date": "2026-11-09",
        "end_date": "2026-11-10",
        "quantity": "2",
        "reason": "Viaje familiar",
    }
    body.update(overrides)
    return client.post(BASE, json=body, headers=headers)


def test_submit_request(client, org, headers_for):
    response = _submit(client, headers_for(org.white))
    assert response.status_code == 201
    data = response.json()
    assert data["employee_id"] == org.white.id
    assert data["status"] == "PENDING"
    assert data["current_stage"] == "SUPERVISOR"
    assert data["hr_route"] == "NONE"
    assert data["last_action_at"].endswith("Z")
    assert data["payroll_cutoff_date"].endswith("Z")


def test_submit_rejects_reversed_window(client, org, headers_for):
    response = _submit(client, headers_for(org.white), start_date="2026-11-10", end_date="2026-11-09")
    assert response.status_code == 400
    data = response.json()
    assert data["error"] is True
    assert data["error_type"] == "ValidationError"
    assert data["retryable"] is False


def test_submit_without_route_is_configuration_error(client, employee_factory, org, headers_for):
    orphan = employee_factory("EMP-400")
    response = _submit(client, headers_for(orphan))
    assert response.status_code == 422
    assert response.json()["error_type"] == "ConfigurationError"


def test_act_then_stale_claim_conflicts(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]
    decision = {"action": "APPROVED", "claimed_stage": "SUPERVISOR", "comment": "ok"}

    response = client.post(f"{BASE}/{request_id}/act", json=decision, headers=headers_for(org.sup))
    assert response.status_code == 200
    assert response.json()["current_stage"] == "MANAGER"

    response = client.post(f"{BASE}/{request_id}/act", json=decision, headers=headers_for(org.admin))
    assert response.status_code == 409
    data = response.json()
    assert data["error_type"] == "ConflictError"
    assert data["retryable"] is True


def test_act_by_unrelated_user_is_forbidden(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]
    response = client.post(
        f"{BASE}/{request_id}/act",
        json={"action": "APPROVED", "claimed_stage": "SUPERVISOR"},
        headers=headers_for(org.outsider),
    )
    assert response.status_code == 403
    assert response.json()["error_type"] == "AuthorizationError"


def test_act_rejects_unknown_action(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]
    response = client.post(
        f"{BASE}/{request_id}/act",
        json={"action": "MAYBE", "claimed_stage": "SUPERVISOR"},
        headers=headers_for(org.sup),
    )
    assert response.status_code == 422


def test_request_outside_scope_is_not_found(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]
    assert client.get(f"{BASE}/{request_id}", headers=headers_for(org.outsider)).status_code == 404
    assert client.get(f"{BASE}/{request_id}", headers=headers_for(org.sup)).status_code == 200
    assert client.get(f"{BASE}/99999", headers=headers_for(org.admin)).status_code == 404


def test_pending_and_counts(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]

    response = client.get(f"{BASE}/pending", params={"stage": "SUPERVISOR"}, headers=headers_for(org.sup))
    assert response.status_code == 200
    assert [r["id"] for r in response.json()] == [request_id]

    response = client.get(f"{BASE}/counts", headers=headers_for(org.sup))
    assert response.status_code == 200
    data = response.json()
    assert data["counts"]["SUPERVISOR"] == 1
    assert data["total"] == 1


def test_overlapping_for_another_employee_requires_admin(client, org, headers_for):
    _submit(client, headers_for(org.white))
    params = {"start_date": "2026-11-10", "end_date": "2026-11-20", "employee_id": org.white.id}

    assert client.get(f"{BASE}/overlapping", params=params, headers=headers_for(org.sup)).status_code == 403

    response = client.get(f"{BASE}/overlapping", params=params, headers=headers_for(org.admin))
    assert response.status_code == 200
    assert len(response.json()) == 1


def test_withdraw_and_archive(client, org, headers_for):
    headers = headers_for(org.white)
    request_id = _submit(client, headers).json()["id"]

    response = client.post(f"{BASE}/{request_id}/withdraw", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "DECLINED"
    assert response.json()["excluded_from_payroll"] is False

    response = client.post(f"{BASE}/{request_id}/archive", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "ARCHIVED"

    response = client.post(f"{BASE}/{request_id}/archive", headers=headers)
    assert response.status_code == 409


def test_audit_trail_endpoint(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]
    client.post(
        f"{BASE}/{request_id}/act",
        json={"action": "DECLINED", "claimed_stage": "SUPERVISOR", "comment": "Fechas ocupadas"},
        headers=headers_for(org.sup),
    )

    response = client.get(f"{BASE}/{request_id}/audit", headers=headers_for(org.white))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "DECLINED"
    assert data["replayed_status"] == "DECLINED"
    assert data["consistent"] is True
    assert data["history"][0]["comment"] == "Fechas ocupadas"
    assert data["escalations"] == []


def test_sweep_is_admin_only(client, org, headers_for):
    response = client.post(f"{BASE}/escalations/sweep", headers=headers_for(org.sup))
    assert response.status_code == 403


def test_sweep_escalates_stalled_requests(client, db, org, headers_for):
    request = service.create_request(
        db,
        employee_id=org.white.id,
        request_type="VACATION",
        start_date=date(2024, 1, 15),
        end_date=date(2024, 1, 15),
        quantity=1,
        now=LONG_AGO,
    )

    response = client.post(
        f"{BASE}/escalations/sweep",
        json={"threshold_hours": 24},
        headers=headers_for(org.admin),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["skipped"] == []
    assert data["failures"] == []
    assert len(data["escalated"]) == 1
    escalated = data["escalated"][0]
    assert escalated["request_id"] == request.id
    assert escalated["from_stage"] == "SUPERVISOR"
    assert escalated["to_stage"] == "MANAGER"
    assert escalated["notified_user_ids"] == [org.gm.id]
    assert escalated["escalated_at"].endswith("Z")


def test_sweep_rejects_non_positive_threshold(client, org, headers_for):
    response = client.post(
        f"{BASE}/escalations/sweep",
        json={"threshold_hours": 0},
        headers=headers_for(org.admin),
    )
    assert response.status_code == 422


def test_invalid_token_is_rejected(client, org):
    response = client.get(f"{BASE}/counts", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_inactive_employee_cannot_submit(client, db, org, headers_for):
    headers = headers_for(org.white)
    org.white.active = False
    db.commit()
    assert _submit(client, headers).status_code == 403


def test_my_requests(client, org, headers_for):
    own = _submit(client, headers_for(org.white)).json()["id"]
    _submit(client, headers_for(org.blue))

    response = client.get(f"{BASE}/mine", headers=headers_for(org.white))
    assert response.status_code == 200
    assert [r["id"] for r in response.json()] == [own]
    assert client.get(f"{BASE}/mine", headers=headers_for(org.outsider)).json() == []


def test_approved_listing_is_for_payroll(client, org, headers_for):
    request_id = _submit(client, headers_for(org.white)).json()["id"]
    for approver, stage in ((org.sup, "SUPERVISOR"), (org.gm, "MANAGER")):
        client.post(
            f"{BASE}/{request_id}/act",
            json={"action": "APPROVED", "claimed_stage": stage},
            headers=headers_for(approver),
        )
    client.post(f"{BASE}/{request_id}/archive", headers=headers_for(org.white))

    assert client.get(f"{BASE}/approved", headers=headers_for(org.white)).status_code == 403

    response = client.get(f"{BASE}/approved", headers=headers_for(org.payroll))
    assert response.status_code == 200
    [approved] = response.json()
    assert approved["id"] == request_id
    assert approved["status"] == "ARCHIVED"
    assert approved["decided_status"] == "APPROVED"

    params = {"collar_type": "blue_collar"}
    assert client.get(f"{BASE}/approved", params=params, headers=headers_for(org.admin)).json() == []
    params = {"collar_type": "pink_collar"}
    assert client.get(f"{BASE}/approved", params=params, headers=headers_for(org.admin)).status_code == 422

    trail = client.get(f"{BASE}/{request_id}/audit", headers=headers_for(org.white)).json()
    assert trail["decided_status"] == "APPROVED"
    assert trail["replayed_status"] == "APPROVED"
    assert trail["consistent"] is True
