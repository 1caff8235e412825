from conftest import ASHA, BALA, CHITRA, DEV, IT_SUPPORT, REQUESTER, auth

REQUEST_BODY = {
    "request_for_by": "Self",
    "name": "Ravi Kumar",
    "employee_code": "E0050",
    "requester_email": REQUESTER.email,
    "access_request_type": "New User Creation",
    "tasks": [{"application_id": 100, "department_id": 7, "plant_id": 10}],
}


def _create(client, body=None):
    return client.post("/api/user-requests", json=body or REQUEST_BODY, headers=auth(REQUESTER))


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
    assert "user_requests" in r.json()["tables"]


def test_metrics_exposition(client):
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "uam_admission_conflicts_total" in r.text


def test_token_is_required(client):
    assert client.post("/api/user-requests", json=REQUEST_BODY).status_code == 401
    r = client.get("/api/user-requests/1", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_create_and_duplicate(client):
    r = _create(client)
    assert r.status_code == 201
    body = r.json()
    assert body["ritm_number"].startswith("RITM")
    assert body["status"] == "Pending"
    assert body["approver1_email"] == ASHA.email
    assert len(body["tasks"]) == 1

    r = _create(client)
    assert r.status_code == 409
    assert r.json()["code"] == "CONFLICT"
    assert r.json()["rule"] == "RULE_1"


def test_invalid_request_body_is_400(client):
    body = dict(REQUEST_BODY, request_for_by="Vendor / OEM")
    r = _create(client, body)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"

    r = _create(client, dict(REQUEST_BODY, tasks=[]))
    assert r.status_code == 400


def test_admission_endpoints(client):
    _create(client)
    query = {"plant_id": 10, "department_id": 7, "application_ids": [100],
             "requester": "ravi kumar", "access_request_type": "Modify Access"}
    r = client.post("/api/admission/in-flight", json=query, headers=auth(REQUESTER))
    assert r.status_code == 200
    assert r.json()["conflict"] is True
    assert r.json()["rule"] == "RULE_1"

    r = client.post("/api/admission/access-log", json=query, headers=auth(REQUESTER))
    assert r.json()["rule"] == "RULE_2"

    bulk = {"plant_id": 10, "department_id": 7, "application_ids": list(range(100, 108))}
    r = client.post("/api/admission/bulk", json=bulk, headers=auth(REQUESTER))
    assert r.json() == {"valid": False, "rule": "RULE_6", "reason": r.json()["reason"]}


def test_full_lifecycle(client):
    req_id = _create(client).json()["id"]

    r = client.post(f"/api/user-requests/{req_id}/approve", json={}, headers=auth(BALA))
    assert r.status_code == 403

    r = client.post(f"/api/user-requests/{req_id}/approve", json={"comments": "ok"}, headers=auth(ASHA))
    assert r.status_code == 200
    assert r.json()["approver1_status"] == "Approved"

    r = client.post(f"/api/user-requests/{req_id}/approve", json={}, headers=auth(BALA))
    assert r.status_code == 200
    task_id = r.json()["tasks"][0]["id"]
    assert r.json()["tasks"][0]["task_status"] == "Approved"

    r = client.post(f"/api/user-requests/{req_id}/reject", json={"comments": "late"}, headers=auth(CHITRA))
    assert r.status_code == 409
    assert r.json()["code"] == "ALREADY_DECIDED"

    r = client.put(f"/api/tasks/{task_id}", headers=auth(IT_SUPPORT), json={
        "task_status": "Closed",
        "task_data": {"allocated_id": "rkumar", "password": "Init#123", "from_date": "2026-10-19"},
    })
    assert r.status_code == 200
    closure = r.json()["closure"]
    assert closure["allocated_id"] == "rkumar"
    assert closure["has_credential"] is True
    assert "password" not in closure and "password_hash" not in closure

    r = client.get(f"/api/user-requests/{req_id}", headers=auth(REQUESTER))
    assert r.json()["status"] == "Completed"
    assert r.json()["tasks"][0]["closure"]["from_date"] == "2026-10-19"


def test_reject_needs_comments(client):
    req_id = _create(client).json()["id"]
    r = client.post(f"/api/user-requests/{req_id}/reject", json={"comments": " "}, headers=auth(ASHA))
    assert r.status_code == 400


def test_close_before_approval_is_forbidden(client):
    task_id = _create(client).json()["tasks"][0]["id"]
    r = client.put(f"/api/tasks/{task_id}", json={"task_status": "Closed"}, headers=auth(IT_SUPPORT))
    assert r.status_code == 403
    assert r.json()["code"] == "NOT_AUTHORIZED"


def test_unknown_closure_field_is_400(client):
    task_id = _create(client).json()["tasks"][0]["id"]
    r = client.put(f"/api/tasks/{task_id}", headers=auth(IT_SUPPORT),
                   json={"task_status": "In Progress", "task_data": {"colour": "red"}})
    assert r.status_code == 400


def test_unknown_request_is_404(client):
    r = client.get("/api/user-requests/999", headers=auth(REQUESTER))
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_notify_webhook_config_is_admin_only(client):
    r = client.post("/config/notify-webhook", json={"webhook_url": "https://mail.test/hook"}, headers=auth(ASHA))
    assert r.status_code == 403

    admin = auth(ASHA, roles=["admin"])
    r = client.post("/config/notify-webhook", json={"webhook_url": "https://mail.test/hook"}, headers=admin)
    assert r.json() == {"saved": True}
    r = client.get("/config/notify-webhook", headers=admin)
    assert r.json()["configured"] is True

    r = client.post("/config/notify-webhook", json={"webhook_url": "mail.test"}, headers=admin)
    assert r.status_code == 400


def _approved_task(client):
    req_id = _create(client).json()["id"]
    client.post(f"/api/user-requests/{req_id}/approve", json={}, headers=auth(ASHA))
    r = client.post(f"/api/user-requests/{req_id}/approve", json={}, headers=auth(BALA))
    return req_id, r.json()["tasks"][0]["id"]


def test_closure_under_bound_key_shows_on_request(client):
    req_id, task_id = _approved_task(client)
    r = client.put(f"/api/tasks/{task_id}", headers=auth(IT_SUPPORT), json={
        "task_status": "Closed",
        "task_data": {"ritm_number": "RITM-LEGACY", "task_number": "TASK-LEGACY", "allocated_id": "rkumar"},
    })
    assert r.status_code == 200
    assert r.json()["closure"]["ritm_number"] == "RITM-LEGACY"

    r = client.get(f"/api/user-requests/{req_id}", headers=auth(REQUESTER))
    closure = r.json()["tasks"][0]["closure"]
    assert (closure["ritm_number"], closure["task_number"]) == ("RITM-LEGACY", "TASK-LEGACY")
    assert closure["allocated_id"] == "rkumar"


def test_reopening_a_closed_task_is_400(client):
    req_id, task_id = _approved_task(client)
    client.put(f"/api/tasks/{task_id}", json={"task_status": "Closed"}, headers=auth(IT_SUPPORT))
    r = client.put(f"/api/tasks/{task_id}", json={"task_status": "In Progress"}, headers=auth(IT_SUPPORT))
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"
    assert client.get(f"/api/user-requests/{req_id}", headers=auth(REQUESTER)).json()["status"] == "Completed"


def test_task_outside_support_scope_is_403(client):
    _, task_id = _approved_task(client)
    r = client.put(f"/api/tasks/{task_id}", json={"task_status": "Closed"}, headers=auth(DEV))
    assert r.status_code == 403
    assert r.json()["code"] == "NOT_AUTHORIZED"


def test_task_queue_is_scoped_and_filtered(client):
    _create(client)
    nashik = dict(REQUEST_BODY, name="Meena Joshi", access_request_type="Password Reset",
                  tasks=[{"application_id": 200, "department_id": 8, "plant_id": 20}])
    ritm = _create(client, nashik).json()["ritm_number"]

    r = client.get("/api/tasks", headers=auth(IT_SUPPORT))
    assert r.status_code == 200
    assert [t["plant_id"] for t in r.json()] == [10]
    assert r.json()[0]["plant_name"] == "Pune"
    assert r.json()[0]["request_status"] == "Pending"

    assert client.get("/api/tasks", headers=auth(DEV)).json() == []

    admin = auth(DEV, roles=["admin"])
    assert len(client.get("/api/tasks", headers=admin).json()) == 2
    r = client.get("/api/tasks", params={"plant": "Nashik"}, headers=admin)
    assert [t["ritm_number"] for t in r.json()] == [ritm]
    r = client.get("/api/tasks", params={"transaction_id": ritm, "task_status": "Pending"}, headers=admin)
    assert [t["request_name"] for t in r.json()] == ["Meena Joshi"]
    r = client.get("/api/tasks", params={"access_request_type": "New User Creation"}, headers=admin)
    assert [t["plant_id"] for t in r.json()] == [10]


def test_request_and_access_log_listings(client):
    first = _create(client).json()
    second = _create(client, dict(REQUEST_BODY, name="Meena Joshi",
                                  tasks=[{"application_id": 101, "department_id": 7, "plant_id": 10}])).json()
    client.post(f"/api/user-requests/{first['id']}/reject", json={"comments": "duplicate"}, headers=auth(ASHA))

    r = client.get("/api/user-requests", headers=auth(REQUESTER))
    assert r.status_code == 200
    assert [x["id"] for x in r.json()] == [second["id"], first["id"]]
    r = client.get("/api/user-requests", params={"status": "Rejected"}, headers=auth(REQUESTER))
    assert [x["id"] for x in r.json()] == [first["id"]]
    r = client.get("/api/user-requests", params={"requester": "meena"}, headers=auth(REQUESTER))
    assert [x["id"] for x in r.json()] == [second["id"]]
    assert client.get("/api/user-requests", params={"plant_id": 20}, headers=auth(REQUESTER)).json() == []

    r = client.get("/api/access-logs", params={"requester": " Ravi KUMAR "}, headers=auth(REQUESTER))
    assert r.status_code == 200
    rows = r.json()
    assert [(x["request_id"], x["task_status"]) for x in rows] == [(first["id"], "Rejected")]
    assert rows[0]["ritm_number"] == first["ritm_number"]
    r = client.get("/api/access-logs", params={"application_id": 101}, headers=auth(REQUESTER))
    assert [x["requester_key"] for x in r.json()] == ["meena joshi"]
    assert client.get("/api/access-logs").status_code == 401
