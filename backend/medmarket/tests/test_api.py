from medmarket import notify, rate_limit
from medmarket.main import audit_routes
from medmarket.rate_limit import RateLimiter
from .conftest import auth_headers, client


def _create(client, db, world, **overrides):
    payload = {
        "organization_id": str(world.hospital_id),
        "equipment_id": str(world.equipment_id),
        "type": "calibration",
        "priority": "critical",
        "description_vi": "Hiệu chuẩn máy đo huyết áp",
        "description_en": "Calibrate blood pressure monitor",
    }
    payload.update(overrides)
    return client.post(
        "/api/service-requests",
        json=payload,
        headers=auth_headers(db, world.creator_id, world.hospital_id),
    )


def test_unauthenticated_request_is_rejected(client):
    resp = client.get("/api/service-requests/hospital")
    assert resp.status_code == 401
    detail = resp.json()["detail"]
    assert detail["code"] == "UNAUTHENTICATED"
    assert set(detail["message"]) == {"vi", "en"}


def test_garbage_token_is_rejected(client):
    resp = client.get("/api/quotes/provider", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_create_and_fetch(client, db, world):
    resp = _create(client, db, world)
    assert resp.status_code == 201
    request_id = resp.json()["id"]

    detail = client.get(
        f"/api/service-requests/{request_id}",
        headers=auth_headers(db, world.member_id, world.hospital_id),
    )
    assert detail.status_code == 200
    body = detail.json()
    assert body["status"] == "pending"
    assert body["assigned_provider_id"] is None
    assert body["quotes"] == []
    assert any(e["to_status"] == "pending" for e in notify.STATUS_EVENT_OUTBOX)


def test_equipment_mismatch_maps_to_400(client, db, world):
    resp = _create(client, db, world, equipment_id=str(world.foreign_equipment_id))
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "EQUIPMENT_ORG_MISMATCH"


def test_active_organization_header_overrides_token(client, db, world):
    headers = auth_headers(db, world.creator_id)
    resp = client.get("/api/service-requests/hospital", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "NO_ACTIVE_ORGANIZATION"

    headers["X-Organization-Id"] = str(world.hospital_id)
    resp = client.get("/api/service-requests/hospital", headers=headers)
    assert resp.status_code == 200


def test_full_workflow_over_http(client, db, world):
    request_id = _create(client, db, world).json()["id"]
    provider = auth_headers(db, world.provider_user_id, world.provider_org_id)
    rival = auth_headers(db, world.rival_user_id, world.rival_org_id)
    owner = auth_headers(db, world.owner_id, world.hospital_id)
    member = auth_headers(db, world.member_id, world.hospital_id)

    open_ids = [r["id"] for r in client.get("/api/service-requests/provider", headers=provider).json()]
    assert request_id in open_ids

    quote = client.post(
        "/api/quotes",
        json={"service_request_id": request_id, "amount": 3_500_000, "valid_until_days": 10},
        headers=provider,
    )
    assert quote.status_code == 201
    quote_id = quote.json()["id"]
    rival_quote = client.post(
        "/api/quotes",
        json={"service_request_id": request_id, "amount": 3_000_000},
        headers=rival,
    ).json()["id"]

    patched = client.patch(f"/api/quotes/{quote_id}", json={"notes": "Bao gồm phí đi lại"}, headers=provider)
    assert patched.status_code == 200

    denied = client.post(f"/api/quotes/{quote_id}/accept", headers=member)
    assert denied.status_code == 403
    assert denied.json()["detail"]["code"] == "INSUFFICIENT_ROLE"

    accepted = client.post(f"/api/quotes/{quote_id}/accept", headers=owner)
    assert accepted.status_code == 200
    assert accepted.json() == {"quote_id": quote_id, "service_request_id": request_id}

    again = client.post(f"/api/quotes/{rival_quote}/accept", headers=owner)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "INVALID_QUOTE_STATUS"

    assert client.post(f"/api/service-requests/{request_id}/start", headers=provider).status_code == 200
    progress = client.post(
        f"/api/service-requests/{request_id}/progress",
        json={"notes": "Đã thay cảm biến áp suất", "percent_complete": 60},
        headers=provider,
    )
    assert progress.status_code == 200
    report = client.post(
        f"/api/service-requests/{request_id}/completion-reports",
        json={
            "work_description_vi": "Hiệu chuẩn lại và thay cảm biến áp suất",
            "parts_replaced": ["Cảm biến áp suất"],
            "actual_hours": 2,
        },
        headers=provider,
    )
    assert report.status_code == 201
    assert client.post(f"/api/service-requests/{request_id}/complete", headers=provider).status_code == 200

    detail = client.get(f"/api/service-requests/{request_id}", headers=owner).json()
    assert detail["status"] == "completed"
    assert detail["completed_at"] is not None
    assert detail["percent_complete"] == 60
    assert {q["status"] for q in detail["quotes"]} == {"accepted", "rejected"}

    mine = client.get(f"/api/service-requests/{request_id}", headers=provider).json()
    assert [q["id"] for q in mine["quotes"]] == [quote_id]

    quotes = client.get("/api/quotes/provider", params={"status": "accepted"}, headers=provider).json()
    assert [q["id"] for q in quotes] == [quote_id]

    statuses = [e["to_status"] for e in notify.STATUS_EVENT_OUTBOX if e["resource_type"] == "service_request"]
    assert statuses == ["pending", "quoted", "accepted", "in_progress", "completed"]


def test_quote_patch_with_null_amount_keeps_price(client, db, world):
    request_id = _create(client, db, world).json()["id"]
    provider = auth_headers(db, world.provider_user_id, world.provider_org_id)
    quote_id = client.post(
        "/api/quotes",
        json={"service_request_id": request_id, "amount": 2_000_000},
        headers=provider,
    ).json()["id"]

    resp = client.patch(f"/api/quotes/{quote_id}", json={"amount": None, "currency": None}, headers=provider)
    assert resp.status_code == 200

    quotes = client.get("/api/quotes/provider", headers=provider).json()
    assert [(q["amount"], q["currency"]) for q in quotes] == [(2_000_000, "VND")]


def test_invalid_transition_maps_to_409(client, db, world):
    request_id = _create(client, db, world).json()["id"]
    resp = client.post(
        f"/api/service-requests/{request_id}/status",
        json={"status": "completed"},
        headers=auth_headers(db, world.owner_id, world.hospital_id),
    )
    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["code"] == "INVALID_TRANSITION"
    assert detail["context"] == {
        "current_status": "pending",
        "target_status": "completed",
        "allowed": ["cancelled", "quoted"],
    }
    assert "pending" in detail["message"]["vi"]


def test_cancel_over_http(client, db, world):
    request_id = _create(client, db, world).json()["id"]
    headers = auth_headers(db, world.member_id, world.hospital_id)
    assert client.post(f"/api/service-requests/{request_id}/cancel", headers=headers).status_code == 200
    listed = client.get("/api/service-requests/hospital", params={"status": "cancelled"}, headers=headers).json()
    assert [r["id"] for r in listed] == [request_id]


def test_decline_validation(client, db, world):
    request_id = _create(client, db, world).json()["id"]
    provider = auth_headers(db, world.provider_user_id, world.provider_org_id)

    short = client.post(f"/api/service-requests/{request_id}/decline", json={"reason": "Bận lắm"}, headers=provider)
    assert short.status_code == 422
    assert short.json()["detail"]["code"] == "INVALID_REASON"

    ok = client.post(
        f"/api/service-requests/{request_id}/decline",
        json={"reason": "Thiết bị ngoài chuyên môn"},
        headers=provider,
    )
    assert ok.status_code == 200
    open_ids = [r["id"] for r in client.get("/api/service-requests/provider", headers=provider).json()]
    assert request_id not in open_ids


def test_body_validation_stays_standard(client, db, world):
    resp = _create(client, db, world, priority="urgent")
    assert resp.status_code == 422
    assert isinstance(resp.json()["detail"], list)


def test_rate_limited_response(client, db, world, monkeypatch):
    monkeypatch.setattr(rate_limit, "limiter", RateLimiter({"serviceRequests.create": "1/minute"}))
    assert _create(client, db, world).status_code == 201
    resp = _create(client, db, world)
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "RATE_LIMITED"
    assert 1 <= int(resp.headers["Retry-After"]) <= 60


def test_audit_stream_and_report(client, db, world):
    request_id = _create(client, db, world).json()["id"]
    headers = auth_headers(db, world.owner_id, world.hospital_id)
    client.post(f"/api/service-requests/{request_id}/cancel", headers=headers)

    logs = client.get("/api/audit/", params={"resource_id": request_id}, headers=headers)
    assert logs.status_code == 200
    assert [l["action"] for l in logs.json()] == ["serviceRequest.cancelled", "serviceRequest.created"]

    params = {
        "start": "2000-01-01T00:00:00",
        "end": "2100-01-01T00:00:00",
    }
    report = client.get("/api/audit/report", headers=headers, params=params).json()
    assert {r["action"]: r["count"] for r in report} == {
        "serviceRequest.created": 1,
        "serviceRequest.cancelled": 1,
    }

    outsider = auth_headers(db, world.outsider_id, world.other_hospital_id)
    assert client.get("/api/audit/", headers=outsider).json() == []


def test_metrics_endpoint(client, db, world):
    _create(client, db, world)
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "workflow_transitions_total" in resp.text
    assert "request_count" in resp.text


def test_every_api_route_requires_authentication():
    audit_routes()
