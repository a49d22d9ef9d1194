from datetime import timedelta

from office_access.core.clock import utcnow
from office_access.models.access_record import AccessRecord, AccessResult
from office_access.models.user import UserStatus, UserType
from office_access.repositories.access_record import AccessRecordRepository


def _validate(client, code, device_id="GATE-1", **extra):
    body = {"code": code, "deviceId": device_id, "direction": "in"}
    body.update(extra)
    return client.post("/api/access/validate", json=body)


def test_valid_code_grants_access_and_records_success(client, db, employee, make_passcode):
    passcode = make_passcode(employee)

    response = _validate(client, passcode.code, deviceType="turnstile", projectId=3, floorId=12)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Access granted"
    assert body["data"]["valid"] is True
    assert body["data"]["userId"] == employee.id
    assert body["data"]["userName"] == employee.name
    assert body["data"]["userType"] == "employee"
    assert body["data"]["permissions"] == ["basic_access"]
    assert body["data"]["reason"] is None
    assert body["data"]["timestamp"]

    records = db.query(AccessRecord).all()
    assert len(records) == 1
    assert records[0].result == AccessResult.SUCCESS
    assert records[0].user_id == employee.id
    assert records[0].passcode_id == passcode.id
    assert records[0].fail_reason is None
    assert (records[0].device_type, records[0].project_id, records[0].floor_id) == ("turnstile", 3, 12)


def test_expired_code_answers_200_and_records_failure(client, db, employee, make_passcode):
    passcode = make_passcode(employee, expires_in=timedelta(minutes=-5))

    response = _validate(client, passcode.code)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["data"]["valid"] is False
    assert "expired" in body["data"]["reason"]
    assert body["data"]["permissions"] is None

    records = db.query(AccessRecord).all()
    assert len(records) == 1
    assert records[0].result == AccessResult.FAILED
    assert records[0].fail_reason == "code has expired"
    assert records[0].passcode_id == passcode.id
    assert records[0].user_id == 0


def test_disabled_owner_refusal_is_recorded_against_owner(client, db, make_user, make_passcode):
    suspended = make_user(name="Suspended", status=UserStatus.INACTIVE)
    passcode = make_passcode(suspended)

    body = _validate(client, passcode.code).json()

    assert body["data"]["reason"] == "user account is disabled"
    assert body["data"]["userId"] == suspended.id

    records = db.query(AccessRecord).all()
    assert len(records) == 1
    assert records[0].user_id == suspended.id
    assert records[0].passcode_id == passcode.id


def test_unknown_code_records_anonymous_failure(client, db):
    response = _validate(client, "DOES_NOT_EXIST")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "code does not exist"
    assert body["data"]["valid"] is False
    assert body["data"]["reason"] == "code does not exist"

    record = db.query(AccessRecord).one()
    assert record.user_id == 0
    assert record.passcode_id is None
    assert record.fail_reason == "code does not exist"


def test_missing_code_or_device_is_a_bad_request(client, db):
    for body in ({"deviceId": "GATE-1"}, {"code": "ABC"}, {"code": "  ", "deviceId": "GATE-1"}):
        response = client.post("/api/access/validate", json=body)

        assert response.status_code == 400
        payload = response.json()
        assert payload["success"] is False
        assert payload["data"] is None
        assert payload["message"] == "Passcode and device ID are required"
        assert payload["timestamp"]

    assert db.query(AccessRecord).count() == 0


def test_invalid_direction_is_a_bad_request(client):
    response = client.post("/api/access/validate", json={"code": "A", "deviceId": "B", "direction": "up"})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_single_use_code_admits_exactly_once(client, db, employee, make_passcode):
    passcode = make_passcode(employee, usage_limit=1)

    first = _validate(client, passcode.code).json()
    second = _validate(client, passcode.code).json()

    assert first["data"]["valid"] is True
    assert second["data"]["valid"] is False
    assert second["data"]["reason"] == "usage limit reached"
    results = [r.result for r in db.query(AccessRecord).order_by(AccessRecord.id).all()]
    assert results == [AccessResult.SUCCESS, AccessResult.FAILED]
    db.refresh(passcode)
    assert passcode.usage_count == 1


def test_qr_and_time_based_validation(client, db, employee, employee_headers):
    issued = client.post("/api/access/passcode/refresh", headers=employee_headers).json()["data"]

    qr = client.post("/api/access/validate/qr", json={"qrContent": issued["qrContent"], "deviceId": "GATE-2"})
    timed = client.post(
        "/api/access/validate/time-based",
        json={"timeBasedCode": issued["timeBasedCode"], "baseCode": issued["code"], "deviceId": "GATE-3"},
    )
    broken = client.post("/api/access/validate/qr", json={"qrContent": "garbage", "deviceId": "GATE-2"})

    assert qr.status_code == 200 and qr.json()["data"]["valid"] is True
    assert qr.json()["message"] == "QR code access granted"
    assert timed.json()["data"]["valid"] is True
    assert broken.status_code == 200
    assert broken.json()["data"]["reason"] == "QR code format is invalid"
    assert db.query(AccessRecord).count() == 3

    missing = client.post("/api/access/validate/time-based", json={"baseCode": "X", "deviceId": "GATE-3"})
    assert missing.status_code == 400


def test_records_listing_is_paginated_and_repeatable(client, db, admin_headers, employee):
    repo = AccessRecordRepository(db)
    base = utcnow() - timedelta(hours=2)
    for minute in range(12):
        repo.create({
            "user_id": employee.id,
            "device_id": "GATE-1" if minute % 2 else "GATE-2",
            "direction": "in",
            "result": "success",
            "timestamp": base + timedelta(minutes=minute),
        })

    params = {"page": 2, "limit": 5, "sortBy": "timestamp", "sortOrder": "asc"}
    first = client.get("/api/access/records", params=params, headers=admin_headers)
    again = client.get("/api/access/records", params=params, headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["data"] == again.json()["data"]
    page = first.json()["data"]
    assert page["pagination"] == {"page": 2, "limit": 5, "total": 12, "totalPages": 3}
    assert len(page["data"]) == 5
    assert page["data"][0]["user"]["name"] == employee.name

    filtered = client.get("/api/access/records", params={"deviceId": "GATE-2"}, headers=admin_headers)
    assert filtered.json()["data"]["pagination"]["total"] == 6

    bad_sort = client.get("/api/access/records", params={"sortBy": "password"}, headers=admin_headers)
    assert bad_sort.status_code == 400


def test_records_require_authentication(client):
    response = client.get("/api/access/records")

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_non_admin_only_sees_own_records(client, db, make_user, headers_for):
    repo = AccessRecordRepository(db)
    alice = make_user(name="Alice")
    bob = make_user(name="Bob")
    for user in (alice, alice, bob):
        repo.create({"user_id": user.id, "device_id": "GATE-1", "direction": "in", "result": "success"})

    mine = client.get("/api/access/records", params={"userId": bob.id}, headers=headers_for(alice))
    own = client.get(f"/api/access/records/user/{alice.id}", headers=headers_for(alice))
    other = client.get(f"/api/access/records/user/{bob.id}", headers=headers_for(alice))

    assert mine.json()["data"]["pagination"]["total"] == 2
    assert own.json()["data"]["pagination"]["total"] == 2
    assert other.status_code == 403


def test_device_records_and_realtime_status(client, db, admin_headers, employee):
    AccessRecordRepository(db).create(
        {"user_id": employee.id, "device_id": "LOBBY", "direction": "out", "result": "success"}
    )

    records = client.get("/api/access/records/device/LOBBY", headers=admin_headers).json()["data"]
    status = client.get("/api/access/realtime-status", params={"deviceId": "LOBBY"}, headers=admin_headers)
    unknown = client.get("/api/access/realtime-status", params={"deviceId": "NOWHERE"}, headers=admin_headers)

    assert records["pagination"]["total"] == 1
    assert records["data"][0]["direction"] == "out"
    data = status.json()["data"]
    assert data["isOnline"] is True
    assert data["status"] == "active"
    assert data["todayCount"] >= 0
    assert data["lastActivity"] is not None
    assert unknown.json()["data"]["status"] == "unknown"


def test_access_stats(client, db, admin_headers, employee):
    repo = AccessRecordRepository(db)
    repo.create({"user_id": employee.id, "device_id": "GATE-1", "direction": "in", "result": "success"})
    repo.create({"user_id": employee.id, "device_id": "GATE-1", "direction": "out", "result": "success"})
    repo.create({"user_id": employee.id, "device_id": "GATE-2", "direction": "in", "result": "failed",
                 "fail_reason": "code has expired"})

    response = client.get("/api/access/stats", headers=admin_headers)

    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["totalCount"] == 3
    assert stats["successCount"] == 2
    assert stats["failedCount"] == 1
    assert stats["successRate"] == 66.67
    assert stats["byDevice"][0] == {"deviceId": "GATE-1", "count": 2}
    assert stats["byUserType"] == [{"userType": "employee", "count": 3}]
    assert sum(bucket["count"] for bucket in stats["byHour"]) == 3
    assert len(stats["recentActivity"]) == 3


def test_stats_are_admin_only(client, employee_headers):
    assert client.get("/api/access/stats", headers=employee_headers).status_code == 403


def test_merchant_admin_stats_are_scoped(client, db, make_user, headers_for):
    repo = AccessRecordRepository(db)
    merchant_admin = make_user(name="Shop admin", user_type=UserType.MERCHANT_ADMIN, merchant_id=5)
    staff = make_user(name="Shop staff", merchant_id=5)
    outsider = make_user(name="Outsider", merchant_id=6)
    for user in (staff, outsider, outsider):
        repo.create({"user_id": user.id, "device_id": "GATE-1", "direction": "in", "result": "success"})

    stats = client.get("/api/access/stats", params={"merchantId": 6}, headers=headers_for(merchant_admin))

    assert stats.json()["data"]["totalCount"] == 1


def test_batch_import_and_cleanup(client, db, admin_headers, employee):
    old = (utcnow() - timedelta(days=200)).isoformat()
    batch = {
        "records": [
            {"userId": employee.id, "deviceId": "OFFLINE-1", "direction": "in", "result": "success",
             "timestamp": old},
            {"userId": employee.id, "deviceId": "OFFLINE-1", "direction": "out", "result": "success"},
        ]
    }
    invalid = {"records": [{"userId": employee.id, "deviceId": "X", "direction": "in", "result": "failed"}]}

    created = client.post("/api/access/records/batch", json=batch, headers=admin_headers)
    rejected = client.post("/api/access/records/batch", json=invalid, headers=admin_headers)
    purged = client.delete("/api/access/records/cleanup", params={"days": 90}, headers=admin_headers)

    assert created.status_code == 201
    assert len(created.json()["data"]) == 2
    assert rejected.status_code == 400
    assert rejected.json()["errors"] == ["records[0]: fail_reason is required when result is failed"]
    assert purged.json()["data"]["deletedCount"] == 1
    assert db.query(AccessRecord).count() == 1


def test_passcode_endpoints_require_user_context(client):
    assert client.get("/api/access/passcode/current").status_code == 401
    assert client.post("/api/access/passcode/refresh").status_code == 401

    bad_token = client.get("/api/access/passcode/current", headers={"Authorization": "Bearer nonsense"})
    assert bad_token.status_code == 401
    assert bad_token.json()["message"] == "Could not validate credentials"


def test_current_passcode_and_info(client, employee, employee_headers, make_passcode):
    assert client.get("/api/access/passcode/current", headers=employee_headers).status_code == 404

    passcode = make_passcode(employee)
    current = client.get("/api/access/passcode/current", headers=employee_headers).json()["data"]
    info = client.get(f"/api/access/passcode/{passcode.code}").json()["data"]

    assert current["code"] == passcode.code
    assert current["userId"] == employee.id
    assert info["id"] == passcode.id
    assert info["user"]["id"] == employee.id
    assert client.get("/api/access/passcode/NOPE").status_code == 404
