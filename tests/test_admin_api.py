from datetime import timedelta

from office_access.core.clock import utcnow
from office_access.models.access_record import AccessRecord
from office_access.models.passcode import Passcode, PasscodeStatus
from office_access.models.user import UserStatus, UserType
from office_access.repositories.access_record import AccessRecordRepository


def test_generate_passcode_returns_qr_material(client, admin_headers, employee):
    response = client.post(
        "/api/passcodes/generate",
        json={"userId": employee.id, "type": "employee", "permissions": ["floor_3"]},
        headers=admin_headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["userId"] == employee.id
    assert data["usageLimit"] == 50
    assert data["permissions"] == ["basic_access", "floor_3"]
    assert data["qrContent"]
    assert data["qrImage"].startswith("data:image/png;base64,")
    assert len(data["timeBasedCode"]) == 16


def test_generate_visitor_passcode_for_application(client, admin_headers, make_user):
    visitor = make_user(name="Guest", user_type=UserType.VISITOR)

    data = client.post(
        "/api/passcodes/generate",
        json={"userId": visitor.id, "type": "visitor", "applicationId": 31},
        headers=admin_headers,
    ).json()["data"]

    assert data["type"] == "visitor"
    assert data["applicationId"] == 31
    assert data["usageLimit"] == 5


def test_generate_passcode_for_missing_user(client, admin_headers):
    response = client.post("/api/passcodes/generate", json={"userId": 999, "type": "employee"}, headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["message"] == "User with ID 999 not found"


def test_passcode_admin_is_admin_only(client, employee, employee_headers):
    response = client.post(
        "/api/passcodes/generate", json={"userId": employee.id, "type": "employee"}, headers=employee_headers
    )
    assert response.status_code == 403


def test_batch_generate(client, admin_headers, make_user):
    first = make_user(name="One")
    second = make_user(name="Two")

    data = client.post(
        "/api/passcodes/batch",
        json={"userIds": [first.id, second.id, 555], "type": "employee", "usageLimit": 2},
        headers=admin_headers,
    ).json()["data"]

    assert [p["userId"] for p in data["passcodes"]] == [first.id, second.id]
    assert all(p["usageLimit"] == 2 for p in data["passcodes"])
    assert data["failed"] == [{"userId": 555, "reason": "User with ID 555 not found"}]


def test_create_update_and_delete_passcode(client, db, admin_headers, employee):
    expiry = (utcnow() + timedelta(days=1)).isoformat()
    created = client.post(
        "/api/passcodes",
        json={"userId": employee.id, "code": "MANUAL-1", "type": "employee", "expiryTime": expiry, "usageLimit": 3},
        headers=admin_headers,
    )
    assert created.status_code == 201
    passcode_id = created.json()["data"]["id"]

    duplicate = client.post(
        "/api/passcodes",
        json={"userId": employee.id, "code": "MANUAL-1", "type": "employee"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Passcode code already exists"

    updated = client.put(f"/api/passcodes/{passcode_id}", json={"usageLimit": 8}, headers=admin_headers)
    assert updated.json()["data"]["usageLimit"] == 8

    empty = client.put(f"/api/passcodes/{passcode_id}", json={}, headers=admin_headers)
    assert empty.status_code == 400
    assert empty.json()["message"] == "No fields to update"

    client.put(f"/api/passcodes/{passcode_id}", json={"status": "revoked"}, headers=admin_headers)
    reactivate = client.put(f"/api/passcodes/{passcode_id}", json={"status": "active"}, headers=admin_headers)
    assert reactivate.status_code == 400
    assert reactivate.json()["errors"] == ["status 'revoked' is terminal"]

    assert client.get(f"/api/passcodes/{passcode_id}", headers=admin_headers).json()["data"]["status"] == "revoked"
    assert client.delete(f"/api/passcodes/{passcode_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/passcodes/{passcode_id}", headers=admin_headers).status_code == 404
    assert client.put("/api/passcodes/4242", json={"usageLimit": 1}, headers=admin_headers).status_code == 404


def test_create_passcode_rejects_invalid_fields(client, admin_headers, employee):
    response = client.post(
        "/api/passcodes",
        json={"userId": employee.id, "code": "PAST", "type": "employee",
              "expiryTime": (utcnow() - timedelta(minutes=1)).isoformat(), "usageLimit": 0},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["errors"] == ["usage_limit must be greater than 0", "expiry_time must be in the future"]


def test_deleting_passcode_keeps_access_history(client, db, admin_headers, employee, make_passcode):
    passcode = make_passcode(employee)
    record = AccessRecordRepository(db).create({
        "user_id": employee.id, "passcode_id": passcode.id, "device_id": "GATE-1",
        "direction": "in", "result": "success",
    })

    client.delete(f"/api/passcodes/{passcode.id}", headers=admin_headers)

    db.expire_all()
    kept = db.get(AccessRecord, record.id)
    assert kept is not None
    assert kept.passcode_id is None


def test_passcode_stats_cleanup_and_user_listing(client, admin_headers, employee, make_passcode):
    make_passcode(employee, expires_in=timedelta(minutes=-1))
    make_passcode(employee)

    cleanup = client.post("/api/passcodes/cleanup", headers=admin_headers).json()["data"]
    stats = client.get("/api/passcodes/stats", params={"userId": employee.id}, headers=admin_headers).json()["data"]
    listing = client.get(f"/api/passcodes/user/{employee.id}", headers=admin_headers).json()["data"]

    assert cleanup == {"expiredCount": 1}
    assert stats == {"total": 2, "active": 1, "expired": 1, "revoked": 0}
    assert len(listing) == 2


def test_create_and_list_users(client, admin_headers):
    created = client.post(
        "/api/users",
        json={"name": "New Hire", "userType": "employee", "phone": "5550100", "merchantId": 4},
        headers=admin_headers,
    )
    assert created.status_code == 201
    user = created.json()["data"]
    assert user["userType"] == "employee"
    assert user["status"] == "active"

    listing = client.get("/api/users", params={"userType": "employee"}, headers=admin_headers).json()["data"]
    assert listing["pagination"]["total"] == 1
    assert listing["data"][0]["name"] == "New Hire"

    found = client.get(f"/api/users/{user['id']}", headers=admin_headers)
    assert found.json()["data"]["merchantId"] == 4
    assert client.get("/api/users/9999", headers=admin_headers).status_code == 404


def test_duplicate_username_is_rejected(client, admin_headers, admin):
    response = client.post(
        "/api/users", json={"name": "Copy", "username": "admin", "userType": "tenant_admin"}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Username already exists"


def test_merchant_admin_cannot_reach_other_merchants(client, make_user, headers_for):
    merchant_admin = make_user(name="Shop admin", user_type=UserType.MERCHANT_ADMIN, merchant_id=5)
    stranger = make_user(name="Stranger", merchant_id=6)
    headers = headers_for(merchant_admin)

    created = client.post("/api/users", json={"name": "Clerk", "userType": "employee"}, headers=headers)
    escalate = client.post("/api/users", json={"name": "Boss", "userType": "tenant_admin"}, headers=headers)

    assert created.json()["data"]["merchantId"] == 5
    assert escalate.status_code == 403
    assert client.get(f"/api/users/{stranger.id}", headers=headers).status_code == 403


def test_merchant_admin_cannot_manage_other_merchants_passcodes(client, db, make_user, make_passcode, headers_for):
    merchant_admin = make_user(name="Shop admin", user_type=UserType.MERCHANT_ADMIN, merchant_id=1)
    own_clerk = make_user(name="Clerk", merchant_id=1)
    stranger = make_user(name="Stranger", merchant_id=2)
    foreign = make_passcode(stranger)
    headers = headers_for(merchant_admin)

    generate = client.post("/api/passcodes/generate", json={"userId": stranger.id, "type": "employee"}, headers=headers)
    batch = client.post("/api/passcodes/batch", json={"userIds": [own_clerk.id, stranger.id], "type": "employee"},
                        headers=headers)
    create = client.post("/api/passcodes", json={"userId": stranger.id, "code": "FOREIGN1", "type": "employee"},
                         headers=headers)

    assert generate.status_code == 403
    assert batch.status_code == 403
    assert create.status_code == 403
    assert client.get(f"/api/passcodes/user/{stranger.id}", headers=headers).status_code == 403
    assert client.get(f"/api/passcodes/{foreign.id}", headers=headers).status_code == 403
    assert client.put(f"/api/passcodes/{foreign.id}", json={"usageLimit": 99}, headers=headers).status_code == 403
    assert client.delete(f"/api/passcodes/{foreign.id}", headers=headers).status_code == 403

    db.refresh(foreign)
    assert foreign.status == PasscodeStatus.ACTIVE
    assert foreign.usage_limit == 10
    assert db.query(Passcode).filter(Passcode.user_id == stranger.id).count() == 1

    stats = client.get("/api/passcodes/stats", headers=headers).json()["data"]
    assert stats["total"] == 0

    own = client.post("/api/passcodes/generate", json={"userId": own_clerk.id, "type": "employee"}, headers=headers)
    assert own.status_code == 201
    assert client.get("/api/passcodes/stats", headers=headers).json()["data"]["total"] == 1


def test_deactivating_user_revokes_passcodes(client, db, admin_headers, employee, make_passcode):
    passcode = make_passcode(employee)

    response = client.patch(f"/api/users/{employee.id}/status", json={"status": "inactive"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "inactive"
    assert response.json()["data"]["revokedPasscodes"] == 1
    db.refresh(passcode)
    assert passcode.status == PasscodeStatus.REVOKED

    refused = client.post("/api/access/validate", json={"code": passcode.code, "deviceId": "GATE-1"}).json()
    assert refused["data"]["reason"] == "code is no longer active"


def test_inactive_user_token_is_refused(client, db, make_user, headers_for):
    user = make_user(name="Suspended", status=UserStatus.INACTIVE)

    response = client.get("/api/users/me", headers=headers_for(user))

    assert response.status_code == 403
    assert db.query(Passcode).count() == 0


def test_health_and_root(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/health").status_code == 200
