"""Tests for basic API functionality."""
import pytest


async def _template(client, headers, **body):
    body.setdefault("category", "food")
    r = await client.post("/api/entitlements/templates", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


async def _participant(client, headers, name="Ann", email="ann@example.com", **extra):
    r = await client.post(
        "/api/participants",
        json={"name": name, "email": email, "send_email": False, **extra},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()["participant"]


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns ok."""
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_login_bootstraps_admin(client):
    r = await client.post("/api/auth/login", json={"username": "admin", "password": "testpass123"})
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["role"] == "admin"
    assert all(user["permissions"].values())


@pytest.mark.asyncio
async def test_login_rejects_bad_password(client, auth_headers):
    r = await client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_requires_token(client):
    r = await client.get("/api/participants")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_x_auth_token_fallback(client, auth_headers):
    token = auth_headers["Authorization"].split(" ", 1)[1]
    r = await client.get("/api/auth/me", headers={"X-Auth-Token": token})
    assert r.status_code == 200
    assert r.json()["username"] == "admin"


@pytest.mark.asyncio
async def test_role_permissions(client, gate_headers, food_headers):
    r = await client.get("/api/auth/me", headers=gate_headers)
    assert r.json()["permissions"] == {
        "can_mark_attendance": True,
        "can_distribute_food": False,
        "can_undo_actions": False,
        "can_manage_users": False,
        "can_manage_settings": False,
    }
    r = await client.get("/api/auth/me", headers=food_headers)
    assert r.json()["permissions"]["can_distribute_food"] is True
    assert r.json()["permissions"]["can_mark_attendance"] is False


@pytest.mark.asyncio
async def test_staff_management(client, auth_headers, gate_headers):
    r = await client.post(
        "/api/auth/users", json={"username": "boss2", "password": "x", "role": "admin"}, headers=auth_headers
    )
    assert r.status_code == 400

    r = await client.get("/api/auth/users", headers=auth_headers)
    users = r.json()
    assert [u["username"] for u in users] == ["gate1"]
    gate_id = users[0]["id"]

    # role change recomputes stored permissions
    r = await client.patch(f"/api/auth/users/{gate_id}", json={"role": "food"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["permissions"]["can_distribute_food"] is True
    assert r.json()["permissions"]["can_mark_attendance"] is False

    r = await client.patch(f"/api/auth/users/{gate_id}/status", json={"is_active": False}, headers=auth_headers)
    assert r.json()["is_active"] is False
    r = await client.get("/api/auth/me", headers=gate_headers)
    assert r.status_code == 403

    admin_id = (await client.get("/api/auth/me", headers=auth_headers)).json()["id"]
    r = await client.patch(f"/api/auth/users/{admin_id}/status", json={"is_active": False}, headers=auth_headers)
    assert r.status_code == 403

    r = await client.get("/api/auth/users", headers=gate_headers)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_checkin_and_distribution_flow(client, auth_headers, gate_headers, food_headers):
    """Register, fail before check-in, check in, distribute, undo."""
    await _template(client, auth_headers, name="Lunch")
    await _template(client, auth_headers, name="Beer", category="beverage", is_countable=True, max_count=2,
                    default_for_participants=True)
    p = await _participant(client, auth_headers)
    pid = p["participant_id"]
    assert len(pid) == 8 and pid.isalnum() and pid.upper() == pid
    assert p["qr_code"].startswith("data:image/png;base64,")
    assert [e["name"] for e in p["entitlements"]] == ["Beer"]

    r = await client.post(f"/api/participants/{pid}/entitlement", json={"entitlement": "Beer"}, headers=food_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "PARTICIPANT_NOT_PRESENT"

    r = await client.post(f"/api/participants/{pid}/attendance", headers=food_headers)
    assert r.status_code == 403
    r = await client.post(f"/api/participants/{pid}/attendance", headers=gate_headers)
    assert r.status_code == 200
    assert r.json()["is_present"] is True
    r = await client.post(f"/api/participants/{pid}/attendance", headers=gate_headers)
    assert r.json()["code"] == "ATTENDANCE_ALREADY_MARKED"

    r = await client.post(
        f"/api/participants/{pid}/entitlement", json={"entitlement": "beer", "count": 2}, headers=food_headers
    )
    assert r.status_code == 200
    assert r.json()["given"] == 2
    r = await client.post(f"/api/participants/{pid}/entitlement", json={"entitlement": "Beer"}, headers=food_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "ENTITLEMENT_LIMIT_EXCEEDED"

    r = await client.post(f"/api/participants/{pid}/entitlement", json={"entitlement": "Lunch"}, headers=food_headers)
    assert r.status_code == 404
    assert r.json()["code"] == "ENTITLEMENT_NOT_FOUND"

    r = await client.post(f"/api/participants/{pid}/entitlement/undo", json={"entitlement": "Beer"}, headers=food_headers)
    assert r.status_code == 403
    r = await client.post(f"/api/participants/{pid}/entitlement/undo", json={"entitlement": "Beer"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["given"] == 1

    r = await client.get(f"/api/participants/{pid}", headers=gate_headers)
    detail = r.json()
    assert [h["action"] for h in detail["entitlement_history"]] == ["added", "distributed", "undone"]

    r = await client.get("/api/participants/NOPE1234", headers=gate_headers)
    assert r.status_code == 404
    assert r.json() == {"detail": "Participant not found", "code": "PARTICIPANT_NOT_FOUND"}


@pytest.mark.asyncio
async def test_duplicate_email_rejected(client, auth_headers):
    await _participant(client, auth_headers)
    r = await client.post(
        "/api/participants", json={"name": "Ann 2", "email": "ANN@example.com", "send_email": False}, headers=auth_headers
    )
    assert r.status_code == 400
    assert r.json()["code"] == "PARTICIPANT_EXISTS"


@pytest.mark.asyncio
async def test_list_participants_pagination(client, auth_headers):
    for i in range(3):
        await _participant(client, auth_headers, name=f"P{i}", email=f"p{i}@example.com", is_player=i == 0)
    r = await client.get("/api/participants?limit=2", headers=auth_headers)
    data = r.json()
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert len(data["participants"]) == 2
    r = await client.get("/api/participants?is_player=true", headers=auth_headers)
    assert [p["name"] for p in r.json()["participants"]] == ["P0"]


@pytest.mark.asyncio
async def test_import_csv(client, auth_headers):
    csv_body = (
        "name,email,phone,isPlayer,foodPreference\n"
        "Ann,ann@example.com,555,yes,Fish\n"
        ",missing@example.com,,no,\n"
        "Ben,ben@example.com,,0,pizza\n"
    )
    r = await client.post(
        "/api/participants/import",
        files={"file": ("people.csv", csv_body.encode(), "text/csv")},
        headers=auth_headers,
    )
    assert r.status_code == 201
    data = r.json()
    assert data["summary"] == {"processed": 3, "created": 2, "failed": 1}
    assert len(data["failed_imports"]) == 1
    assert data["failed_imports"][0]["reason"] == "PARTICIPANT_INVALID_INPUT"
    created = [row["data"] for row in data["results"] if row["success"]]
    assert (created[0]["is_player"], created[0]["food_preference"]) == (True, "fish")
    assert (created[1]["is_player"], created[1]["food_preference"]) == (False, "no-preference")

    # second import of the same rows: nothing created, failures scoped to this run
    r = await client.post(
        "/api/participants/import",
        files={"file": ("people.csv", csv_body.encode(), "text/csv")},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert len(r.json()["failed_imports"]) == 3


@pytest.mark.asyncio
async def test_import_limits(client, auth_headers):
    r = await client.post(
        "/api/participants/import", files={"file": ("e.csv", b"", "text/csv")}, headers=auth_headers
    )
    assert r.status_code == 400
    rows = "name,email\n" + "".join(f"P{i},p{i}@example.com\n" for i in range(1001))
    r = await client.post(
        "/api/participants/import", files={"file": ("big.csv", rows.encode(), "text/csv")}, headers=auth_headers
    )
    assert r.status_code == 413
    assert r.json()["code"] == "UPLOAD_TOO_LARGE"


@pytest.mark.asyncio
async def test_export_csv(client, auth_headers):
    r = await client.get("/api/participants/export", headers=auth_headers)
    assert r.status_code == 404
    p = await _participant(client, auth_headers, phone=None)
    r = await client.get("/api/participants/export", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    lines = r.text.strip().splitlines()
    assert lines[0] == "QR Code ID,Name,Email,Phone Number,Is Player"
    assert lines[1] == f"{p['participant_id']},Ann,ann@example.com,N/A,No"


@pytest.mark.asyncio
async def test_settings_override_and_sync(client, auth_headers, food_headers):
    await _template(client, auth_headers, name="Beer", category="beverage", is_countable=True, max_count=2,
                    default_for_participants=True)
    p = await _participant(client, auth_headers)
    pid = p["participant_id"]

    r = await client.post("/api/settings/initialize", headers=auth_headers)
    assert r.json()["created"] == ["beerLimit", "eventName", "eventDate"]
    r = await client.post("/api/settings/initialize", headers=auth_headers)
    assert r.json()["created"] == []

    r = await client.put("/api/settings/beerLimit", json={"value": 3}, headers=food_headers)
    assert r.status_code == 403
    r = await client.put("/api/settings/beerLimit", json={"value": 3}, headers=auth_headers)
    assert r.status_code == 200
    r = await client.get("/api/settings/beerLimit", headers=food_headers)
    assert r.json()["value"] == 3
    r = await client.get("/api/settings/nothing", headers=food_headers)
    assert r.status_code == 404

    await client.post(f"/api/participants/{pid}/attendance", headers=auth_headers)
    r = await client.post(
        f"/api/participants/{pid}/entitlement", json={"entitlement": "Beer", "count": 3}, headers=food_headers
    )
    assert r.status_code == 200
    assert r.json()["max_count"] == 3

    r = await client.post("/api/participants/sync-entitlement-limits", json={}, headers=auth_headers)
    assert r.json()["total_modified"] == 1
    r = await client.post(
        "/api/participants/bulk-update-entitlement-limits",
        json={"entitlement_name": "beer", "new_max_count": 6, "participant_type": "participants"},
        headers=auth_headers,
    )
    assert r.json()["matched_count"] == 1

    r = await client.get("/api/settings/export", headers=auth_headers)
    backup = r.json()["settings"]
    assert backup["beerLimit"] == 3
    r = await client.post("/api/settings/import", json={"settings": {"beerLimit": 5}}, headers=auth_headers)
    assert r.json()["restored"] == 1


@pytest.mark.asyncio
async def test_group_endpoints(client, auth_headers, food_headers):
    await _template(client, auth_headers, name="Breakfast")
    a = await _participant(client, auth_headers, name="Ann", email="ann@example.com")
    b = await _participant(client, auth_headers, name="Ben", email="ben@example.com")
    await client.post(f"/api/participants/{a['participant_id']}/attendance", headers=auth_headers)

    r = await client.post("/api/groups", json={"name": "Team A", "group_type": "team"}, headers=auth_headers)
    assert r.status_code == 201
    gid = r.json()["id"]
    r = await client.post("/api/groups", json={"name": "team a"}, headers=auth_headers)
    assert r.json()["code"] == "GROUP_EXISTS"

    r = await client.post(
        f"/api/groups/{gid}/members",
        json={"participant_ids": [a["participant_id"], b["participant_id"]]},
        headers=auth_headers,
    )
    assert len(r.json()["results"]) == 2

    r = await client.post(f"/api/groups/{gid}/distribute", json={"entitlement": "breakfast"}, headers=food_headers)
    data = r.json()
    assert data["success"] is True
    assert len(data["results"]) == 1
    assert data["errors"][0].startswith(f"{b['participant_id']} (Ben)")

    r = await client.get("/api/groups", headers=food_headers)
    assert [m["name"] for m in r.json()[0]["members"]] == ["Ann", "Ben"]

    r = await client.delete(f"/api/groups/{gid}", headers=auth_headers)
    assert r.status_code == 200
    r = await client.get(f"/api/groups/{gid}", headers=auth_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_template_catalog(client, auth_headers, food_headers):
    t = await _template(client, auth_headers, name="Lunch", is_countable=False, max_count=4)
    assert t["max_count"] == 1
    r = await client.post("/api/entitlements/templates", json={"name": "lunch", "category": "food"}, headers=auth_headers)
    assert r.json()["code"] == "TEMPLATE_EXISTS"
    r = await client.post("/api/entitlements/templates", json={"name": "X", "category": "bogus"}, headers=auth_headers)
    assert r.json()["code"] == "INVALID_CATEGORY"
    await _template(client, auth_headers, name="Cap", category="merchandise")

    r = await client.get("/api/entitlements/templates", headers=food_headers)
    assert [x["name"] for x in r.json()] == ["Lunch", "Cap"]

    r = await client.delete(f"/api/entitlements/templates/{t['id']}", headers=auth_headers)
    assert r.json()["is_active"] is False
    r = await client.get("/api/entitlements/templates", headers=food_headers)
    assert [x["name"] for x in r.json()] == ["Cap"]


@pytest.mark.asyncio
async def test_dashboard(client, auth_headers):
    await _template(client, auth_headers, name="Lunch", default_for_participants=True)
    a = await _participant(client, auth_headers, name="Ann", email="ann@example.com")
    await _participant(client, auth_headers, name="Ben", email="ben@example.com")
    await client.post(f"/api/participants/{a['participant_id']}/attendance", headers=auth_headers)
    await client.post(f"/api/participants/{a['participant_id']}/entitlement", json={"entitlement": "Lunch"}, headers=auth_headers)

    r = await client.get("/api/dashboard/stats", headers=auth_headers)
    stats = r.json()["stats"]
    assert stats["total_participants"] == 2
    assert stats["present_participants"] == 1
    lunch = stats["entitlement_stats"]["Lunch"]
    assert (lunch["given"], lunch["pending"], lunch["total_eligible"], lunch["percentage"]) == (1, 0, 2, 50)
    assert stats["recent_attendance"][0]["name"] == "Ann"
    assert stats["recent_distributions"][0]["entitlement_name"] == "Lunch"
