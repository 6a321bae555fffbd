from app.marketplace.db import session_scope
from app.marketplace.models import User
from app.marketplace.seed import get_role


def _create(client, headers, **overrides):
    payload = {
        "username": "mod1",
        "fullName": "Morgan Moderator",
        "email": "morgan@example.com",
        "password": "password123",
    }
    payload.update(overrides)
    return client.post("/api/v1/admin/moderators", json=payload, headers=headers)


def test_create_and_use_moderator(client, make_user, login, make_project):
    admin_id = make_user("admin", "admin@example.com")
    admin = login("admin@example.com")

    assert _create(client, admin, username="", password="x").status_code == 400
    r = _create(client, admin)
    assert r.status_code == 201
    mod_id = r.json["data"]["id"]
    assert _create(client, admin, username="mod2").status_code == 409

    mod = login("morgan@example.com")
    assert client.get("/api/v1/admin/projects", headers=mod).status_code == 200
    assert client.get("/api/v1/admin/moderators", headers=mod).status_code == 403

    pid = make_project(make_user("client"))
    r = client.post(f"/api/v1/admin/moderators/{mod_id}/projects/{pid}", headers=admin)
    assert r.status_code == 200
    assert r.json["data"]["moderatorId"] == mod_id
    # Only moderators can be assigned.
    assert client.post(f"/api/v1/admin/moderators/{admin_id}/projects/{pid}", headers=admin).status_code == 404

    r = client.get(f"/api/v1/admin/moderators/{mod_id}", headers=admin)
    assert [p["id"] for p in r.json["data"]["projects"]] == [pid]

    stats = client.get("/api/v1/admin/moderators/stats", headers=admin).json["data"]
    assert stats == {"total": 1, "active": 1, "inactive": 0, "projectsModerated": 1}

    assert client.delete(f"/api/v1/admin/projects/{pid}/moderator", headers=admin).status_code == 200
    assert client.delete(f"/api/v1/admin/projects/{pid}/moderator", headers=admin).status_code == 400


def test_toggle_and_delete(client, make_user, login, make_project):
    make_user("admin", "admin@example.com")
    admin = login("admin@example.com")
    mod_id = _create(client, admin).json["data"]["id"]
    mod = login("morgan@example.com")
    p1 = make_project(None, title="One")
    p2 = make_project(None, title="Two")
    client.post(f"/api/v1/admin/moderators/{mod_id}/projects/{p1}", headers=admin)
    client.post(f"/api/v1/admin/moderators/{mod_id}/projects/{p2}", headers=admin)

    assert client.patch(f"/api/v1/admin/moderators/{mod_id}", json={"isActive": "no"}, headers=admin).status_code == 400
    r = client.patch(f"/api/v1/admin/moderators/{mod_id}", json={"isActive": False}, headers=admin)
    assert r.json["data"]["isActive"] is False
    # Existing tokens stop working for inactive accounts.
    assert client.get("/api/v1/admin/projects", headers=mod).status_code == 401
    assert client.post(f"/api/v1/admin/moderators/{mod_id}/projects/{p1}", headers=admin).status_code == 400

    r = client.get("/api/v1/admin/moderators", headers=admin)
    assert r.json["data"]["pagination"]["total"] == 0
    r = client.get("/api/v1/admin/moderators?includeInactive=true", headers=admin)
    assert r.json["data"]["pagination"]["total"] == 1

    client.patch(f"/api/v1/admin/moderators/{mod_id}", json={"isActive": True}, headers=admin)
    r = client.delete(f"/api/v1/admin/moderators/{mod_id}", headers=admin)
    assert r.status_code == 200
    assert r.json["data"]["unassignedProjects"] == 2
    stats = client.get("/api/v1/admin/moderators/stats", headers=admin).json["data"]
    assert stats["inactive"] == 1
    assert stats["projectsModerated"] == 0


def test_cannot_deactivate_self(client, make_user, login, app):
    admin_id = make_user("admin", "admin@example.com")
    with session_scope(app) as s:
        user = s.get(User, admin_id)
        user.roles.append(get_role(s, "moderator"))
    admin = login("admin@example.com")
    r = client.patch(f"/api/v1/admin/moderators/{admin_id}", json={"isActive": False}, headers=admin)
    assert r.status_code == 400
