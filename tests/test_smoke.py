from decimal import Decimal

from app.marketplace.db import session_scope
from app.marketplace.modules.visitors.models import Visitor


def _session_login(client, email, password="password123"):
    return client.post("/login", data={"email": email, "password": password})


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json == {"ok": True}
    assert client.get("/healthz").data == b"ok"


def test_login_page_renders(client):
    r = client.get("/login?callbackUrl=/dashboard/client")
    assert r.status_code == 200
    assert b"Sign in" in r.data
    assert b'value="/dashboard/client"' in r.data


def test_unknown_api_route_is_json_404(client):
    r = client.get("/api/v1/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False
    assert r.json["status"] == 404


def test_admin_dashboard_pages_render(app, client, make_user, make_project):
    make_user("admin", "admin@example.com")
    client_id = make_user("client", "client@example.com", full_name="Casey Client")
    make_project(client_id, title="Storefront")
    with session_scope(app) as s:
        s.add(Visitor(full_name="Vera", business_email="vera@example.com", company_name="Vera Co", calculated_total=Decimal("900")))
        s.flush()
        vid = s.query(Visitor.id).scalar()

    r = _session_login(client, "admin@example.com")
    assert r.headers["Location"].endswith("/dashboard/Administrator")

    for path in (
        "/dashboard/Administrator",
        "/dashboard/Administrator/visitors?search=vera",
        f"/dashboard/Administrator/visitors/{vid}",
        "/dashboard/Administrator/project-status",
        "/dashboard/Administrator/payments",
        "/dashboard/Administrator/audit?action=auth",
    ):
        r = client.get(path)
        assert r.status_code == 200, path

    assert b"Storefront" in client.get("/dashboard/Administrator/project-status").data
    assert client.get("/dashboard/Administrator/visitors/9999").status_code == 404


def test_moderator_cannot_open_audit_page(client, make_user):
    make_user("moderator", "mod@example.com")
    _session_login(client, "mod@example.com")
    assert client.get("/dashboard/Administrator").status_code == 200
    assert client.get("/dashboard/Administrator/audit").status_code == 403


def test_client_and_freelancer_dashboards_render(client, make_user, make_project):
    client_id = make_user("client", "client@example.com")
    fl_id = make_user("freelancer", "fl@example.com", profile_status="ACCEPTED")
    pid = make_project(client_id, title="Mobile app", freelancer_ids=(fl_id,))
    other = make_project(make_user("client"), title="Not yours")

    _session_login(client, "client@example.com")
    r = client.get("/dashboard/client")
    assert r.status_code == 200
    assert b"Mobile app" in r.data
    assert b"Not yours" not in r.data
    r = client.get(f"/dashboard/client/projects/{pid}")
    assert r.status_code == 200
    assert b"25% Deposit" in r.data
    assert client.get(f"/dashboard/client/projects/{other}").status_code == 403

    client.get("/logout")
    _session_login(client, "fl@example.com")
    r = client.get("/dashboard/freelancer")
    assert r.status_code == 200
    assert b"Mobile app" in r.data
