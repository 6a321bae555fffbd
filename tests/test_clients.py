from datetime import datetime
from decimal import Decimal

from app.marketplace.db import session_scope
from app.marketplace.modules.payments.models import Payment
from app.marketplace.modules.visitors.models import Visitor


def _paid(app, project_id, client_id, amount, status="SUCCEEDED"):
    with session_scope(app) as s:
        s.add(
            Payment(
                project_id=project_id,
                client_id=client_id,
                amount=Decimal(amount),
                status=status,
                paid_at=datetime.utcnow() if status == "SUCCEEDED" else None,
            )
        )


def test_admin_client_views(app, client, make_user, login, make_project):
    make_user("moderator", "mod@example.com")
    cid = make_user("client", "casey@example.com", full_name="Casey Client")
    make_user("client", "other@example.com", full_name="Other")
    pid = make_project(cid, total="2000.00")
    _paid(app, pid, cid, "500.00")
    _paid(app, pid, cid, "700.00", status="FAILED")
    with session_scope(app) as s:
        s.add(
            Visitor(
                full_name="Casey Client",
                business_email="casey@example.com",
                company_name="Casey Co",
                is_converted=True,
                converted_at=datetime.utcnow(),
                client_id=cid,
            )
        )

    mod = login("mod@example.com")
    r = client.get("/api/v1/admin/clients?search=casey", headers=mod)
    assert r.status_code == 200
    rows = r.json["data"]["clients"]
    assert [c["email"] for c in rows] == ["casey@example.com"]
    assert rows[0]["totalSpent"] == 500.0

    r = client.get(f"/api/v1/admin/clients/{cid}", headers=mod)
    data = r.json["data"]
    assert data["kpis"] == {"totalProjects": 1, "completedProjects": 0, "pendingProjects": 1}
    assert [p["id"] for p in data["projects"]] == [pid]
    assert len(data["payments"]) == 2
    assert data["visitor"]["companyName"] == "Casey Co"

    assert client.get("/api/v1/admin/clients/99999", headers=mod).status_code == 404


def test_client_self_views(client, make_user, login, make_project):
    cid = make_user("client", "casey@example.com")
    make_project(cid, status="COMPLETED")
    make_project(cid)
    headers = login("casey@example.com")

    r = client.get("/api/v1/client/kpi", headers=headers)
    assert r.json["data"] == {"totalProjects": 2, "completedProjects": 1, "pendingProjects": 1}
    r = client.get("/api/v1/client/profile", headers=headers)
    assert r.json["data"]["email"] == "casey@example.com"
    assert r.json["data"]["visitor"] is None
    assert r.json["data"]["totalSpent"] == 0.0

    make_user("freelancer", "fl@example.com", profile_status="ACCEPTED")
    fl = login("fl@example.com")
    assert client.get("/api/v1/client/profile", headers=fl).status_code == 403
    assert client.get("/api/v1/admin/clients", headers=headers).status_code == 403
