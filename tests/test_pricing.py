from app.marketplace.db import session_scope
from app.marketplace.models import AuditEvent


def test_catalog_crud(app, client, make_user, login):
    make_user("admin", "admin@example.com")
    admin = login("admin@example.com")

    r = client.post(
        "/api/v1/admin/pricing/categories",
        json={"category": "Web Development", "basePrice": "1500", "childServices": ["Landing page", "Landing page", "Blog"]},
        headers=admin,
    )
    assert r.status_code == 201
    item = r.json["data"]
    assert item["basePrice"] == 1500.0
    assert item["childServices"] == ["Landing page", "Blog"]

    r = client.post(
        "/api/v1/admin/pricing/categories",
        json={"category": "web development", "basePrice": 10},
        headers=admin,
    )
    assert r.status_code == 409

    r = client.patch(f"/api/v1/admin/pricing/categories/{item['id']}", json={"basePrice": 1750}, headers=admin)
    assert r.status_code == 200
    assert r.json["data"]["basePrice"] == 1750.0

    r = client.post("/api/v1/admin/pricing/technologies", json={"technology": "React", "additionalCost": 250}, headers=admin)
    assert r.status_code == 201
    r = client.post("/api/v1/admin/pricing/features", json={"feature": "Chat", "additionalCost": 100}, headers=admin)
    assert r.status_code == 201

    catalog = client.get("/api/v1/pricing/catalog").json["data"]
    assert [c["category"] for c in catalog["categories"]] == ["Web Development"]
    assert catalog["technologies"][0]["additionalCost"] == 250.0
    assert catalog["industries"] == []

    stats = client.get("/api/v1/admin/pricing/stats", headers=admin).json["data"]
    assert stats["categories"] == {"count": 1, "averageBasePrice": 1750.0}
    assert stats["features"]["count"] == 1

    assert client.delete(f"/api/v1/admin/pricing/categories/{item['id']}", headers=admin).status_code == 200
    assert client.get("/api/v1/admin/pricing/categories", headers=admin).json["data"] == []

    with session_scope(app) as s:
        actions = {a for (a,) in s.query(AuditEvent.action).all()}
    assert {"pricing.create", "pricing.update", "pricing.delete"} <= actions


def test_catalog_validation(client, make_user, login):
    make_user("admin", "admin@example.com")
    admin = login("admin@example.com")

    assert client.post("/api/v1/admin/pricing/industries", json={"basePrice": 10}, headers=admin).status_code == 400
    r = client.post("/api/v1/admin/pricing/industries", json={"category": "Retail", "basePrice": -1}, headers=admin)
    assert r.status_code == 400
    r = client.post("/api/v1/admin/pricing/industries", json={"category": "Retail", "basePrice": "lots"}, headers=admin)
    assert r.status_code == 400
    assert client.post("/api/v1/admin/pricing/widgets", json={}, headers=admin).status_code == 404
    assert client.patch("/api/v1/admin/pricing/features/999", json={"additionalCost": 1}, headers=admin).status_code == 404


def test_catalog_admin_only(client, make_user, login):
    assert client.get("/api/v1/pricing/catalog").status_code == 200
    assert client.get("/api/v1/admin/pricing/stats").status_code == 401

    make_user("moderator", "mod@example.com")
    r = client.post(
        "/api/v1/admin/pricing/features",
        json={"feature": "Chat", "additionalCost": 1},
        headers=login("mod@example.com"),
    )
    assert r.status_code == 403
