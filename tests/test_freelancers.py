import re

from app.marketplace.db import session_scope
from app.marketplace.models import User


def _register_freelancer(client, outbox, email="fred@example.com"):
    r = client.post(
        "/api/v1/auth/register",
        json={
            "username": email.split("@")[0],
            "fullName": "Fred Freelancer",
            "email": email,
            "password": "password123",
            "role": "FREELANCER",
            "niche": "Web",
            "skills": ["python", "flask"],
        },
    )
    assert r.status_code == 201
    code = re.search(r"\b(\d{6})\b", outbox[-1].body).group(1)
    client.post("/api/v1/auth/verifyEmail", json={"email": email, "OTP": code})


def test_accept_pending_registration(app, client, outbox, make_user, login):
    _register_freelancer(client, outbox)
    make_user("moderator", "mod@example.com")
    mod = login("mod@example.com")

    r = client.get("/api/v1/freelancer/getAllFreeLancerRequest", headers=mod)
    assert r.status_code == 200
    requests = r.json["data"]["freelancers"]
    assert len(requests) == 1
    assert requests[0]["skills"] == ["python", "flask"]
    profile_id = requests[0]["id"]

    r = client.patch(f"/api/v1/freelancer/acceptFreeLancerRequest/{profile_id}", headers=mod)
    assert r.status_code == 200
    assert r.json["data"]["isAccepted"] is True
    assert outbox[-1].to == "fred@example.com"
    assert "accepted" in outbox[-1].subject
    assert client.patch(f"/api/v1/freelancer/acceptFreeLancerRequest/{profile_id}", headers=mod).status_code == 409

    fred = login("fred@example.com")
    r = client.get("/api/v1/freelancer/profile", headers=fred)
    assert r.json["data"]["status"] == "ACCEPTED"

    r = client.get("/api/v1/freelancer/listAllFreelancers", headers=mod)
    assert r.json["data"]["pagination"]["total"] == 1
    r = client.get("/api/v1/freelancer/registrations?isAccepted=false", headers=mod)
    assert r.json["data"]["pagination"]["total"] == 0


def test_trash_deactivates(app, client, outbox, make_user, login):
    _register_freelancer(client, outbox)
    make_user("admin", "admin@example.com")
    admin = login("admin@example.com")
    profile_id = client.get("/api/v1/freelancer/registrations", headers=admin).json["data"]["freelancers"][0]["id"]

    client.patch(f"/api/v1/freelancer/acceptFreeLancerRequest/{profile_id}", headers=admin)
    r = client.patch(
        f"/api/v1/freelancer/trashFreeLancerRequest/{profile_id}",
        json={"reason": "Duplicate account"},
        headers=admin,
    )
    assert r.status_code == 200
    assert r.json["data"]["status"] == "TRASHED"
    assert client.patch(f"/api/v1/freelancer/trashFreeLancerRequest/{profile_id}", headers=admin).status_code == 409

    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "fred@example.com").one().is_active is False
    r = client.post("/api/v1/auth/login", json={"email": "fred@example.com", "password": "password123"})
    assert r.status_code == 403


def test_admin_creates_and_edits_freelancer(client, make_user, login):
    make_user("admin", "admin@example.com")
    admin = login("admin@example.com")

    r = client.post("/api/v1/admin/freelancers", json={"fullName": "", "email": "bad"}, headers=admin)
    assert r.status_code == 400

    r = client.post(
        "/api/v1/admin/freelancers",
        json={
            "fullName": "Grace Hopper",
            "email": "grace@example.com",
            "password": "password123",
            "kpiRank": "GOLD",
            "yearsOfExperience": 12,
        },
        headers=admin,
    )
    assert r.status_code == 201
    assert r.json["data"]["status"] == "ACCEPTED"
    assert r.json["data"]["kpiRank"] == "GOLD"
    profile_id = r.json["data"]["id"]

    r = client.patch(f"/api/v1/admin/freelancers/{profile_id}", json={"kpiRank": "PLATINUM"}, headers=admin)
    assert r.json["data"]["kpiRank"] == "PLATINUM"

    grace = login("grace@example.com")
    r = client.patch("/api/v1/freelancer/profile", json={"kpiRank": "DIAMOND"}, headers=grace)
    assert r.status_code == 403
    r = client.patch(
        "/api/v1/freelancer/profile",
        json={"bio": "Compilers.", "portfolioUrl": "ftp://old"},
        headers=grace,
    )
    assert r.status_code == 400
    r = client.patch(
        "/api/v1/freelancer/profile",
        json={"bio": "Compilers.", "portfolioUrl": "https://grace.dev"},
        headers=grace,
    )
    assert r.status_code == 200
    assert r.json["data"]["portfolioUrl"] == "https://grace.dev"


def test_freelancer_endpoints_need_permission(client, make_user, login):
    make_user("client", "c@example.com")
    c = login("c@example.com")
    assert client.get("/api/v1/freelancer/getAllFreeLancerRequest", headers=c).status_code == 403
    assert client.get("/api/v1/freelancer/profile", headers=c).status_code == 403
