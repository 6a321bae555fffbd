import pytest

from app.marketplace.db import session_scope
from app.marketplace.models import AuditEvent
from app.marketplace.modules.projects.models import Project


@pytest.fixture()
def market(make_user, make_project, login):
    make_user("admin", "admin@example.com")
    make_user("moderator", "mod@example.com")
    client_id = make_user("client", "client@example.com")
    fl_id = make_user("freelancer", "fl@example.com", profile_status="ACCEPTED")
    make_user("freelancer", "fl2@example.com", profile_status="ACCEPTED")
    make_user("freelancer", "pending@example.com", profile_status="PENDING")
    return {
        "project_id": make_project(client_id, title="Booking site"),
        "closed_id": make_project(client_id, title="Closed", accepting_bids=False),
        "freelancer_id": fl_id,
        "admin": login("admin@example.com"),
        "moderator": login("mod@example.com"),
        "client": login("client@example.com"),
        "freelancer": login("fl@example.com"),
        "freelancer2": login("fl2@example.com"),
        "pending": login("pending@example.com"),
    }


def _bid(client, headers, project_id, amount="800", text="I can do this in three weeks."):
    return client.post("/api/v1/bids", json={"projectId": project_id, "bidAmount": amount, "proposalText": text}, headers=headers)


def test_place_bid_rules(client, market):
    pid = market["project_id"]
    r = client.get("/api/v1/freelancer/projects", headers=market["freelancer"])
    assert [p["title"] for p in r.json["data"]["projects"]] == ["Booking site"]

    assert _bid(client, market["client"], pid).status_code == 403
    assert _bid(client, market["pending"], pid).status_code == 403
    assert _bid(client, market["freelancer"], market["closed_id"]).status_code == 400
    assert _bid(client, market["freelancer"], pid, amount="0").status_code == 400
    assert _bid(client, market["freelancer"], 9999).status_code == 404

    r = _bid(client, market["freelancer"], pid)
    assert r.status_code == 201
    assert r.json["data"]["status"] == "PENDING"
    assert r.json["data"]["bidAmount"] == 800.0
    assert _bid(client, market["freelancer"], pid).status_code == 409

    r = client.get("/api/v1/freelancer/bids", headers=market["freelancer"])
    assert len(r.json["data"]["bids"]) == 1


def test_withdraw_and_rebid(client, market):
    pid = market["project_id"]
    bid_id = _bid(client, market["freelancer"], pid).json["data"]["id"]
    assert client.post(f"/api/v1/bids/{bid_id}/withdraw", headers=market["freelancer2"]).status_code == 403
    r = client.post(f"/api/v1/bids/{bid_id}/withdraw", headers=market["freelancer"])
    assert r.status_code == 200
    assert r.json["data"]["status"] == "WITHDRAWN"
    assert client.post(f"/api/v1/bids/{bid_id}/withdraw", headers=market["freelancer"]).status_code == 400
    # A withdrawn bid no longer blocks a new one.
    assert _bid(client, market["freelancer"], pid, amount="750").status_code == 201


def test_review_accept_selects_freelancer(app, client, market):
    pid = market["project_id"]
    winner = _bid(client, market["freelancer"], pid).json["data"]["id"]
    loser = _bid(client, market["freelancer2"], pid, amount="1200").json["data"]["id"]

    r = client.get(f"/api/v1/admin/projects/{pid}/bids?status=PENDING", headers=market["moderator"])
    assert len(r.json["data"]["bids"]) == 2

    assert client.post(f"/api/v1/admin/bids/{winner}/review", json={"action": "MAYBE"}, headers=market["admin"]).status_code == 400
    assert client.post(f"/api/v1/admin/bids/{winner}/review", json={"action": "ACCEPT"}, headers=market["client"]).status_code == 403

    r = client.post(f"/api/v1/admin/bids/{winner}/review", json={"action": "accept"}, headers=market["moderator"])
    assert r.status_code == 200
    assert r.json["data"]["status"] == "ACCEPTED"
    r = client.post(
        f"/api/v1/admin/bids/{loser}/review",
        json={"action": "REJECT", "reason": "Over budget"},
        headers=market["admin"],
    )
    assert r.json["data"]["reviewReason"] == "Over budget"
    assert client.post(f"/api/v1/admin/bids/{winner}/review", json={"action": "REJECT"}, headers=market["admin"]).status_code == 400
    assert client.post(f"/api/v1/bids/{winner}/withdraw", headers=market["freelancer"]).status_code == 400

    with session_scope(app) as s:
        project = s.get(Project, pid)
        assert project.status == "ONGOING"
        assert [f.id for f in project.selected_freelancers] == [market["freelancer_id"]]
        assert s.query(AuditEvent).filter(AuditEvent.action == "bid.review").count() == 2

    r = client.get(f"/api/v1/projects/{pid}", headers=market["freelancer"])
    assert r.status_code == 200

    stats = client.get("/api/v1/admin/bids/stats", headers=market["admin"]).json["data"]
    assert stats["total"] == 2
    assert stats["accepted"] == 1
    assert stats["rejected"] == 1
    assert stats["pending"] == 0
    assert stats["averageBidAmount"] == 1000.0
